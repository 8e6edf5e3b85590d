#!/usr/bin/env python3
"""
TopHat Blob Counter
Main entry point for the application.

Usage:
    python main.py [options]

Examples:
    # Run with webcam
    python main.py --source 0

    # Run with video file, labeling mode, 2x kernel
    python main.py --source video.mp4 --mode labeling --kernel x2

    # Still image, portrait orientation
    python main.py --source sample.png --rotation 90

    # Testing mode (process all frames, no drops), headless
    python main.py --source video.mp4 --testing --no-display --max-frames 300
"""

import argparse
import logging
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.config.settings import AppConfig
from src.config.pipeline_config import DisplayMode, KernelPreset, get_config_store
from src.app.BlobCounterApp import BlobCounterApp
from src.gpu.GpuContext import GpuSetupError, ResourceAllocationError
from src.utils.AppLogging import logger, reconfigure_console_level


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="GPU top-hat blob counter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Keys (display window):
  1/2/3  kernel preset (7, 14, 28)
  s      toggle subtraction
  o      toggle opening/closing
  m      cycle display mode (none -> threshold -> labeling)
  i      toggle info panel
  q      quit
        """
    )

    parser.add_argument(
        '--source', '-s',
        default=None,
        help='Video source: file path, camera index (0), RTSP URL or image file'
    )

    parser.add_argument(
        '--testing', '-t',
        action='store_true',
        help='Testing mode: process all frames (no frame drops)'
    )

    parser.add_argument(
        '--no-display',
        action='store_true',
        help='Disable visualization window (headless mode)'
    )

    parser.add_argument(
        '--no-publish',
        action='store_true',
        help='Do not write the state file or watch the control file'
    )

    parser.add_argument(
        '--mode',
        choices=[m.value for m in DisplayMode],
        default=None,
        help='Initial display mode'
    )

    parser.add_argument(
        '--kernel',
        choices=[p.name.lower() for p in KernelPreset],
        default=None,
        help='Initial kernel preset'
    )

    parser.add_argument(
        '--closing',
        action='store_true',
        help='Start in closing mode (dark features)'
    )

    parser.add_argument(
        '--rotation',
        type=int,
        choices=[0, 90, 180, 270],
        default=None,
        help='Frame orientation correction in degrees'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Per-frame DEBUG output on the console'
    )

    parser.add_argument(
        '--max-frames',
        type=int,
        default=None,
        help='Maximum frames to process (for testing)'
    )

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()
    if args.verbose:
        reconfigure_console_level(logging.DEBUG)

    logger.info("=" * 60)
    logger.info("TopHat Blob Counter")
    logger.info("=" * 60)

    app_config = AppConfig()
    if args.source is not None:
        app_config.video_source = args.source
    if args.rotation is not None:
        app_config.frame_rotation = args.rotation

    initial = {}
    if args.mode:
        initial['display_mode'] = args.mode
    if args.kernel:
        initial['kernel_preset'] = args.kernel
    if args.closing:
        initial['opening'] = False
    if initial:
        get_config_store().update(**initial)

    logger.info(f"Source: {app_config.video_source}")
    logger.info(f"Testing mode: {args.testing}")
    logger.info(f"Display: {not args.no_display}")
    logger.info(f"Initial config: {get_config_store().latest().to_dict()}")

    app = BlobCounterApp(
        app_config=app_config,
        enable_display=not args.no_display,
        publish_state=not args.no_publish,
        testing_mode=args.testing
    )

    try:
        app.run(max_frames=args.max_frames)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except (GpuSetupError, ResourceAllocationError) as e:
        logger.critical(f"GPU pipeline unavailable: {e}")
        return 2
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
