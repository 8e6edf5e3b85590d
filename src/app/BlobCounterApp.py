"""
Main application orchestrator for the TopHat Blob Counter.

Wires the frame source, camera texture, GPU pipeline, display window,
config watcher and state publishing into one processing loop.
"""

import signal
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import cv2
import psutil

from src.app.pipeline_core import FrameResult, PipelineCore
from src.app.pipeline_visualizer import PipelineVisualizer
from src.config.ConfigWatcher import ConfigWatcher
from src.config.pipeline_config import PipelineConfigStore, get_config_store
from src.config.settings import AppConfig
from src.constants import CONFIG_KEYS
from src.endpoint.pipeline_state import write_control, write_state
from src.frame_source.FrameSource import CameraFrame, FrameSource
from src.frame_source.FrameSourceFactory import FrameSourceFactory
from src.gpu.CameraTexture import CameraTexture
from src.utils.AppLogging import logger


@dataclass
class CounterState:
    """Latest values reported by the pipeline."""
    fps: int = 0
    label_count: int = 0
    threshold: Optional[float] = None
    stats_updates: int = 0


class BlobCounterApp:
    """
    Application loop: frame source -> camera texture -> pipeline -> sink.

    Handles process concerns only (signals, watcher thread, state file,
    memory diagnostics); all GPU work lives in PipelineCore.
    """

    def __init__(
        self,
        app_config: Optional[AppConfig] = None,
        frame_source: Optional[FrameSource] = None,
        config_store: Optional[PipelineConfigStore] = None,
        enable_display: bool = True,
        publish_state: bool = True,
        testing_mode: bool = False,
        install_signal_handlers: bool = True,
    ):
        """
        Initialize counter application.

        Args:
            app_config: Application configuration
            frame_source: Optional pre-configured frame source
            config_store: Config store (defaults to the process-wide one)
            enable_display: Show the OpenCV window
            publish_state: Write stats to the shared state file and watch the control file
            testing_mode: Synchronous frame reading (no drops)
            install_signal_handlers: Stop cleanly on SIGINT/SIGTERM (main thread only)
        """
        self.app_config = app_config or AppConfig()
        self.enable_display = enable_display
        self.publish_state = publish_state
        self.testing_mode = testing_mode

        self._frame_source = frame_source
        self._config_store = config_store or get_config_store()
        self._pipeline_core: Optional[PipelineCore] = None
        self._camera_texture: Optional[CameraTexture] = None
        self._visualizer: Optional[PipelineVisualizer] = None
        self._config_watcher: Optional[ConfigWatcher] = None

        self.state = CounterState()
        self.last_result: Optional[FrameResult] = None
        self._running = False
        self._frame_count = 0
        self._start_time: Optional[float] = None
        self._surface_size: Optional[Tuple[int, int]] = None
        self._applied_control_revision = 0

        self._last_memory_log_time: float = 0.0
        self._memory_log_interval: float = self.app_config.memory_log_interval

        self._on_stats_callback: Optional[Callable[[int, int], None]] = None

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info("[BlobCounterApp] Initialized")

    def _signal_handler(self, signum, _frame):
        """Handle shutdown signals."""
        logger.info(f"[BlobCounterApp] Received signal {signum}, shutting down...")
        self._running = False

    def _maybe_log_memory_usage(self):
        """Log memory usage periodically for diagnostics."""
        current_time = time.perf_counter()
        if current_time - self._last_memory_log_time < self._memory_log_interval:
            return

        self._last_memory_log_time = current_time

        try:
            mem_mb = psutil.Process().memory_info().rss / (1024 * 1024)

            queue_size = 0
            if getattr(self._frame_source, 'queue', None) is not None:
                queue_size = self._frame_source.queue.qsize()

            logger.info(
                f"[MEMORY] RSS={mem_mb:.1f}MB | "
                f"frame_queue={queue_size} | "
                f"labels={self.state.label_count} | "
                f"frame={self._frame_count}"
            )
        except psutil.Error as e:
            logger.debug(f"[MEMORY] Failed to get memory info: {e}")

    def _init_components(self):
        """Create frame source, GPU pipeline, window and watcher."""
        cfg = self.app_config
        cfg.log_configuration()

        if self._frame_source is None:
            self._frame_source = FrameSourceFactory.create(
                'auto',
                source=cfg.video_source,
                queue_size=cfg.frame_queue_size,
                target_fps=cfg.frame_target_fps,
                testing_mode=self.testing_mode or cfg.opencv_testing_mode,
                rotation=cfg.frame_rotation,
            )

        self._pipeline_core = PipelineCore(settings=cfg, config_store=self._config_store).setup()
        self._pipeline_core.on_stats_updated = self._on_stats_updated
        self._camera_texture = CameraTexture(self._pipeline_core.ctx)

        if self.enable_display:
            self._visualizer = PipelineVisualizer(
                self._config_store,
                window_name=cfg.window_name,
                display_size=(cfg.display_width, cfg.display_height),
                base_radius=cfg.base_kernel_radius,
            )

        if self.publish_state:
            # Fresh control baseline so stale requests from a previous run are not replayed
            write_control(self._config_store.latest().to_dict(), cfg.control_file)
            self._config_watcher = ConfigWatcher(cfg.control_file, cfg.control_poll_interval)
            for key in CONFIG_KEYS:
                self._config_watcher.add_watch(key, self._make_control_callback(key))
            self._config_watcher.start()

        logger.info(f"[BlobCounterApp] Components ready (GL {self._pipeline_core.get_gl_version()})")

    def _make_control_callback(self, key: str):
        def _apply(_old, new):
            try:
                self._config_store.update(**{key: new})
            except (AttributeError, ValueError) as e:
                logger.warning(f"[BlobCounterApp] Rejected control value {key}={new!r}: {e}")
        return _apply

    def _surface_for(self, frame: CameraFrame) -> Tuple[int, int]:
        """Display surface oriented like the incoming frame."""
        long_side = max(self.app_config.display_width, self.app_config.display_height)
        short_side = min(self.app_config.display_width, self.app_config.display_height)
        width, height = frame.oriented_size
        return (short_side, long_side) if height > width else (long_side, short_side)

    def _process_frame(self, frame: CameraFrame) -> FrameResult:
        """Upload, render, present."""
        core = self._pipeline_core

        surface = self._surface_for(frame)
        if surface != self._surface_size:
            self._surface_size = surface
            if core.on_surface_changed(*surface):
                logger.info(f"[BlobCounterApp] Orientation change -> {core.resources.width}x{core.resources.height}")
            if self._visualizer is not None:
                self._visualizer.display_size = surface

        t0 = time.perf_counter()
        self._camera_texture.update(frame)
        core.metrics.record_stage("upload", (time.perf_counter() - t0) * 1000)

        # Read before the frame snapshots the store: everything up to this revision is staged
        if self._config_watcher is not None:
            self._applied_control_revision = self._config_watcher.revision
        result = core.render_frame(self._camera_texture)
        if result.threshold is not None:
            self.state.threshold = result.threshold

        if self._visualizer is not None:
            t0 = time.perf_counter()
            display = core.read_display()
            annotated = self._visualizer.annotate_frame(
                display, result.config, core.get_gl_version(), result.threshold
            )
            if not self._visualizer.show(annotated):
                self._running = False
            core.metrics.record_stage("present", (time.perf_counter() - t0) * 1000)

        return result

    def _on_stats_updated(self, fps: int, label_count: int):
        """Once-per-second stats from the pipeline."""
        self.state.fps = fps
        self.state.label_count = label_count
        self.state.stats_updates += 1

        if self._visualizer is not None:
            self._visualizer.update_stats(fps, label_count)
        if self._on_stats_callback is not None:
            self._on_stats_callback(fps, label_count)
        if self.publish_state:
            self._publish_pipeline_state()

    def _publish_pipeline_state(self, running: bool = True):
        """Write current stats to the shared file for the FastAPI server."""
        core = self._pipeline_core
        resources = core.resources if core is not None else None
        state = {
            "fps": self.state.fps,
            "label_count": self.state.label_count,
            "threshold": self.state.threshold,
            "frames": self._frame_count,
            "config": self._config_store.current.to_dict(),
            "processing_size": [resources.width, resources.height] if resources is not None else None,
            "gl_version": core.get_gl_version() if core is not None else None,
            "running": running,
            "control_revision": self._applied_control_revision,
        }
        write_state(state, self.app_config.state_file)

    def run(self, max_frames: Optional[int] = None):
        """
        Run the processing loop.

        Args:
            max_frames: Optional maximum frames to process (for testing)
        """
        logger.info("[BlobCounterApp] Starting...")

        self._init_components()
        if self.publish_state:
            self._publish_pipeline_state()

        self._running = True
        self._start_time = time.perf_counter()
        self._frame_count = 0

        try:
            for frame, _latency_ms in self._frame_source.frames():
                if not self._running:
                    break

                if max_frames and self._frame_count >= max_frames:
                    break

                self._frame_count += 1
                self.last_result = self._process_frame(frame)

                if self._frame_count % 100 == 0:
                    logger.info(
                        f"[BlobCounterApp] Frame {self._frame_count}: "
                        f"FPS={self.state.fps}, Labels={self.state.label_count}"
                    )

                self._maybe_log_memory_usage()

        finally:
            self._cleanup()

    def _cleanup(self):
        """Clean up all resources."""
        logger.info("[BlobCounterApp] Cleaning up...")

        if self._config_watcher is not None:
            self._config_watcher.stop()

        if self.publish_state and self._pipeline_core is not None:
            self._publish_pipeline_state(running=False)

        if self._camera_texture is not None:
            self._camera_texture.release()

        summary = self._pipeline_core.metrics.get_summary() if self._pipeline_core is not None else None
        if self._pipeline_core is not None:
            self._pipeline_core.cleanup()

        if self._visualizer is not None:
            self._visualizer.cleanup()

        if self._frame_source is not None:
            self._frame_source.cleanup()

        if self.enable_display:
            cv2.destroyAllWindows()

        total_time = time.perf_counter() - self._start_time if self._start_time else 0

        logger.info("=" * 50)
        logger.info("[BlobCounterApp] Final Statistics:")
        logger.info(f"  Total frames: {self._frame_count}")
        logger.info(f"  Total time: {total_time:.1f}s")
        logger.info(f"  Average FPS: {self._frame_count / total_time:.1f}" if total_time > 0 else "  Average FPS: N/A")
        logger.info(f"  Last label count: {self.state.label_count}")
        if summary is not None:
            logger.info(f"  Avg frame time: {summary['frames']['avg_frame_time_ms']:.1f}ms")
        logger.info("=" * 50)

    def set_on_stats_callback(self, callback: Callable[[int, int], None]):
        """Set callback for once-per-second stats."""
        self._on_stats_callback = callback

    def get_state(self) -> CounterState:
        return self.state

    def stop(self):
        """Stop the application."""
        self._running = False
