"""
GPU Diagnostics and Parity Check Script.

Checks:
1. OpenGL 4.3 context availability and compute limits
2. Program build (all raster + compute stages)
3. GPU vs CPU reference parity on a synthetic scene
4. Frame-time benchmark per display mode

Usage:
    python check_gpu.py [--backend egl] [--frames 100]
"""

import argparse
import os
import sys
import time

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.config.pipeline_config import DisplayMode, PipelineConfig, PipelineConfigStore
from src.config.settings import AppConfig
from src.frame_source.FrameSource import CameraFrame
from src.gpu.CameraTexture import CameraTexture
from src.gpu.GpuContext import GpuSetupError, create_gpu_context, describe_context
from src.processing import CpuReference

SCENE_CENTERS = [(40, 30), (120, 40), (200, 100), (60, 150), (260, 170), (300, 60)]


def check_context(backend):
    """Create a context and print driver limits."""
    print("=" * 60)
    print("OpenGL Diagnostics")
    print("=" * 60)

    try:
        ctx = create_gpu_context(require=430, backend=backend)
    except GpuSetupError as e:
        print(f"✗ {e}")
        print("\nPossible reasons:")
        print("  1. Driver older than OpenGL 4.3 (no compute shaders)")
        print("  2. Headless machine without EGL (try --backend egl)")
        print("  3. Software renderer without compute support (Mesa llvmpipe needs >= 20.x)")
        return None

    for key, value in describe_context(ctx).items():
        print(f"✓ {key}: {value}")
    return ctx


def _make_core(ctx, width, height):
    from src.app.pipeline_core import PipelineCore

    settings = AppConfig()
    settings.processing_width = width
    settings.processing_height = height
    settings.display_width = width
    settings.display_height = height
    store = PipelineConfigStore()
    return PipelineCore(settings=settings, ctx=ctx, config_store=store).setup(), store


def check_parity(ctx, width=320, height=200):
    """Compare GPU top-hat, threshold and label count against the CPU reference."""
    print("\n" + "=" * 60)
    print("GPU / CPU Parity")
    print("=" * 60)

    core, store = _make_core(ctx, width, height)
    camera = CameraTexture(ctx)
    try:
        scene = CpuReference.synthetic_scene(width, height, SCENE_CENTERS)
        camera.update(CameraFrame.from_image(scene))

        store.update(display_mode=DisplayMode.LABELING)
        result = core.render_frame(camera)

        target = core.resources.target("result")
        gpu_tophat = np.frombuffer(target.read_rgba(), np.uint8).reshape(height, width, 4)[:, :, 0]
        cpu_tophat = CpuReference.top_hat(
            CpuReference.to_gray(scene), PipelineConfig().radius(core.settings.base_kernel_radius)
        )
        diff = np.abs(gpu_tophat.astype(int) - cpu_tophat.astype(int))
        print(f"  Top-hat max abs diff: {diff.max()} (mean {diff.mean():.3f})")

        level = CpuReference.otsu_level(cpu_tophat)
        print(f"  Threshold: GPU {result.threshold * 255:.0f}, CPU {level}")

        expected = CpuReference.exact_component_count(cpu_tophat, level)
        print(f"  Labels: GPU {result.label_count}, CPU exact {expected}")

        ok = diff.max() <= 2 and result.label_count == expected
        print("✓ Parity OK" if ok else "✗ Parity mismatch")
        return ok
    finally:
        camera.release()
        core.cleanup()


def benchmark(ctx, frames=100, width=1920, height=1080):
    """Average host-side frame time per display mode."""
    print("\n" + "=" * 60)
    print(f"Benchmark ({width}x{height}, {frames} frames per mode)")
    print("=" * 60)

    core, store = _make_core(ctx, width, height)
    camera = CameraTexture(ctx)
    try:
        centers = [(x, y) for x in range(60, width, 160) for y in range(60, height, 160)]
        camera.update(CameraFrame.from_image(CpuReference.synthetic_scene(width, height, centers)))

        for mode in DisplayMode:
            store.update(display_mode=mode)
            core.render_frame(camera)  # warm-up
            ctx.finish()
            start = time.perf_counter()
            for _ in range(frames):
                core.render_frame(camera)
            ctx.finish()
            elapsed_ms = (time.perf_counter() - start) * 1000 / frames
            print(f"  {mode.value:>10}: {elapsed_ms:.2f} ms/frame ({1000 / elapsed_ms:.0f} FPS)")
        print(f"  Last label count: {core.last_label_count}")
    finally:
        camera.release()
        core.cleanup()


def main():
    parser = argparse.ArgumentParser(description="GPU diagnostics for the TopHat Blob Counter")
    parser.add_argument('--backend', default=AppConfig().gl_backend, help='moderngl backend (e.g. egl)')
    parser.add_argument('--frames', type=int, default=100, help='Benchmark frames per display mode')
    parser.add_argument('--skip-benchmark', action='store_true', help='Only run context and parity checks')
    args = parser.parse_args()

    ctx = check_context(args.backend)
    if ctx is None:
        return 1

    ok = check_parity(ctx)
    if not args.skip_benchmark:
        benchmark(ctx, frames=args.frames)

    ctx.release()
    return 0 if ok else 2


if __name__ == '__main__':
    sys.exit(main())
