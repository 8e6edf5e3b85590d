"""
Test for the per-frame orchestrator on a synthetic scene.

Tests:
- Pass-through mode presents the top-hat result in camera row order
- Threshold mode presents a binary image at the Otsu level
- Labeling mode counts every blob
- Config changes apply at the next frame boundary only
- Stats callback fires once a second with the last label count
- Orientation flip reallocates the processing targets
- Empty readbacks keep the previous threshold and label count
"""

import os
import sys

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.app.pipeline_core import PipelineCore
from src.config.pipeline_config import DisplayMode
from src.config.settings import AppConfig
from src.frame_source.FrameSource import CameraFrame
from src.gpu.CameraTexture import CameraTexture
from src.processing import CpuReference

WIDTH, HEIGHT = 160, 120
CENTERS = [(20, 20), (60, 25), (100, 70), (30, 90), (140, 100), (120, 15)]


class FakeClock:
    def __init__(self):
        self.now = 50.0

    def __call__(self):
        return self.now


class _EmptyReadback:
    """Forwards everything to the wrapped GPU object except reads, which return no data."""

    def __init__(self, wrapped):
        self._wrapped = wrapped

    def read(self, *args, **kwargs):
        return b""

    def read_rgba(self):
        return b""

    def __getattr__(self, name):
        return getattr(self._wrapped, name)


def _scene():
    return CpuReference.synthetic_scene(WIDTH, HEIGHT, CENTERS)


def _render(ctx, core, image, times=1):
    camera = CameraTexture(ctx)
    try:
        camera.update(CameraFrame.from_image(image))
        result = None
        for _ in range(times):
            result = core.render_frame(camera)
    finally:
        camera.release()
    return result


def test_render_before_setup_rejected():
    core = PipelineCore(settings=AppConfig())
    try:
        core.render_frame(None)
        assert False, "Expected RuntimeError"
    except RuntimeError:
        pass
    print("PASS: render_frame requires setup")


def test_pass_through_shows_top_hat(gl_ctx, make_core):
    core = make_core(WIDTH, HEIGHT)
    result = _render(gl_ctx, core, _scene())

    assert result.display_mode is DisplayMode.PASS_THROUGH
    assert result.threshold is None and result.label_count is None

    display = core.read_display()
    expected = CpuReference.top_hat(CpuReference.to_gray(_scene()), 7)
    assert display.shape == (HEIGHT, WIDTH, 3)
    diff = np.abs(display[:, :, 0].astype(int) - expected.astype(int))
    assert diff.max() <= 1, f"Display differs from top-hat by {diff.max()}"
    print("PASS: pass-through shows the top-hat in camera row order")


def test_threshold_mode(gl_ctx, make_core):
    core = make_core(WIDTH, HEIGHT)
    core.config_store.update(display_mode="threshold")
    result = _render(gl_ctx, core, _scene())

    tophat = CpuReference.top_hat(CpuReference.to_gray(_scene()), 7)
    level = CpuReference.otsu_level(tophat)
    assert result.threshold is not None
    gpu_level = int(round(result.threshold * 255))
    assert abs(gpu_level - level) <= 2

    target = core.resources.target("result")
    gpu_tophat = np.frombuffer(target.read_rgba(), np.uint8).reshape(HEIGHT, WIDTH, 4)[:, :, 0]
    display = core.read_display()[:, :, 0]
    assert set(np.unique(display)) <= {0, 255}
    assert np.array_equal(display == 255, gpu_tophat >= gpu_level)
    print(f"PASS: threshold mode at level {gpu_level}")


def test_labeling_counts_blobs(gl_ctx, make_core):
    core = make_core(WIDTH, HEIGHT)
    core.config_store.update(display_mode=DisplayMode.LABELING)
    result = _render(gl_ctx, core, _scene())

    assert result.label_count == len(CENTERS)
    assert core.last_label_count == len(CENTERS)

    display = core.read_display()
    x, y = CENTERS[0]
    assert display[y, x].max() > 0, "Blob coloured"
    assert display[5, 80].max() == 0, "Background black"
    print(f"PASS: labeling found {result.label_count} blobs")


def test_config_applies_next_frame(gl_ctx, make_core):
    core = make_core(WIDTH, HEIGHT)
    camera = CameraTexture(gl_ctx)
    try:
        camera.update(CameraFrame.from_image(_scene()))
        first = core.render_frame(camera)
        core.config_store.update(display_mode="labeling", opening=False)
        assert core.config_store.current.opening is True, "Frame in flight unchanged"
        second = core.render_frame(camera)
    finally:
        camera.release()

    assert first.config.opening is True
    assert second.config.opening is False
    assert second.display_mode is DisplayMode.LABELING
    assert second.frame_index == first.frame_index + 1
    print("PASS: config applied at frame boundary")


def test_stats_callback(gl_ctx, make_core):
    clock = FakeClock()
    core = make_core(WIDTH, HEIGHT, clock=clock)
    core.config_store.update(display_mode="labeling")
    emitted = []
    core.on_stats_updated = lambda fps, labels: emitted.append((fps, labels))

    camera = CameraTexture(gl_ctx)
    try:
        camera.update(CameraFrame.from_image(_scene()))
        for _ in range(3):
            core.render_frame(camera)
        assert emitted == []
        clock.now += 1.0
        core.render_frame(camera)
    finally:
        camera.release()

    assert len(emitted) == 1
    fps, labels = emitted[0]
    assert fps == 4
    assert labels == len(CENTERS), "Carries the previous frame's count"
    print(f"PASS: stats callback ({fps}, {labels})")


def test_orientation_flip(gl_ctx, make_core):
    core = make_core(WIDTH, HEIGHT)
    generation = core.resources.generation

    assert core.on_surface_changed(200, 100) is False
    assert core.on_surface_changed(90, 240) is True
    assert (core.resources.width, core.resources.height) == (HEIGHT, WIDTH)
    assert core.resources.labels.size == (HEIGHT, WIDTH)
    assert core.resources.generation == generation + 1

    core.config_store.update(display_mode="labeling")
    portrait = np.ascontiguousarray(np.rot90(_scene()))
    result = _render(gl_ctx, core, portrait)
    assert (result.width, result.height) == (HEIGHT, WIDTH)
    assert result.label_count == len(CENTERS)

    assert core.on_surface_changed(320, 240) is True
    assert (core.resources.width, core.resources.height) == (WIDTH, HEIGHT)
    print("PASS: orientation flip reallocation")


def test_empty_readback_keeps_previous_values(gl_ctx, make_core):
    core = make_core(WIDTH, HEIGHT)
    core.config_store.update(display_mode=DisplayMode.LABELING)
    first = _render(gl_ctx, core, _scene())
    assert first.label_count == len(CENTERS)

    estimator = core.threshold_estimator
    threshold, level = estimator.threshold, estimator.last_level
    assert level > 0

    downsample, counter_buffer = core.resources.downsample, core.counter.counter
    core.resources.downsample = _EmptyReadback(downsample)
    core.counter.counter = _EmptyReadback(counter_buffer)
    try:
        # A black frame moves both values when the reads succeed
        second = _render(gl_ctx, core, np.zeros_like(_scene()))
    finally:
        core.resources.downsample = downsample
        core.counter.counter = counter_buffer

    assert estimator.missed_readbacks == 1
    assert core.counter.missed_readbacks == 1
    assert second.threshold == threshold
    assert estimator.last_level == level
    assert second.label_count == len(CENTERS)
    assert core.last_label_count == len(CENTERS)
    assert core.counter.last_count == len(CENTERS)

    third = _render(gl_ctx, core, CpuReference.synthetic_scene(WIDTH, HEIGHT, CENTERS[:3]))
    assert estimator.missed_readbacks == 1
    assert third.label_count == 3, "Next good readback updates again"
    print("PASS: empty readbacks keep the previous threshold and count")
