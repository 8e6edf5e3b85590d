"""
End-to-end test: headless app run on a still image.

Tests:
- Bounded run processes exactly max_frames frames
- Final state file reports running=False with the frame count
- Stale control values from a previous run are not replayed
- Published control revision covers the startup baseline
"""

import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.app.BlobCounterApp import BlobCounterApp
from src.config.pipeline_config import DisplayMode, PipelineConfig, PipelineConfigStore
from src.config.settings import AppConfig
from src.endpoint.pipeline_state import read_control, read_state, write_control
from src.frame_source.ImageFrameSource import ImageFrameSource
from src.processing import CpuReference

CENTERS = [(20, 20), (60, 25), (100, 70), (30, 90)]


def test_headless_run(gl_ctx):
    with tempfile.TemporaryDirectory() as tmp:
        settings = AppConfig()
        settings.processing_width, settings.processing_height = 160, 120
        settings.display_width, settings.display_height = 160, 120
        settings.state_file = os.path.join(tmp, "state.json")
        settings.control_file = os.path.join(tmp, "control.json")
        settings.control_poll_interval = 0.05

        # Left over from an earlier run
        write_control({"display_mode": "none", "kernel_preset": "X4"}, settings.control_file)

        store = PipelineConfigStore(PipelineConfig(display_mode=DisplayMode.LABELING))
        source = ImageFrameSource(CpuReference.synthetic_scene(160, 120, CENTERS), max_frames=50)
        app = BlobCounterApp(
            app_config=settings,
            frame_source=source,
            config_store=store,
            enable_display=False,
            publish_state=True,
            testing_mode=True,
            install_signal_handlers=False,
        )

        emitted = []
        app.set_on_stats_callback(lambda fps, labels: emitted.append((fps, labels)))
        app.run(max_frames=5)

        assert len(emitted) == app.get_state().stats_updates

        assert app.last_result is not None
        assert app.last_result.frame_index == 5
        assert app.last_result.display_mode is DisplayMode.LABELING, "Stale control ignored"
        assert app.last_result.label_count == len(CENTERS)

        state = read_state(settings.state_file)
        assert state["running"] is False
        assert state["frames"] == 5
        assert state["processing_size"] == [160, 120]
        assert state["config"]["display_mode"] == "labeling"

        control = read_control(settings.control_file)
        assert control["display_mode"] == "labeling"
        assert control["kernel_preset"] == "ORIGINAL"
        assert state["control_revision"] == control["_revision"], "Baseline counted as applied"
    print("PASS: headless app run")
