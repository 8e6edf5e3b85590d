"""
Test for the stats/control endpoint and the control-file round trip.

Tests:
- /api/stats returns the published state without internal fields
- /api/config GET/POST, kernel preset and display-mode cycling
- Invalid updates rejected with 400 and the control file untouched
- /health reports pipeline liveness from the state file
- ConfigWatcher stages control changes on the app's config store
"""

import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fastapi.testclient import TestClient

from src.app.pipeline_visualizer import PipelineVisualizer
from src.config.ConfigWatcher import ConfigWatcher
from src.config.pipeline_config import DisplayMode, KernelPreset, PipelineConfigStore
from src.constants import CONFIG_KEYS
from src.endpoint.pipeline_state import (
    pending_control, read_control, read_state, write_control, write_state,
)


class _TempFiles:
    """Point the state/control files at a temp dir for the duration of a test."""

    def __enter__(self):
        self._dir = tempfile.TemporaryDirectory()
        self.state = os.path.join(self._dir.name, "state.json")
        self.control = os.path.join(self._dir.name, "control.json")
        self._saved = {k: os.environ.get(k) for k in ("PIPELINE_STATE_FILE", "PIPELINE_CONTROL_FILE")}
        os.environ["PIPELINE_STATE_FILE"] = self.state
        os.environ["PIPELINE_CONTROL_FILE"] = self.control
        return self

    def __exit__(self, *exc):
        for key, value in self._saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        self._dir.cleanup()


def _client():
    from src.endpoint.server import app
    return TestClient(app)


def _publish(running=True, **overrides):
    state = {
        "fps": 58,
        "label_count": 12,
        "threshold": 0.42,
        "frames": 900,
        "config": {
            "kernel_preset": "ORIGINAL",
            "subtraction_enabled": True,
            "opening": True,
            "display_mode": "labeling",
        },
        "processing_size": [1920, 1080],
        "gl_version": "4.6",
        "running": running,
    }
    state.update(overrides)
    assert write_state(state)


def test_state_defaults_and_round_trip():
    with _TempFiles():
        empty = read_state()
        assert empty["fps"] == 0 and empty["running"] is False
        assert read_control() == {}

        _publish()
        state = read_state()
        assert state["label_count"] == 12
        assert state["_updated_at"] > 0

        first = write_control({"opening": False})
        second = write_control({"display_mode": "threshold"})
        assert second["_revision"] == first["_revision"] + 1
        assert read_control()["opening"] is False, "Writes merge"
        assert read_control()["display_mode"] == "threshold"
        assert read_control()["_key_revisions"] == {"opening": 1, "display_mode": 2}
    print("PASS: state/control files")


def test_pending_control_by_revision():
    control = {
        "opening": False,
        "display_mode": "threshold",
        "kernel_preset": "X2",
        "_revision": 3,
        "_key_revisions": {"opening": 1, "display_mode": 3},
    }
    assert pending_control(control, 0) == {"opening": False, "display_mode": "threshold", "kernel_preset": "X2"}
    assert pending_control(control, 2) == {"display_mode": "threshold", "kernel_preset": "X2"}, "Unstamped keys stay pending"
    assert pending_control(control, 3) == {"kernel_preset": "X2"}
    print("PASS: pending control values by revision")


def test_stats_endpoint():
    with _TempFiles():
        client = _client()
        response = client.get("/api/stats")
        assert response.status_code == 200
        assert response.json()["label_count"] == 0

        _publish()
        data = client.get("/api/stats").json()
        assert data["fps"] == 58
        assert data["label_count"] == 12
        assert data["config"]["display_mode"] == "labeling"
        assert not any(k.startswith("_") for k in data)
    print("PASS: /api/stats")


def test_config_get_and_post():
    with _TempFiles():
        client = _client()
        _publish()

        data = client.get("/api/config").json()
        assert data["config"]["display_mode"] == "labeling"
        assert data["kernel_presets"] == ["ORIGINAL", "X2", "X4"]
        assert data["display_modes"] == ["none", "threshold", "labeling"]

        response = client.post("/api/config", json={"opening": False, "kernel_preset": "x2"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "staged"
        assert body["config"]["opening"] is False
        assert body["config"]["kernel_preset"] == "X2"
        assert body["config"]["display_mode"] == "labeling", "Untouched keys kept"

        control = read_control()
        assert control["opening"] is False
        assert control["kernel_preset"] == "X2", "Stored in canonical form"
        assert "display_mode" not in control

        # Pending control values shadow the app-reported config
        assert client.get("/api/config").json()["config"]["kernel_preset"] == "X2"
    print("PASS: /api/config GET/POST")


def test_kernel_and_display_mode_routes():
    with _TempFiles():
        client = _client()

        response = client.post("/api/config/kernel/x4")
        assert response.status_code == 200
        assert response.json()["config"]["kernel_preset"] == "X4"
        assert client.post("/api/config/kernel/1").json()["config"]["kernel_preset"] == "ORIGINAL"

        modes = [client.post("/api/config/display-mode/next").json()["config"]["display_mode"] for _ in range(3)]
        assert modes == ["threshold", "labeling", "none"]
    print("PASS: kernel preset and display-mode cycling")


def test_invalid_updates_rejected():
    with _TempFiles():
        client = _client()

        assert client.post("/api/config", json={}).status_code == 400
        assert client.post("/api/config", json={"display_mode": "sepia"}).status_code == 400
        assert client.post("/api/config/kernel/x3").status_code == 400
        assert read_control() == {}, "Nothing written on rejection"
    print("PASS: invalid updates -> 400")


def test_health():
    with _TempFiles():
        client = _client()

        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["pipeline_active"] is False
        assert data["settings"]["kernel_radii"]["X4"] == 4 * data["settings"]["kernel_radii"]["ORIGINAL"]

        _publish()
        data = client.get("/health").json()
        assert data["pipeline_active"] is True
        assert data["pipeline"]["label_count"] == 12
        assert data["pipeline"]["gl_version"] == "4.6"

        _publish(running=False)
        assert client.get("/health").json()["pipeline_active"] is False
    print("PASS: /health")


def test_config_watcher_stages_changes():
    with _TempFiles() as files:
        store = PipelineConfigStore()
        watcher = ConfigWatcher(control_file=files.control, poll_interval=0.05)
        watcher.add_watch("kernel_preset", lambda old, new: store.update(kernel_preset=new))
        watcher.add_watch("display_mode", lambda old, new: store.update(display_mode=new))

        assert watcher.check_changes() == 0

        client = _client()
        client.post("/api/config", json={"kernel_preset": "x2", "display_mode": "threshold"})

        assert watcher.check_changes() == 2
        assert watcher.check_changes() == 0, "Unchanged values fire nothing"
        assert store.current.kernel_preset is KernelPreset.ORIGINAL, "Staged, not applied"

        config = store.snapshot()
        assert config.kernel_preset is KernelPreset.X2
        assert config.display_mode is DisplayMode.THRESHOLD

        watcher.remove_watch("display_mode")
        write_control({"display_mode": "labeling"})
        assert watcher.check_changes() == 0
    print("PASS: ConfigWatcher")


def test_config_watcher_callback_errors_contained():
    with _TempFiles() as files:
        def broken(old, new):
            raise RuntimeError("boom")

        watcher = ConfigWatcher(control_file=files.control)
        watcher.add_watch("opening", broken)
        write_control({"opening": False})
        assert watcher.check_changes() == 0
    print("PASS: callback errors logged, not raised")



def test_rewriting_same_value_fires_again():
    with _TempFiles() as files:
        seen = []
        write_control({"opening": True})
        watcher = ConfigWatcher(control_file=files.control)
        watcher.add_watch("opening", lambda old, new: seen.append(new))
        assert watcher.check_changes() == 0, "Baseline does not fire"

        write_control({"opening": True})
        assert watcher.check_changes() == 1
        assert seen == [True]
        assert watcher.revision == read_control()["_revision"]
    print("PASS: rewritten value fires")


def test_request_after_key_press_is_applied():
    with _TempFiles() as files:
        store = PipelineConfigStore()
        write_control(store.latest().to_dict())  # startup baseline
        watcher = ConfigWatcher(control_file=files.control)
        for key in CONFIG_KEYS:
            watcher.add_watch(key, lambda old, new, key=key: store.update(**{key: new}))

        def next_frame():
            applied = watcher.revision
            store.snapshot()
            write_state({"config": store.current.to_dict(), "control_revision": applied, "running": True})

        next_frame()
        assert PipelineVisualizer(store).handle_key(ord("o"))
        next_frame()
        assert store.current.opening is False

        client = _client()
        assert client.get("/api/config").json()["config"]["opening"] is False, "Running config, not the baseline"

        response = client.post("/api/config", json={"opening": True})
        assert response.status_code == 200
        assert response.json()["config"]["opening"] is True
        assert client.get("/api/config").json()["config"]["opening"] is True, "Request shown while pending"

        assert watcher.check_changes() == 1
        next_frame()
        assert store.current.opening is True
        assert client.get("/api/config").json()["config"]["opening"] is True
    print("PASS: request equal to the baseline value applied after a key press")


if __name__ == "__main__":
    test_state_defaults_and_round_trip()
    test_pending_control_by_revision()
    test_stats_endpoint()
    test_config_get_and_post()
    test_kernel_and_display_mode_routes()
    test_invalid_updates_rejected()
    test_health()
    test_config_watcher_stages_changes()
    test_config_watcher_callback_errors_contained()
    test_rewriting_same_value_fires_again()
    test_request_after_key_press_is_applied()
    print("\nAll endpoint tests passed")
