"""
Pipeline State - Cross-process shared state between the app and the endpoint.

Two JSON files:
- state file: written by BlobCounterApp once per stats update
  (fps, label count, threshold, active config, GL info), read by the
  FastAPI server for /api/stats and the SSE stream.
- control file: written by the FastAPI server on config changes, polled by
  ConfigWatcher in the app, which stages the values for the next frame.
  Each write bumps `_revision` and stamps the written keys in
  `_key_revisions`; the state file echoes the revision the running config
  includes as `control_revision`.
"""

import json
import os
import time
from typing import Dict, Any, Optional

from src.utils.AppLogging import logger

_DEFAULT_STATE_PATH = "data/pipeline_state.json"
_DEFAULT_CONTROL_PATH = "data/pipeline_control.json"


def _get_state_path() -> str:
    """Get the state file path, checking env var at call time."""
    return os.getenv("PIPELINE_STATE_FILE", _DEFAULT_STATE_PATH)


def _get_control_path() -> str:
    return os.getenv("PIPELINE_CONTROL_FILE", _DEFAULT_CONTROL_PATH)


def _write_json_atomic(data: Dict[str, Any], filepath: str) -> None:
    os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
    # Write atomically via temp file to prevent partial reads
    tmp_path = filepath + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump(data, f)
    os.replace(tmp_path, filepath)


def _read_json(filepath: str) -> Optional[Dict[str, Any]]:
    if not os.path.exists(filepath):
        return None
    with open(filepath, "r") as f:
        return json.load(f)


def write_state(state: Dict[str, Any], state_file: Optional[str] = None) -> bool:
    """
    Write pipeline state to the shared JSON file (called by BlobCounterApp).

    Returns:
        True if written successfully
    """
    filepath = state_file or _get_state_path()
    try:
        state["_updated_at"] = time.time()
        _write_json_atomic(state, filepath)
        return True
    except Exception as e:
        logger.error(f"[PipelineState] Failed to write state: {e}")
        return False


def read_state(state_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Read pipeline state (called by the FastAPI server).

    Returns a default empty state if the file doesn't exist or is unreadable.
    """
    filepath = state_file or _get_state_path()
    try:
        state = _read_json(filepath)
        return state if state is not None else _empty_state()
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"[PipelineState] Failed to read state: {e}")
        return _empty_state()


def write_control(changes: Dict[str, Any], control_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge *changes* into the control file (called by the FastAPI server).

    Returns:
        The full control dict after the merge
    """
    filepath = control_file or _get_control_path()
    control = read_control(filepath)
    control.update(changes)
    revision = int(control.get("_revision", 0)) + 1
    # Every written key is stamped, so rewriting an unchanged value still counts
    key_revisions = dict(control.get("_key_revisions") or {})
    for key in changes:
        key_revisions[key] = revision
    control["_revision"] = revision
    control["_key_revisions"] = key_revisions
    control["_updated_at"] = time.time()
    _write_json_atomic(control, filepath)
    logger.info(f"[PipelineState] Control updated: {changes}")
    return control


def read_control(control_file: Optional[str] = None) -> Dict[str, Any]:
    """Read the control file; empty dict if missing or unreadable."""
    filepath = control_file or _get_control_path()
    try:
        control = _read_json(filepath)
        return control if control is not None else {}
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"[PipelineState] Failed to read control: {e}")
        return {}


def control_key_revision(control: Dict[str, Any], key: str) -> Optional[int]:
    """Revision that last wrote *key*, None for files without per-key stamps."""
    key_revisions = control.get("_key_revisions")
    if not isinstance(key_revisions, dict) or key not in key_revisions:
        return None
    return int(key_revisions[key])


def pending_control(control: Dict[str, Any], applied_revision: int = 0) -> Dict[str, Any]:
    """
    Control values written after *applied_revision*.

    The app publishes the control revision its running config includes;
    anything older is either applied or was superseded by a key press.
    Unstamped keys count as pending.
    """
    pending = {}
    for key, value in control.items():
        if key.startswith("_"):
            continue
        revision = control_key_revision(control, key)
        if revision is None or revision > applied_revision:
            pending[key] = value
    return pending


def _empty_state() -> Dict[str, Any]:
    """Return default empty pipeline state."""
    return {
        "fps": 0,
        "label_count": 0,
        "threshold": None,
        "frames": 0,
        "config": None,
        "processing_size": None,
        "gl_version": None,
        "running": False,
        "control_revision": 0,
        "_updated_at": 0
    }
