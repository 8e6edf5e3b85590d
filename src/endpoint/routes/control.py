"""
Control Routes - Runtime pipeline configuration.

Provides:
- GET  /api/config                      - Requested config (pending control values over app state)
- POST /api/config                      - Partial update of any config key
- POST /api/config/kernel/{preset}      - Select a kernel preset (original, x2, x4 or 1/2/4)
- POST /api/config/display-mode/next    - Cycle None -> Threshold -> Labeling

Changes are written to the control file; the app applies them at its next
frame boundary.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from src.config.pipeline_config import DisplayMode, KernelPreset, PipelineConfig
from src.endpoint.pipeline_state import pending_control, read_control, read_state, write_control
from src.utils.AppLogging import logger

router = APIRouter(prefix="/api/config", tags=["control"])


class ConfigUpdate(BaseModel):
    kernel_preset: Optional[str] = None
    subtraction_enabled: Optional[bool] = None
    opening: Optional[bool] = None
    display_mode: Optional[str] = None


def _requested_config() -> PipelineConfig:
    """
    App-reported config with pending control values applied on top.

    Control keys the app has already taken in (by revision) are skipped: the
    running config may have moved on through key presses since.
    """
    state = read_state()
    base = PipelineConfig.from_dict(state.get("config") or {})
    pending = pending_control(read_control(), int(state.get("control_revision") or 0))
    return PipelineConfig.from_dict(pending, base=base)


def _apply(changes: Dict[str, Any]) -> Dict[str, Any]:
    try:
        config = PipelineConfig.from_dict(changes, base=_requested_config())
    except (AttributeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    # Store canonical forms only
    normalized = {k: v for k, v in config.to_dict().items() if k in changes}
    write_control(normalized)
    return {"status": "staged", "config": config.to_dict()}


@router.get("")
async def get_config() -> Dict[str, Any]:
    try:
        config = _requested_config()
    except (AttributeError, ValueError) as e:
        logger.warning(f"[Control] Ignoring malformed control data: {e}")
        config = PipelineConfig()
    return {
        "config": config.to_dict(),
        "kernel_presets": [p.name for p in KernelPreset],
        "display_modes": [m.value for m in DisplayMode],
    }


@router.post("")
async def update_config(update: ConfigUpdate) -> Dict[str, Any]:
    changes = {k: v for k, v in update.model_dump().items() if v is not None}
    if not changes:
        raise HTTPException(status_code=400, detail="No configuration values given")
    return _apply(changes)


@router.post("/kernel/{preset}")
async def set_kernel_preset(preset: str) -> Dict[str, Any]:
    return _apply({"kernel_preset": preset})


@router.post("/display-mode/next")
async def next_display_mode() -> Dict[str, Any]:
    current = _requested_config().display_mode
    return _apply({"display_mode": current.next().value})
