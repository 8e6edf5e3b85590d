"""
Runtime pipeline configuration with frame-boundary semantics.

Host-side controls (keyboard, HTTP endpoint, tests) never touch the value a
frame is using. They write a *pending* slot; the orchestrator calls
``snapshot()`` exactly once at the start of every frame, which promotes the
pending value and returns an immutable PipelineConfig used by every pass of
that frame.
"""

import threading
from dataclasses import dataclass, replace, asdict
from enum import Enum
from typing import Any, Dict, Optional

from src.utils.AppLogging import logger


class KernelPreset(Enum):
    """Structuring-element radius presets, as multiples of the base radius."""
    ORIGINAL = 1
    X2 = 2
    X4 = 4

    def radius(self, base_radius: int) -> int:
        return base_radius * self.value

    @classmethod
    def parse(cls, value: Any) -> "KernelPreset":
        """Accept a preset, its name ('x2'), or its multiplier (2)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            if key.isdigit():
                return cls(int(key))
            raise ValueError(f"Unknown kernel preset: {value}")
        return cls(int(value))


class DisplayMode(Enum):
    """Output mode; labeling implies thresholding."""
    PASS_THROUGH = "none"
    THRESHOLD = "threshold"
    LABELING = "labeling"

    @property
    def threshold_enabled(self) -> bool:
        return self is not DisplayMode.PASS_THROUGH

    @property
    def labeling_enabled(self) -> bool:
        return self is DisplayMode.LABELING

    def next(self) -> "DisplayMode":
        """None -> Threshold -> Labeling -> None."""
        order = list(DisplayMode)
        return order[(order.index(self) + 1) % len(order)]

    @classmethod
    def parse(cls, value: Any) -> "DisplayMode":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for mode in cls:
            if key in (mode.value, mode.name.lower()):
                return mode
        raise ValueError(f"Unknown display mode: {value}")


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable per-frame configuration snapshot."""
    kernel_preset: KernelPreset = KernelPreset.ORIGINAL
    subtraction_enabled: bool = True
    opening: bool = True
    display_mode: DisplayMode = DisplayMode.PASS_THROUGH

    def radius(self, base_radius: int) -> int:
        return self.kernel_preset.radius(base_radius)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kernel_preset"] = self.kernel_preset.name
        data["display_mode"] = self.display_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["PipelineConfig"] = None) -> "PipelineConfig":
        """Build a config from a (partial) dict, unspecified fields taken from *base*."""
        return _apply_changes(base or cls(), data)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _apply_changes(config: PipelineConfig, changes: Dict[str, Any]) -> PipelineConfig:
    parsed: Dict[str, Any] = {}
    for key, value in changes.items():
        if key == "kernel_preset":
            parsed[key] = KernelPreset.parse(value)
        elif key == "display_mode":
            parsed[key] = DisplayMode.parse(value)
        elif key in ("subtraction_enabled", "opening"):
            parsed[key] = _parse_bool(value)
        else:
            raise AttributeError(f"Invalid pipeline configuration key: {key}")
    return replace(config, **parsed)


class PipelineConfigStore:
    """
    Thread-safe holder of the current config and a single pending slot.

    Successive updates between two frames merge into the pending slot, so a
    frame sees either none or all of them.
    """

    def __init__(self, initial: Optional[PipelineConfig] = None):
        self._current = initial or PipelineConfig()
        self._pending: Optional[PipelineConfig] = None
        self._lock = threading.Lock()

    @property
    def current(self) -> PipelineConfig:
        """Config used by the most recent frame."""
        with self._lock:
            return self._current

    def latest(self) -> PipelineConfig:
        """Config the next frame will use."""
        with self._lock:
            return self._pending if self._pending is not None else self._current

    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def update(self, **changes) -> PipelineConfig:
        """
        Stage changes for the next frame boundary.

        Raises:
            AttributeError: unknown key
            ValueError: unparseable preset or display mode
        """
        with self._lock:
            base = self._pending if self._pending is not None else self._current
            self._pending = _apply_changes(base, changes)
            staged = self._pending
        logger.debug(f"[PipelineConfig] Staged {changes} -> {staged}")
        return staged

    def cycle_display_mode(self) -> DisplayMode:
        with self._lock:
            base = self._pending if self._pending is not None else self._current
            self._pending = replace(base, display_mode=base.display_mode.next())
            return self._pending.display_mode

    def toggle(self, key: str) -> bool:
        """Flip a boolean field ('subtraction_enabled' or 'opening')."""
        if key not in ("subtraction_enabled", "opening"):
            raise AttributeError(f"Not a toggle: {key}")
        with self._lock:
            base = self._pending if self._pending is not None else self._current
            self._pending = replace(base, **{key: not getattr(base, key)})
            return getattr(self._pending, key)

    def snapshot(self) -> PipelineConfig:
        """Promote the pending slot (if any) and return the frame's config."""
        with self._lock:
            if self._pending is not None:
                if self._pending != self._current:
                    logger.info(f"[PipelineConfig] Applied at frame boundary: {self._pending.to_dict()}")
                self._current = self._pending
                self._pending = None
            return self._current


# ============================================================================
# Global store instance
# ============================================================================

_store: Optional[PipelineConfigStore] = None


def get_config_store() -> PipelineConfigStore:
    """Process-wide store (lazy singleton)."""
    global _store
    if _store is None:
        _store = PipelineConfigStore()
    return _store


def update_pipeline_config(**kwargs) -> PipelineConfig:
    """
    Stage configuration changes on the global store.

    Example:
        update_pipeline_config(kernel_preset="x2", display_mode="labeling")
    """
    return get_config_store().update(**kwargs)


def reset_config_store() -> None:
    """Drop the global store (tests)."""
    global _store
    _store = None
