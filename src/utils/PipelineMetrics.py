"""
Pipeline metrics for monitoring system performance.
"""

import time
import threading
from typing import Callable, Dict, Any, Optional, Tuple
from dataclasses import dataclass, field
from collections import deque
import statistics

from src.utils.AppLogging import logger

STAGES = ("upload", "morphology", "threshold", "labeling", "count", "present")


class FrameStatsTracker:
    """
    Once-per-second (framesPerSecond, lastLabelCount) aggregation.

    ``tick()`` is called at the start of every frame. When at least one
    second has elapsed since the last emission it returns the pair and
    restarts the window; otherwise it returns None.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._frame_count = 0
        self._window_start = clock()
        self.last_fps = 0

    def tick(self, last_label_count: int) -> Optional[Tuple[int, int]]:
        self._frame_count += 1
        now = self._clock()
        elapsed_ms = int((now - self._window_start) * 1000)
        if elapsed_ms < 1000:
            return None

        fps = self._frame_count * 1000 // elapsed_ms
        self._frame_count = 0
        self._window_start = now
        self.last_fps = fps
        return fps, last_label_count

    def reset(self):
        self._frame_count = 0
        self._window_start = self._clock()


@dataclass
class StageMetrics:
    """Host-side time spent submitting (and waiting on) one pipeline stage."""
    calls: int = 0
    avg_time_ms: float = 0.0
    max_time_ms: float = 0.0
    times: deque = field(default_factory=lambda: deque(maxlen=100))


@dataclass
class FrameMetrics:
    """Per-frame totals."""
    total_frames: int = 0
    threshold_frames: int = 0
    labeling_frames: int = 0
    avg_frame_time_ms: float = 0.0
    last_threshold: Optional[float] = None
    last_label_count: int = 0
    frame_times: deque = field(default_factory=lambda: deque(maxlen=100))


class PipelineMetrics:
    """
    Centralized metrics collection for the GPU pipeline.

    Thread-safe metrics collection and periodic logging.
    """

    def __init__(self, log_interval_seconds: float = 30.0):
        self.stages: Dict[str, StageMetrics] = {name: StageMetrics() for name in STAGES}
        self.frames = FrameMetrics()

        self._lock = threading.Lock()
        self._last_log_time = time.time()
        self._log_interval = log_interval_seconds

    def record_stage(self, stage: str, elapsed_ms: float):
        """Record one stage execution."""
        with self._lock:
            metrics = self.stages.setdefault(stage, StageMetrics())
            metrics.calls += 1
            metrics.times.append(elapsed_ms)
            metrics.max_time_ms = max(metrics.max_time_ms, elapsed_ms)
            metrics.avg_time_ms = statistics.mean(metrics.times)

    def record_frame(self, frame_time_ms: float, threshold: Optional[float] = None,
                     label_count: Optional[int] = None):
        """Record a completed frame."""
        with self._lock:
            self.frames.total_frames += 1
            self.frames.frame_times.append(frame_time_ms)
            self.frames.avg_frame_time_ms = statistics.mean(self.frames.frame_times)
            if threshold is not None:
                self.frames.threshold_frames += 1
                self.frames.last_threshold = threshold
            if label_count is not None:
                self.frames.labeling_frames += 1
                self.frames.last_label_count = label_count
        self._maybe_log()

    def _maybe_log(self):
        """Log metrics if interval has passed."""
        current_time = time.time()
        if current_time - self._last_log_time >= self._log_interval:
            self._log_metrics()
            self._last_log_time = current_time

    def _log_metrics(self):
        """Log current metrics summary."""
        with self._lock:
            logger.info(
                f"[PipelineMetrics] Frames: total={self.frames.total_frames}, "
                f"threshold={self.frames.threshold_frames}, labeling={self.frames.labeling_frames}, "
                f"avg_time={self.frames.avg_frame_time_ms:.1f}ms"
            )
            stage_text = ", ".join(
                f"{name}={m.avg_time_ms:.1f}ms" for name, m in self.stages.items() if m.calls
            )
            if stage_text:
                logger.info(f"[PipelineMetrics] Stages (avg): {stage_text}")

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        with self._lock:
            return {
                "frames": {
                    "total_frames": self.frames.total_frames,
                    "threshold_frames": self.frames.threshold_frames,
                    "labeling_frames": self.frames.labeling_frames,
                    "avg_frame_time_ms": self.frames.avg_frame_time_ms,
                    "last_threshold": self.frames.last_threshold,
                    "last_label_count": self.frames.last_label_count,
                },
                "stages": {
                    name: {
                        "calls": m.calls,
                        "avg_time_ms": m.avg_time_ms,
                        "max_time_ms": m.max_time_ms,
                    }
                    for name, m in self.stages.items()
                },
            }
