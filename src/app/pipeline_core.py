"""
Core GPU pipeline: morphology, threshold estimation, labeling and counting.

This module handles per-frame processing without window or process concerns.
The visualizer, the app loop and the endpoint only talk to it through
render_frame(), the config store and the stats callback.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import moderngl
import numpy as np

from src.config.pipeline_config import DisplayMode, PipelineConfig, PipelineConfigStore, get_config_store
from src.config.settings import AppConfig, config as app_config
from src.gpu.CameraTexture import CameraTexture
from src.gpu.FullscreenQuad import FullscreenQuad
from src.gpu.GpuContext import create_gpu_context, describe_context
from src.gpu.ProgramCache import ProgramCache
from src.gpu.ResourceManager import ResourceManager
from src.processing.LabelCounter import LabelCounter
from src.processing.LabelPropagation import LabelPropagationEngine
from src.processing.MorphologyPipeline import MorphologyPipeline
from src.processing.ThresholdEstimator import ThresholdEstimator
from src.utils.AppLogging import logger
from src.utils.PipelineMetrics import FrameStatsTracker, PipelineMetrics


@dataclass
class FrameResult:
    """What one render_frame() call produced."""
    frame_index: int
    config: PipelineConfig
    width: int
    height: int
    threshold: Optional[float] = None
    label_count: Optional[int] = None

    @property
    def display_mode(self) -> DisplayMode:
        return self.config.display_mode


class PipelineCore:
    """
    Per-frame orchestrator.

    Frame order:
    1. Stats tick, config snapshot
    2. Gray conversion + opening/closing + subtraction
    3. Threshold mode: Otsu estimate
    4. Labeling mode: propagate + count, label colours to screen
       Threshold mode: binarized result to screen
       Otherwise: top-hat result to screen

    Does NOT handle:
    - Frame acquisition or upload (CameraTexture is owned by the caller)
    - Windows or keyboard
    """

    def __init__(
        self,
        settings: Optional[AppConfig] = None,
        ctx: Optional[moderngl.Context] = None,
        config_store: Optional[PipelineConfigStore] = None,
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            settings: Application settings (sizes, rounds, radius)
            ctx: Existing GL context; a standalone one is created in setup() if None
            config_store: Source of per-frame config snapshots
            metrics: Stage timing sink
            clock: Time source for the FPS window
        """
        self.settings = settings or app_config
        self.ctx = ctx
        self._owns_ctx = ctx is None
        self.config_store = config_store or get_config_store()
        self.metrics = metrics or PipelineMetrics(self.settings.metrics_log_interval)
        self.stats = FrameStatsTracker(clock)

        # Called at most once per second with (fps, last_label_count)
        self.on_stats_updated: Optional[Callable[[int, int], None]] = None

        self.programs: Optional[ProgramCache] = None
        self.quad: Optional[FullscreenQuad] = None
        self.resources: Optional[ResourceManager] = None
        self.morphology: Optional[MorphologyPipeline] = None
        self.threshold_estimator: Optional[ThresholdEstimator] = None
        self.labeler: Optional[LabelPropagationEngine] = None
        self.counter: Optional[LabelCounter] = None

        self.frame_index = 0
        self.last_label_count = 0
        self._gl_version = "Unknown"

    @property
    def is_ready(self) -> bool:
        return self.resources is not None

    def setup(self) -> "PipelineCore":
        """
        Build every context-bound object.

        Raises:
            GpuSetupError: context or program build failure
            ResourceAllocationError: target or buffer allocation failure
        """
        s = self.settings
        try:
            if self.ctx is None:
                self.ctx = create_gpu_context(require=s.gl_require, backend=s.gl_backend)
            self._gl_version = describe_context(self.ctx)["version"]

            self.programs = ProgramCache(self.ctx).build()
            self.quad = FullscreenQuad(self.ctx)
            self.resources = ResourceManager(
                self.ctx,
                s.processing_width,
                s.processing_height,
                downsample_size=(s.downsample_width, s.downsample_height),
                screen_size=(s.display_width, s.display_height),
            ).setup()

            self.morphology = MorphologyPipeline(self.programs, self.quad, self.resources, s.base_kernel_radius)
            self.threshold_estimator = ThresholdEstimator(self.programs, self.quad, self.resources)
            self.labeler = LabelPropagationEngine(
                self.ctx, self.programs, self.resources, s.propagate_iterations, s.workgroup_size
            )
            self.counter = LabelCounter(self.ctx, self.programs, s.workgroup_size)
            self.counter.ensure_capacity(s.processing_width * s.processing_height)
        except Exception:
            logger.critical("[PipelineCore] Setup aborted, releasing partial pipeline")
            self.cleanup()
            raise

        logger.info(
            f"[PipelineCore] Ready: {self.resources.width}x{self.resources.height}, "
            f"{s.propagate_iterations} propagation rounds, GL {self._gl_version}"
        )
        return self

    def render_frame(self, camera: CameraTexture) -> FrameResult:
        """Process the current camera texture and present into the screen target."""
        if not self.is_ready:
            raise RuntimeError("PipelineCore.render_frame() called before setup()")

        self._tick_stats()
        config = self.config_store.snapshot()
        self.frame_index += 1
        frame_start = time.perf_counter()

        t0 = time.perf_counter()
        final_texture = self.morphology.process(camera, config)
        self.metrics.record_stage("morphology", (time.perf_counter() - t0) * 1000)

        result = FrameResult(
            frame_index=self.frame_index,
            config=config,
            width=self.resources.width,
            height=self.resources.height,
        )
        screen = self.resources.screen

        if config.display_mode.threshold_enabled:
            t0 = time.perf_counter()
            threshold = self.threshold_estimator.estimate(final_texture)
            self.metrics.record_stage("threshold", (time.perf_counter() - t0) * 1000)
            result.threshold = threshold

            if config.display_mode.labeling_enabled:
                t0 = time.perf_counter()
                labels = self.labeler.run(final_texture, threshold)
                self.metrics.record_stage("labeling", (time.perf_counter() - t0) * 1000)

                t0 = time.perf_counter()
                count = self.counter.count(labels)
                self.metrics.record_stage("count", (time.perf_counter() - t0) * 1000)
                if count is not None:
                    self.last_label_count = count
                result.label_count = self.last_label_count

                self.quad.run_pass(
                    screen.framebuffer,
                    self.programs["label_color"],
                    textures=[("uLabelTexture", labels)],
                )
            else:
                self.quad.run_pass(
                    screen.framebuffer,
                    self.programs["threshold"],
                    textures=[("uTexture", final_texture)],
                    uniforms={"uThreshold": threshold},
                )
        else:
            self.quad.run_pass(
                screen.framebuffer,
                self.programs["erode_h"],
                textures=[("uTexture", final_texture)],
                uniforms={"kernelSize": 0, "texelWidth": 0.0},
            )

        self.metrics.record_frame(
            (time.perf_counter() - frame_start) * 1000,
            threshold=result.threshold,
            label_count=result.label_count,
        )
        return result

    def _tick_stats(self):
        stats = self.stats.tick(self.last_label_count)
        if stats is None:
            return
        fps, label_count = stats
        logger.debug(f"[PipelineCore] FPS: {fps} | Labels: {label_count}")
        if self.on_stats_updated is not None:
            self.on_stats_updated(fps, label_count)

    def on_surface_changed(self, width: int, height: int) -> bool:
        """
        Display surface resized.

        Resizes the screen target and, when the surface orientation no longer
        matches the processing targets, reallocates them with swapped sides.

        Returns:
            True if the processing targets were reallocated
        """
        self.resources.resize_screen(width, height)
        if not self.resources.needs_orientation_flip(width, height):
            return False

        long_side = max(self.settings.processing_width, self.settings.processing_height)
        short_side = min(self.settings.processing_width, self.settings.processing_height)
        if width > height:
            self.resources.reallocate_all(long_side, short_side)
        else:
            self.resources.reallocate_all(short_side, long_side)
        self.counter.ensure_capacity(self.resources.width * self.resources.height)
        return True

    def read_display(self) -> np.ndarray:
        """Screen target as a BGR image (rows in camera order)."""
        screen = self.resources.screen
        rgba = np.frombuffer(screen.read_rgba(), dtype=np.uint8).reshape(screen.height, screen.width, 4)
        return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGR)

    def get_gl_version(self) -> str:
        return self._gl_version

    def cleanup(self):
        """Release every GPU object (and the context if this core created it)."""
        if self.counter is not None:
            self.counter.release()
            self.counter = None
        if self.resources is not None:
            self.resources.release()
            self.resources = None
        if self.quad is not None:
            self.quad.release()
            self.quad = None
        if self.programs is not None:
            self.programs.release()
            self.programs = None
        self.morphology = None
        self.threshold_estimator = None
        self.labeler = None

        if self._owns_ctx and self.ctx is not None:
            self.ctx.release()
            self.ctx = None
        logger.info(f"[PipelineCore] Cleanup complete after {self.frame_index} frames")
