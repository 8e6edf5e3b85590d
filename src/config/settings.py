"""
Application settings for TopHatBlobCounter.

Every field can be overridden through an environment variable so the same
build runs on a desktop GPU, a headless EGL box, or CI.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from src.utils.platform import DEFAULT_GL_BACKEND, PLATFORM_NAME


def _parse_bool_env(key: str, default: bool) -> bool:
    """Parse boolean environment variable."""
    val = os.getenv(key, str(default)).lower()
    return val in ('true', '1', 'yes', 'on')


def _parse_optional_float_env(key: str) -> Optional[float]:
    val = os.getenv(key)
    if val is None or val == "":
        return None
    return float(val)


@dataclass
class AppConfig:
    """
    Application configuration for TopHatBlobCounter.
    """

    APP_VERSION: str = "2026.10_v1.0.0"

    # ==================== Processing resolution ====================
    # Landscape dimensions; portrait swaps them on orientation change
    processing_width: int = int(os.getenv("PROCESSING_WIDTH", "1920"))
    processing_height: int = int(os.getenv("PROCESSING_HEIGHT", "1080"))

    # Fixed histogram source size for Otsu estimation
    downsample_width: int = int(os.getenv("DOWNSAMPLE_WIDTH", "256"))
    downsample_height: int = int(os.getenv("DOWNSAMPLE_HEIGHT", "144"))

    # ==================== Algorithm parameters ====================
    base_kernel_radius: int = int(os.getenv("BASE_KERNEL_RADIUS", "7"))
    propagate_iterations: int = int(os.getenv("PROPAGATE_ITERATIONS", "16"))
    workgroup_size: int = 16  # must match local_size in the compute shaders

    # ==================== GPU context ====================
    gl_require: int = int(os.getenv("GL_REQUIRE", "430"))
    gl_backend: Optional[str] = os.getenv("GL_BACKEND", DEFAULT_GL_BACKEND or "") or None

    # ==================== Display sink ====================
    display_width: int = int(os.getenv("DISPLAY_WIDTH", "1280"))
    display_height: int = int(os.getenv("DISPLAY_HEIGHT", "720"))
    window_name: str = os.getenv("WINDOW_NAME", "TopHat GPU")

    # ==================== Frame source ====================
    video_source: str = os.getenv("VIDEO_SOURCE", "0")
    frame_queue_size: int = int(os.getenv("FRAME_QUEUE_SIZE", "4"))
    frame_target_fps: Optional[float] = field(
        default_factory=lambda: _parse_optional_float_env("FRAME_TARGET_FPS")
    )
    frame_rotation: int = int(os.getenv("FRAME_ROTATION", "0"))
    opencv_testing_mode: bool = field(default_factory=lambda: _parse_bool_env("OPENCV_TESTING_MODE", False))

    # ==================== Host exchange files ====================
    state_file: str = os.getenv("PIPELINE_STATE_FILE", "data/pipeline_state.json")
    control_file: str = os.getenv("PIPELINE_CONTROL_FILE", "data/pipeline_control.json")
    control_poll_interval: float = float(os.getenv("CONTROL_POLL_INTERVAL", "0.5"))

    # ==================== Diagnostics ====================
    metrics_log_interval: float = float(os.getenv("METRICS_LOG_INTERVAL", "30"))
    memory_log_interval: float = float(os.getenv("MEMORY_LOG_INTERVAL", "60"))

    def kernel_radii(self) -> Dict[str, int]:
        """Radius of every preset for this base radius."""
        from src.config.pipeline_config import KernelPreset
        return {p.name: p.radius(self.base_kernel_radius) for p in KernelPreset}

    def as_dict(self) -> Dict[str, Any]:
        return {
            "version": self.APP_VERSION,
            "platform": PLATFORM_NAME,
            "processing": [self.processing_width, self.processing_height],
            "downsample": [self.downsample_width, self.downsample_height],
            "propagate_iterations": self.propagate_iterations,
            "kernel_radii": self.kernel_radii(),
            "gl_require": self.gl_require,
            "gl_backend": self.gl_backend,
        }

    def log_configuration(self):
        """Log current configuration."""
        from src.utils.AppLogging import logger
        logger.info(f"[Config] App Version: {self.APP_VERSION} ({PLATFORM_NAME})")
        logger.info(
            f"[Config] Processing: {self.processing_width}x{self.processing_height}, "
            f"downsample: {self.downsample_width}x{self.downsample_height}"
        )
        logger.info(
            f"[Config] Kernel radii: {self.kernel_radii()}, "
            f"propagation rounds: {self.propagate_iterations}"
        )
        logger.info(f"[Config] GL: require={self.gl_require}, backend={self.gl_backend or 'default'}")


# Global config instance
config = AppConfig()
