"""
OpenGL context creation and GPU error types.

The pipeline needs compute shaders, image load/store and SSBOs, so the
context must be OpenGL 4.3 core or newer. Context creation failure is fatal:
nothing else can run without it.
"""

from typing import Dict, Optional

import moderngl

from src.utils.AppLogging import logger


class GpuSetupError(RuntimeError):
    """Context, shader compile or program link failure. Aborts setup."""


class ResourceAllocationError(RuntimeError):
    """Texture, framebuffer or buffer allocation failure. Not retried."""


def create_gpu_context(require: int = 430, backend: Optional[str] = None) -> moderngl.Context:
    """
    Create a standalone (offscreen) context.

    Args:
        require: Minimum GL version code (430 = OpenGL 4.3)
        backend: moderngl/glcontext backend name ('egl' on headless Linux),
            None for the platform default

    Raises:
        GpuSetupError: no context with the required version could be created
    """
    settings = {}
    if backend:
        settings["backend"] = backend
    try:
        ctx = moderngl.create_standalone_context(require=require, **settings)
    except Exception as e:
        logger.critical(f"[GpuContext] OpenGL {require // 100}.{(require % 100) // 10}+ context unavailable: {e}")
        raise GpuSetupError(f"Cannot create OpenGL context (require={require}, backend={backend}): {e}") from e

    info = describe_context(ctx)
    logger.info(
        f"[GpuContext] {info['version']} | {info['renderer']} | "
        f"max workgroup invocations={info['max_compute_invocations']}"
    )
    return ctx


def describe_context(ctx: moderngl.Context) -> Dict[str, str]:
    """Human-readable driver information (shown in the info overlay and /health)."""
    info = ctx.info
    return {
        "version": str(info.get("GL_VERSION", "Unknown")),
        "renderer": str(info.get("GL_RENDERER", "Unknown")),
        "vendor": str(info.get("GL_VENDOR", "Unknown")),
        "version_code": str(ctx.version_code),
        "max_compute_invocations": str(info.get("GL_MAX_COMPUTE_WORK_GROUP_INVOCATIONS", "n/a")),
        "max_texture_size": str(info.get("GL_MAX_TEXTURE_SIZE", "n/a")),
    }
