"""
Shared fixtures for the GPU tests.

One standalone OpenGL 4.3 context for the whole session; each test runs with
it made current. Tests that request it are skipped when the machine cannot
provide such a context (no driver, no EGL, no compute support).
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.config.pipeline_config import reset_config_store


@pytest.fixture(scope="session")
def gl_session_ctx():
    from src.gpu.GpuContext import GpuSetupError, create_gpu_context
    from src.utils.platform import DEFAULT_GL_BACKEND

    backend = os.getenv("GL_BACKEND") or DEFAULT_GL_BACKEND
    try:
        ctx = create_gpu_context(require=430, backend=backend)
    except GpuSetupError as e:
        pytest.skip(f"No OpenGL 4.3 context available: {e}")
    yield ctx
    ctx.release()


@pytest.fixture
def gl_ctx(gl_session_ctx):
    with gl_session_ctx:
        yield gl_session_ctx


@pytest.fixture(scope="session")
def programs(gl_session_ctx):
    from src.gpu.ProgramCache import ProgramCache

    with gl_session_ctx:
        cache = ProgramCache(gl_session_ctx).build()
    yield cache
    with gl_session_ctx:
        cache.release()


@pytest.fixture
def make_core(gl_ctx):
    """Factory for small PipelineCores on the shared context (display = processing size)."""
    from src.app.pipeline_core import PipelineCore
    from src.config.pipeline_config import PipelineConfigStore
    from src.config.settings import AppConfig

    cores = []

    def factory(width, height, downsample=None, clock=None):
        settings = AppConfig()
        settings.processing_width = width
        settings.processing_height = height
        settings.display_width = width
        settings.display_height = height
        settings.downsample_width, settings.downsample_height = downsample or (width, height)
        kwargs = {"clock": clock} if clock is not None else {}
        core = PipelineCore(settings=settings, ctx=gl_ctx, config_store=PipelineConfigStore(), **kwargs)
        cores.append(core.setup())
        return core

    yield factory
    for core in cores:
        core.cleanup()


@pytest.fixture(autouse=True)
def _fresh_config_store():
    reset_config_store()
    yield
    reset_config_store()
