"""
Process-wide cache of compiled shader programs.

Built once at setup, owned for the pipeline lifetime, released only on full
teardown. A single compile/link failure releases whatever was already built
and aborts setup: no partial pipeline is ever left running.
"""

from typing import Dict, Union

import moderngl
import numpy as np

from src.gpu.GpuContext import GpuSetupError
from src.gpu.ShaderLibrary import COMPUTE_PROGRAMS, RASTER_PROGRAMS
from src.utils.AppLogging import logger

ShaderProgram = Union[moderngl.Program, moderngl.ComputeShader]

IDENTITY_MATRIX = np.eye(4, dtype=np.float32)


def set_uniform(program: ShaderProgram, name: str, value) -> None:
    """
    Set a uniform if the linker kept it.

    Matrices are given in row-major math convention and written column-major.
    """
    member = program.get(name, None)
    if member is None:
        return
    if isinstance(value, np.ndarray):
        member.write(np.ascontiguousarray(value.T, dtype=np.float32).tobytes())
    else:
        member.value = value


class ProgramCache:
    """Name -> compiled program for every raster and compute stage."""

    def __init__(self, ctx: moderngl.Context):
        self.ctx = ctx
        self._programs: Dict[str, ShaderProgram] = {}

    def build(self) -> "ProgramCache":
        """
        Compile and link every stage.

        Raises:
            GpuSetupError: on the first compile or link failure
        """
        if self._programs:
            return self

        current = None
        try:
            for current, (vertex_src, fragment_src) in RASTER_PROGRAMS.items():
                self._programs[current] = self.ctx.program(
                    vertex_shader=vertex_src,
                    fragment_shader=fragment_src,
                )
            for current, compute_src in COMPUTE_PROGRAMS.items():
                self._programs[current] = self.ctx.compute_shader(compute_src)
        except Exception as e:
            logger.critical(f"[ProgramCache] Program '{current}' failed to build: {e}")
            self.release()
            raise GpuSetupError(f"Program '{current}' build error: {e}") from e

        logger.info(
            f"[ProgramCache] Built {len(RASTER_PROGRAMS)} raster + "
            f"{len(COMPUTE_PROGRAMS)} compute programs"
        )
        return self

    def __getitem__(self, name: str) -> ShaderProgram:
        try:
            return self._programs[name]
        except KeyError:
            raise KeyError(f"Program '{name}' not built (call build() first)") from None

    def __contains__(self, name: str) -> bool:
        return name in self._programs

    def __len__(self) -> int:
        return len(self._programs)

    def release(self) -> None:
        """Destroy every program (context loss / pipeline teardown)."""
        for program in self._programs.values():
            program.release()
        released = len(self._programs)
        self._programs.clear()
        if released:
            logger.info(f"[ProgramCache] Released {released} programs")
