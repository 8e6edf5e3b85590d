"""
Full-frame quad: the single primitive every raster pass executes.

moderngl binds vertex layouts per program, so the quad keeps one vertex
buffer and lazily creates a vertex array for each program it is bound to.
"""

from typing import Dict, Iterable, Optional, Tuple

import moderngl
import numpy as np

from src.gpu.ProgramCache import IDENTITY_MATRIX, set_uniform

# x, y, u, v for a triangle strip (two triangles)
_QUAD_VERTICES = np.array([
    -1.0, -1.0, 0.0, 0.0,
    1.0, -1.0, 1.0, 0.0,
    -1.0, 1.0, 0.0, 1.0,
    1.0, 1.0, 1.0, 1.0,
], dtype=np.float32)


class FullscreenQuad:
    """
    Unit-square geometry with position + texture-coordinate attributes.

    Usage for one pass:
        quad.bind(program)
        quad.draw()
    """

    def __init__(self, ctx: moderngl.Context):
        self.ctx = ctx
        self._vbo = ctx.buffer(_QUAD_VERTICES.tobytes())
        self._vaos: Dict[int, moderngl.VertexArray] = {}
        self._bound: Optional[moderngl.VertexArray] = None

    def bind(self, program: moderngl.Program) -> None:
        """Select the vertex array for *program* (created on first use)."""
        key = program.glo
        vao = self._vaos.get(key)
        if vao is None:
            vao = self.ctx.vertex_array(
                program,
                [(self._vbo, '2f 2f', 'in_position', 'in_texcoord')],
            )
            self._vaos[key] = vao
        self._bound = vao

    def draw(self) -> None:
        if self._bound is None:
            raise RuntimeError("FullscreenQuad.draw() called before bind()")
        self._bound.render(moderngl.TRIANGLE_STRIP, vertices=4)

    def run_pass(
        self,
        framebuffer: moderngl.Framebuffer,
        program: moderngl.Program,
        textures: Iterable[Tuple[str, moderngl.Texture]] = (),
        uniforms: Optional[dict] = None,
        st_matrix: np.ndarray = IDENTITY_MATRIX,
    ) -> None:
        """
        Bind target -> bind program -> bind textures and uniforms -> draw -> unbind.

        Args:
            framebuffer: Destination (viewport follows its size)
            program: Raster program from the ProgramCache
            textures: (sampler uniform name, texture) pairs bound to units 0..n
            uniforms: Scalar uniforms
            st_matrix: Texture-coordinate transform (row-major)
        """
        framebuffer.use()
        framebuffer.clear(0.0, 0.0, 0.0, 1.0)

        for unit, (sampler_name, texture) in enumerate(textures):
            texture.use(location=unit)
            set_uniform(program, sampler_name, unit)

        set_uniform(program, "uSTMatrix", st_matrix)
        for name, value in (uniforms or {}).items():
            set_uniform(program, name, value)

        self.bind(program)
        self.draw()

        # Standalone contexts have no default framebuffer
        screen = self.ctx.screen
        if screen is not None:
            screen.use()

    def release(self) -> None:
        for vao in self._vaos.values():
            vao.release()
        self._vaos.clear()
        self._bound = None
        self._vbo.release()
