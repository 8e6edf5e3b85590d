"""
Separable grayscale morphology and top-hat subtraction.

The structuring element is a 1-D box of half-width ``radius`` applied along x
then along y, so one full erosion or dilation costs two raster passes:

    opening  = erode_h, erode_v, dilate_h, dilate_v
    closing  = dilate_h, dilate_v, erode_h, erode_v
    top-hat  = gray - opening     (opening mode, bright features)
             = closing - gray     (closing mode, dark features)

Negative subtraction results clamp to 0 in the RGBA8 targets.
"""

import moderngl

from src.config.pipeline_config import PipelineConfig
from src.gpu.CameraTexture import CameraTexture
from src.gpu.FullscreenQuad import FullscreenQuad
from src.gpu.ProgramCache import ProgramCache
from src.gpu.ResourceManager import RenderTarget, ResourceManager


class MorphologyPipeline:
    """Runs gray conversion, opening/closing and subtraction over the shared targets."""

    def __init__(
        self,
        programs: ProgramCache,
        quad: FullscreenQuad,
        resources: ResourceManager,
        base_radius: int = 7,
    ):
        self.programs = programs
        self.quad = quad
        self.resources = resources
        self.base_radius = base_radius

    def gray(self, camera: CameraTexture) -> RenderTarget:
        """Camera frame -> luminance, sampled through the frame's transform."""
        target = self.resources.target("gray")
        self.quad.run_pass(
            target.framebuffer,
            self.programs["gray"],
            textures=[("uTexture", camera.texture)],
            st_matrix=camera.transform,
        )
        return target

    def _axis_pass(self, program_name: str, source: moderngl.Texture, dest: RenderTarget, radius: int) -> None:
        self.quad.run_pass(
            dest.framebuffer,
            self.programs[program_name],
            textures=[("uTexture", source)],
            uniforms={
                "kernelSize": int(radius),
                "texelWidth": 1.0 / dest.width,
                "texelHeight": 1.0 / dest.height,
            },
        )

    def erode(self, source: moderngl.Texture, dest: RenderTarget, scratch: RenderTarget, radius: int) -> RenderTarget:
        """Box minimum: horizontal pass into *scratch*, vertical pass into *dest*."""
        self._axis_pass("erode_h", source, scratch, radius)
        self._axis_pass("erode_v", scratch.texture, dest, radius)
        return dest

    def dilate(self, source: moderngl.Texture, dest: RenderTarget, scratch: RenderTarget, radius: int) -> RenderTarget:
        """Box maximum: horizontal pass into *scratch*, vertical pass into *dest*."""
        self._axis_pass("dilate_h", source, scratch, radius)
        self._axis_pass("dilate_v", scratch.texture, dest, radius)
        return dest

    def opening(self, source: moderngl.Texture, radius: int) -> RenderTarget:
        work1 = self.resources.target("work1")
        work2 = self.resources.target("work2")
        morph = self.resources.target("morph")
        self.erode(source, work2, work1, radius)
        return self.dilate(work2.texture, morph, work1, radius)

    def closing(self, source: moderngl.Texture, radius: int) -> RenderTarget:
        work1 = self.resources.target("work1")
        work2 = self.resources.target("work2")
        morph = self.resources.target("morph")
        self.dilate(source, work2, work1, radius)
        return self.erode(work2.texture, morph, work1, radius)

    def subtract(self, minuend: moderngl.Texture, subtrahend: moderngl.Texture) -> RenderTarget:
        result = self.resources.target("result")
        self.quad.run_pass(
            result.framebuffer,
            self.programs["subtract"],
            textures=[("uMinuend", minuend), ("uSubtrahend", subtrahend)],
        )
        return result

    def top_hat(self, original: RenderTarget, config: PipelineConfig) -> moderngl.Texture:
        """
        Morphology + optional subtraction for one frame.

        Args:
            original: Gray target of this frame
            config: The frame's config snapshot (radius, mode, subtraction)

        Returns:
            Texture holding the final per-pixel result
        """
        radius = config.radius(self.base_radius)
        if config.opening:
            morph = self.opening(original.texture, radius)
        else:
            morph = self.closing(original.texture, radius)

        if not config.subtraction_enabled:
            return morph.texture

        if config.opening:
            return self.subtract(original.texture, morph.texture).texture
        return self.subtract(morph.texture, original.texture).texture

    def process(self, camera: CameraTexture, config: PipelineConfig) -> moderngl.Texture:
        return self.top_hat(self.gray(camera), config)
