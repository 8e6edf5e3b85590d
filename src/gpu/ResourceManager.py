"""
Render targets and label images for the current processing resolution.

Every processing target and the label ping-pong pair always share one size.
On an orientation flip all of them are released and created again at the
new size; nothing from the previous resolution is reused. Allocation failure
is fatal (ResourceAllocationError), never retried.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import moderngl
import numpy as np

from src.gpu.GpuContext import ResourceAllocationError
from src.utils.AppLogging import logger

# Processing targets recreated on every resolution change
PROCESSING_TARGETS = ("gray", "work1", "work2", "morph", "result")


@dataclass
class RenderTarget:
    """Framebuffer + RGBA8 colour texture. No depth/stencil."""
    framebuffer: moderngl.Framebuffer
    texture: moderngl.Texture
    width: int
    height: int

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def read_rgba(self) -> bytes:
        """Synchronous readback of the colour attachment."""
        return self.framebuffer.read(components=4, alignment=1)

    def release(self) -> None:
        self.framebuffer.release()
        self.texture.release()


class LabelImagePair:
    """
    Two equal-size R32UI images with explicit roles.

    ``active`` holds the most recently written labels; ``inactive`` is the
    only valid write target of a propagation round. ``swap()`` exchanges both
    roles in one step.
    """

    def __init__(self, first: moderngl.Texture, second: moderngl.Texture):
        if first.size != second.size:
            raise ValueError(f"Label images differ in size: {first.size} vs {second.size}")
        self._active = first
        self._inactive = second
        self.swap_count = 0

    @property
    def active(self) -> moderngl.Texture:
        return self._active

    @property
    def inactive(self) -> moderngl.Texture:
        return self._inactive

    @property
    def size(self) -> Tuple[int, int]:
        return self._active.size

    def swap(self) -> None:
        self._active, self._inactive = self._inactive, self._active
        self.swap_count += 1

    def read_active(self) -> np.ndarray:
        """Active labels as uint32[height, width] (debug / tests)."""
        width, height = self.size
        data = self._active.read(alignment=1)
        return np.frombuffer(data, dtype=np.uint32).reshape(height, width).copy()

    def release(self) -> None:
        self._active.release()
        self._inactive.release()


class ResourceManager:
    """
    Owns every render target and the label pair.

    Managed objects:
    - processing targets (gray, work1, work2, morph, result) at processing size
    - label ping-pong pair at processing size
    - downsample target, fixed size, created once
    - screen target (display sink), display size
    """

    def __init__(
        self,
        ctx: moderngl.Context,
        width: int,
        height: int,
        downsample_size: Tuple[int, int] = (256, 144),
        screen_size: Tuple[int, int] = (1280, 720),
    ):
        self.ctx = ctx
        self.width = width
        self.height = height
        self.downsample_size = downsample_size
        self.screen_size = screen_size

        self.targets: Dict[str, RenderTarget] = {}
        self.labels: Optional[LabelImagePair] = None
        self.downsample: Optional[RenderTarget] = None
        self.screen: Optional[RenderTarget] = None
        self.generation = 0  # bumped on every reallocation

    # ------------------------------------------------------------------
    # Allocation primitives
    # ------------------------------------------------------------------

    def allocate(self, width: int, height: int) -> RenderTarget:
        """
        Create a framebuffer bound to a linearly-filtered RGBA8 texture.

        Content is undefined until the first write.

        Raises:
            ResourceAllocationError: the driver refused the allocation
        """
        try:
            texture = self.ctx.texture((width, height), 4)
            texture.filter = (moderngl.LINEAR, moderngl.LINEAR)
            texture.repeat_x = False
            texture.repeat_y = False
            framebuffer = self.ctx.framebuffer(color_attachments=[texture])
        except Exception as e:
            logger.critical(f"[ResourceManager] Render target {width}x{height} allocation failed: {e}")
            raise ResourceAllocationError(f"Render target {width}x{height}: {e}") from e
        return RenderTarget(framebuffer=framebuffer, texture=texture, width=width, height=height)

    def allocate_label_texture(self, width: int, height: int) -> moderngl.Texture:
        """R32UI, nearest filtering (integer textures cannot be filtered)."""
        try:
            texture = self.ctx.texture((width, height), 1, dtype='u4')
            texture.filter = (moderngl.NEAREST, moderngl.NEAREST)
            texture.repeat_x = False
            texture.repeat_y = False
        except Exception as e:
            logger.critical(f"[ResourceManager] Label texture {width}x{height} allocation failed: {e}")
            raise ResourceAllocationError(f"Label texture {width}x{height}: {e}") from e
        return texture

    def allocate_label_pair(self, width: int, height: int) -> LabelImagePair:
        return LabelImagePair(
            self.allocate_label_texture(width, height),
            self.allocate_label_texture(width, height),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def setup(self) -> "ResourceManager":
        """Create every managed object at the initial sizes."""
        self.reallocate_all(self.width, self.height)
        if self.downsample is None:
            self.downsample = self.allocate(*self.downsample_size)
        if self.screen is None:
            self.screen = self.allocate(*self.screen_size)
        return self

    def reallocate_all(self, width: int, height: int) -> None:
        """
        Destroy and recreate every processing target and the label pair.

        Raises:
            ResourceAllocationError: any allocation failed
        """
        self._release_processing()

        self.width = width
        self.height = height
        for name in PROCESSING_TARGETS:
            self.targets[name] = self.allocate(width, height)
        self.labels = self.allocate_label_pair(width, height)
        self.generation += 1

        logger.info(
            f"[ResourceManager] Allocated {len(PROCESSING_TARGETS)} targets + label pair "
            f"at {width}x{height} (generation {self.generation})"
        )

    def resize_screen(self, width: int, height: int) -> None:
        if self.screen is not None and self.screen.size == (width, height):
            return
        if self.screen is not None:
            self.screen.release()
            self.screen = None
        self.screen_size = (width, height)
        self.screen = self.allocate(width, height)
        logger.info(f"[ResourceManager] Screen target {width}x{height}")

    def needs_orientation_flip(self, surface_width: int, surface_height: int) -> bool:
        """True when the surface is landscape and targets portrait, or vice versa."""
        if surface_width > surface_height and self.width < self.height:
            return True
        if surface_height > surface_width and self.height < self.width:
            return True
        return False

    def target(self, name: str) -> RenderTarget:
        return self.targets[name]

    def _release_processing(self) -> None:
        for target in self.targets.values():
            target.release()
        self.targets.clear()
        if self.labels is not None:
            self.labels.release()
            self.labels = None

    def release(self) -> None:
        """Free everything this manager owns."""
        self._release_processing()
        if self.downsample is not None:
            self.downsample.release()
            self.downsample = None
        if self.screen is not None:
            self.screen.release()
            self.screen = None
        logger.info("[ResourceManager] Released all targets")
