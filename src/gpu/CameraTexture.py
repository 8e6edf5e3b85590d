"""
GPU handle for the externally-produced camera frame.

Refreshed once before every processed frame with the newest CameraFrame.
The pipeline only samples it (through the frame's transform); it never
writes to it.
"""

from typing import Optional, Tuple

import cv2
import moderngl
import numpy as np

from src.frame_source.FrameSource import CameraFrame
from src.gpu.GpuContext import ResourceAllocationError
from src.utils.AppLogging import logger


class CameraTexture:
    """RGBA8 texture mirroring the latest camera frame."""

    def __init__(self, ctx: moderngl.Context):
        self.ctx = ctx
        self.texture: Optional[moderngl.Texture] = None
        self.transform: np.ndarray = np.eye(4, dtype=np.float32)
        self.timestamp: float = 0.0
        self.frame_count = 0

    @property
    def size(self) -> Tuple[int, int]:
        return self.texture.size if self.texture is not None else (0, 0)

    def update(self, frame: CameraFrame) -> None:
        """Upload *frame* (BGR or gray uint8), recreating the texture on size change."""
        image = frame.image
        if image.ndim == 2:
            rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        else:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        height, width = rgba.shape[:2]

        if self.texture is None or self.texture.size != (width, height):
            self._recreate(width, height)

        self.texture.write(np.ascontiguousarray(rgba).tobytes())
        self.transform = frame.transform
        self.timestamp = frame.timestamp
        self.frame_count += 1

    def _recreate(self, width: int, height: int) -> None:
        if self.texture is not None:
            self.texture.release()
        try:
            self.texture = self.ctx.texture((width, height), 4)
        except Exception as e:
            raise ResourceAllocationError(f"Camera texture {width}x{height}: {e}") from e
        self.texture.filter = (moderngl.LINEAR, moderngl.LINEAR)
        self.texture.repeat_x = False
        self.texture.repeat_y = False
        logger.info(f"[CameraTexture] Input texture {width}x{height}")

    def release(self) -> None:
        if self.texture is not None:
            self.texture.release()
            self.texture = None
