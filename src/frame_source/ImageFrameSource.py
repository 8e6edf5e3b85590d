"""
Still-image frame source: one picture presented as a continuous stream.

Useful for tuning the structuring element on a reference image and for
benchmarking the pipeline without a camera.
"""

import time
from typing import Iterator, Optional, Tuple

import cv2
import numpy as np

from src.frame_source.FrameSource import CameraFrame, FrameSource
from src.utils.AppLogging import logger


class ImageFrameSource(FrameSource):
    """Yields the same image repeatedly, optionally paced and bounded."""

    def __init__(
        self,
        image,
        target_fps: Optional[float] = None,
        max_frames: Optional[int] = None,
        rotation: int = 0,
    ):
        """
        Args:
            image: File path or an already-decoded uint8 array
            target_fps: Pacing (None = as fast as the consumer pulls)
            max_frames: Stop after this many frames (None = endless)
            rotation: Orientation correction in degrees
        """
        if isinstance(image, np.ndarray):
            self.image = image
            label = f"array {image.shape}"
        else:
            self.image = cv2.imread(str(image), cv2.IMREAD_COLOR)
            if self.image is None:
                raise ValueError(f"Could not read image: {image}")
            label = str(image)

        self.frame_interval = 1.0 / target_fps if target_fps and target_fps > 0 else None
        self.max_frames = max_frames
        self.rotation = rotation % 360
        self.running = True
        self._frame_count = 0

        logger.info(
            f"[ImageFrameSource] Source: {label}, size {self.image.shape[1]}x{self.image.shape[0]}, "
            f"max_frames={max_frames}"
        )

    def frames(self) -> Iterator[Tuple[CameraFrame, float]]:
        last = None
        while self.running:
            if self.max_frames is not None and self._frame_count >= self.max_frames:
                break
            now = time.perf_counter()
            if self.frame_interval is not None and last is not None:
                wait = self.frame_interval - (now - last)
                if wait > 0:
                    time.sleep(wait)
                    now = time.perf_counter()
            latency_ms = 0.0 if last is None else (now - last) * 1000.0
            last = now
            self._frame_count += 1
            yield CameraFrame.from_image(self.image, rotation=self.rotation), latency_ms

    def cleanup(self):
        self.running = False
        logger.info(f"[ImageFrameSource] Cleanup complete. Yielded {self._frame_count} frames")
