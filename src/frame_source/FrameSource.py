"""
Abstract base class for frame sources and the frame they produce.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, Tuple

import numpy as np


def rotation_transform(degrees: int) -> np.ndarray:
    """
    Texture-coordinate transform that rotates the sampled image.

    Args:
        degrees: 0, 90, 180 or 270

    Returns:
        4x4 float32 matrix (row-major math convention) applied to (u, v, 0, 1)
    """
    degrees = degrees % 360
    m = np.eye(4, dtype=np.float32)
    if degrees == 0:
        return m
    if degrees == 90:
        # (u, v) -> (v, 1 - u)
        m[0, :] = (0, 1, 0, 0)
        m[1, :] = (-1, 0, 0, 1)
    elif degrees == 180:
        # (u, v) -> (1 - u, 1 - v)
        m[0, :] = (-1, 0, 0, 1)
        m[1, :] = (0, -1, 0, 1)
    elif degrees == 270:
        # (u, v) -> (1 - v, u)
        m[0, :] = (0, -1, 0, 1)
        m[1, :] = (1, 0, 0, 0)
    else:
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {degrees}")
    return m


@dataclass
class CameraFrame:
    """One camera image plus the transform needed to sample it upright."""
    image: np.ndarray                     # HxWx3 BGR (or HxW gray) uint8
    transform: np.ndarray = field(default_factory=lambda: np.eye(4, dtype=np.float32))
    timestamp: float = field(default_factory=time.perf_counter)
    rotation: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def oriented_size(self) -> Tuple[int, int]:
        """(width, height) after applying the rotation."""
        if self.rotation % 180 == 90:
            return self.height, self.width
        return self.width, self.height

    @classmethod
    def from_image(cls, image: np.ndarray, rotation: int = 0) -> "CameraFrame":
        return cls(image=image, transform=rotation_transform(rotation), rotation=rotation % 360)


class FrameSource(ABC):
    """
    Abstract base class for video frame sources.

    Implementations provide frames from:
    - OpenCV (files, webcams, RTSP)
    - A still image repeated (bench / diagnostics)
    """

    @abstractmethod
    def frames(self) -> Iterator[Tuple[CameraFrame, float]]:
        """
        Yield frames from the source.

        Yields:
            Tuple of (frame, latency_ms)
            - frame: CameraFrame
            - latency_ms: inter-frame latency in milliseconds
        """
        pass

    @abstractmethod
    def cleanup(self):
        """Release resources."""
        pass
