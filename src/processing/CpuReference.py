"""
OpenCV / numpy reference of the GPU pipeline.

Used by the parity check in check_gpu.py and by the tests. Every function
mirrors one GPU stage, with edge handling matching the clamp-to-edge
textures (BORDER_REPLICATE) and the same propagation stencil.
"""

from typing import Tuple

import cv2
import numpy as np

from src.processing.ThresholdEstimator import build_histogram, compute_otsu_threshold

_DIRECTIONS = ((0, 1), (0, -1), (1, 0), (-1, 0))


def to_gray(bgr: np.ndarray) -> np.ndarray:
    if bgr.ndim == 2:
        return bgr
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)


def _separable(op, image: np.ndarray, radius: int) -> np.ndarray:
    size = 2 * int(radius) + 1
    horizontal = op(image, np.ones((1, size), np.uint8), borderType=cv2.BORDER_REPLICATE)
    return op(horizontal, np.ones((size, 1), np.uint8), borderType=cv2.BORDER_REPLICATE)


def erode(image: np.ndarray, radius: int) -> np.ndarray:
    return _separable(cv2.erode, image, radius)


def dilate(image: np.ndarray, radius: int) -> np.ndarray:
    return _separable(cv2.dilate, image, radius)


def opening(image: np.ndarray, radius: int) -> np.ndarray:
    return dilate(erode(image, radius), radius)


def closing(image: np.ndarray, radius: int) -> np.ndarray:
    return erode(dilate(image, radius), radius)


def top_hat(gray: np.ndarray, radius: int, use_opening: bool = True, subtraction: bool = True) -> np.ndarray:
    """White top-hat (opening mode) or black top-hat (closing mode), saturated at 0."""
    morph = opening(gray, radius) if use_opening else closing(gray, radius)
    if not subtraction:
        return morph
    if use_opening:
        return cv2.subtract(gray, morph)
    return cv2.subtract(morph, gray)


def otsu_level(gray: np.ndarray) -> int:
    return compute_otsu_threshold(build_histogram(gray), gray.size)


def seed_labels(levels: np.ndarray, threshold_level: int) -> np.ndarray:
    """Linear index + 1 where level >= threshold, else 0."""
    height, width = levels.shape
    seeds = np.arange(1, height * width + 1, dtype=np.uint32).reshape(height, width)
    return np.where(levels >= threshold_level, seeds, np.uint32(0)).astype(np.uint32)


def _shifted(labels: np.ndarray, dy: int, dx: int) -> np.ndarray:
    """out[y, x] = labels[y + dy, x + dx], 0 outside the image."""
    height, width = labels.shape
    out = np.zeros_like(labels)
    ys, ye = max(0, -dy), min(height, height - dy)
    xs, xe = max(0, -dx), min(width, width - dx)
    if ys < ye and xs < xe:
        out[ys:ye, xs:xe] = labels[ys + dy:ye + dy, xs + dx:xe + dx]
    return out


def propagate_labels(labels: np.ndarray, rounds: int) -> np.ndarray:
    """Same two-step 4-connected max stencil as the compute shader."""
    current = labels.astype(np.uint32, copy=True)
    for _ in range(rounds):
        best = current.copy()
        for dy, dx in _DIRECTIONS:
            adjacent = _shifted(current, dy, dx)
            far = _shifted(current, 2 * dy, 2 * dx)
            candidate = np.where(adjacent > 0, np.maximum(adjacent, far), 0).astype(np.uint32)
            np.maximum(best, candidate, out=best)
        best[current == 0] = 0
        current = best
    return current


def count_labels(labels: np.ndarray) -> int:
    return int(np.unique(labels[labels > 0]).size)


def label_image(levels: np.ndarray, threshold_level: int, rounds: int = 16) -> Tuple[np.ndarray, int]:
    labels = propagate_labels(seed_labels(levels, threshold_level), rounds)
    return labels, count_labels(labels)


def exact_component_count(levels: np.ndarray, threshold_level: int) -> int:
    """Ground truth with sequential 4-connected labeling."""
    binary = (levels >= threshold_level).astype(np.uint8)
    count, _ = cv2.connectedComponents(binary, connectivity=4)
    return int(count) - 1


def synthetic_scene(
    width: int,
    height: int,
    centers,
    blob_size: int = 6,
    blob_level: int = 230,
    gradient: Tuple[int, int] = (40, 90),
) -> np.ndarray:
    """
    BGR test scene: square bright blobs over a horizontal background ramp.

    Args:
        centers: (x, y) blob centres
        blob_size: Blob side length in pixels
        gradient: Background level at the left and right edges
    """
    ramp = np.linspace(gradient[0], gradient[1], width, dtype=np.float32)
    gray = np.repeat(ramp[None, :], height, axis=0).round().astype(np.uint8)
    half = blob_size // 2
    for x, y in centers:
        gray[max(0, y - half):y - half + blob_size, max(0, x - half):x - half + blob_size] = blob_level
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
