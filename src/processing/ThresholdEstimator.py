"""
Adaptive global threshold from Otsu's method on a downsampled frame.

Per frame: blit the top-hat result into the small fixed-size target, read it
back synchronously, histogram the red channel and pick the split that
maximizes inter-class variance. No temporal smoothing is applied; every frame
is estimated from scratch.
"""

from typing import Optional

import moderngl
import numpy as np

from src.constants import HISTOGRAM_BINS
from src.gpu.FullscreenQuad import FullscreenQuad
from src.gpu.ProgramCache import ProgramCache
from src.gpu.ResourceManager import ResourceManager
from src.utils.AppLogging import logger


def build_histogram(pixels: np.ndarray) -> np.ndarray:
    """256-bin histogram of an 8-bit single channel (any shape)."""
    return np.bincount(pixels.reshape(-1).astype(np.intp), minlength=HISTOGRAM_BINS)[:HISTOGRAM_BINS]


def compute_otsu_threshold(histogram, total: Optional[int] = None) -> int:
    """
    Otsu threshold as the first foreground level.

    Candidate split ``t`` puts levels ``<= t`` in the background. Splits with
    an empty side are skipped, and the smallest ``t`` reaching the maximum
    inter-class variance wins. The result is ``t + 1`` so that
    ``level >= threshold`` selects exactly the foreground class. Returns 0
    when no split has positive variance (empty or single-level histogram).

    This is one level above the textbook Otsu ``t``: dividing ``t`` itself by
    255 and comparing with ``>=`` would pull the last background level into
    the foreground. For two clusters at 10 and 240 the result is 11, strictly
    between them, where plain ``t`` would land on 10.

    Args:
        histogram: 256 bin counts
        total: Pixel count (defaults to the histogram sum)
    """
    hist = np.asarray(histogram, dtype=np.int64)
    if total is None:
        total = int(hist.sum())

    weighted_total = float(np.dot(np.arange(HISTOGRAM_BINS), hist))

    sum_b = 0.0
    w_b = 0
    var_max = 0.0
    threshold = 0

    for t in range(HISTOGRAM_BINS):
        count = int(hist[t])
        w_b += count
        if w_b == 0:
            continue
        w_f = total - w_b
        if w_f <= 0:
            break

        sum_b += float(t * count)
        m_b = sum_b / w_b
        m_f = (weighted_total - sum_b) / w_f
        var_between = float(w_b) * float(w_f) * (m_b - m_f) ** 2

        if var_between > var_max:
            var_max = var_between
            threshold = t + 1

    return threshold


class ThresholdEstimator:
    """Owns the downsample pass and the last threshold it produced."""

    def __init__(
        self,
        programs: ProgramCache,
        quad: FullscreenQuad,
        resources: ResourceManager,
        initial_threshold: float = 0.5,
    ):
        self.programs = programs
        self.quad = quad
        self.resources = resources
        self.threshold = initial_threshold
        self.last_level: Optional[int] = None
        self.missed_readbacks = 0

    def downsample(self, texture: moderngl.Texture) -> None:
        """Box-filter blit: horizontal erosion program with a zero-width kernel."""
        self.quad.run_pass(
            self.resources.downsample.framebuffer,
            self.programs["erode_h"],
            textures=[("uTexture", texture)],
            uniforms={"kernelSize": 0, "texelWidth": 0.0, "texelHeight": 0.0},
        )

    def read_downsampled(self) -> Optional[np.ndarray]:
        """Red channel of the downsample target as uint8[h, w], or None on short data."""
        target = self.resources.downsample
        data = target.read_rgba()
        expected = target.width * target.height * 4
        if not data or len(data) < expected:
            return None
        rgba = np.frombuffer(data, dtype=np.uint8, count=expected).reshape(target.height, target.width, 4)
        return rgba[:, :, 0]

    def estimate(self, texture: moderngl.Texture) -> float:
        """
        Threshold for this frame in [0, 1].

        Keeps the previous value when the readback produced nothing.
        """
        self.downsample(texture)
        red = self.read_downsampled()
        if red is None:
            self.missed_readbacks += 1
            logger.debug(f"[ThresholdEstimator] Readback empty, keeping {self.threshold:.3f}")
            return self.threshold

        level = compute_otsu_threshold(build_histogram(red), red.size)
        self.last_level = level
        self.threshold = level / 255.0
        return self.threshold
