"""
Parallel connected-component labeling by iterative max-label propagation.

Init seeds every foreground pixel with its own linear index + 1. Each
propagation round reads the active label image and writes the inactive one,
then the roles swap. A round moves labels up to two pixels along each axis
(4-connected, never across background), so a straight run of length
``L <= 2 * rounds + 1`` ends with a single label. Larger components may keep
several labels: the round count is fixed to bound per-frame cost.
"""

import moderngl
import numpy as np

from src.constants import (
    GL_R32UI,
    GL_SHADER_IMAGE_ACCESS_BARRIER_BIT,
    GL_TEXTURE_FETCH_BARRIER_BIT,
    GL_TEXTURE_UPDATE_BARRIER_BIT,
)
from src.gpu.ProgramCache import ProgramCache, set_uniform
from src.gpu.ResourceManager import LabelImagePair, ResourceManager
from src.utils.AppLogging import logger


def dispatch_groups(width: int, height: int, local_size: int = 16):
    return (width + local_size - 1) // local_size, (height + local_size - 1) // local_size


class LabelPropagationEngine:
    """Drives the label ping-pong pair through init and a fixed number of rounds."""

    def __init__(
        self,
        ctx: moderngl.Context,
        programs: ProgramCache,
        resources: ResourceManager,
        rounds: int = 16,
        local_size: int = 16,
    ):
        if rounds < 0:
            raise ValueError(f"rounds must be >= 0, got {rounds}")
        self.ctx = ctx
        self.programs = programs
        self.resources = resources
        self.rounds = rounds
        self.local_size = local_size

    @property
    def pair(self) -> LabelImagePair:
        # Looked up every time: reallocation replaces the pair
        return self.resources.labels

    def initialize(self, source: moderngl.Texture, threshold: float) -> None:
        """Seed labels into the active image, then image-access barrier."""
        pair = self.pair
        program = self.programs["label_init"]

        source.use(location=0)
        set_uniform(program, "uTexture", 0)
        set_uniform(program, "uThreshold", float(threshold))
        pair.active.bind_to_image(0, read=False, write=True, format=GL_R32UI)

        program.run(*dispatch_groups(*pair.size, self.local_size))
        self.ctx.memory_barrier(GL_SHADER_IMAGE_ACCESS_BARRIER_BIT)

    def propagate(self, rounds: int) -> None:
        """Run *rounds* read-active / write-inactive / barrier / swap cycles."""
        pair = self.pair
        program = self.programs["label_propagate"]
        groups = dispatch_groups(*pair.size, self.local_size)

        for _ in range(rounds):
            pair.active.bind_to_image(0, read=True, write=False, format=GL_R32UI)
            pair.inactive.bind_to_image(1, read=False, write=True, format=GL_R32UI)
            program.run(*groups)
            self.ctx.memory_barrier(GL_SHADER_IMAGE_ACCESS_BARRIER_BIT)
            pair.swap()

    def run(self, source: moderngl.Texture, threshold: float) -> moderngl.Texture:
        """
        Full labeling for one frame.

        Returns:
            The active label image (final labels)
        """
        self.initialize(source, threshold)
        self.propagate(self.rounds)
        # Counting and colouring sample the labels as a texture
        self.ctx.memory_barrier(GL_TEXTURE_FETCH_BARRIER_BIT)
        logger.debug(f"[LabelPropagation] {self.rounds} rounds at {self.pair.size}, threshold={threshold:.3f}")
        return self.pair.active

    def read_labels(self) -> np.ndarray:
        """Active labels as uint32[height, width]."""
        self.ctx.memory_barrier(GL_TEXTURE_UPDATE_BARRIER_BIT)
        return self.pair.read_active()
