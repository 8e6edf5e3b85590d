"""
Distinct-label counting with a bit-per-label flags buffer.

Clear zeroes the flags and the counter; count test-and-sets the bit of every
nonzero label and the invocation that flips a bit 0 -> 1 bumps the counter.
The result is the exact number of distinct nonzero labels present.
"""

from typing import Optional

import moderngl
import numpy as np

from src.constants import GL_BUFFER_UPDATE_BARRIER_BIT, GL_SHADER_STORAGE_BARRIER_BIT
from src.gpu.GpuContext import ResourceAllocationError
from src.gpu.ProgramCache import ProgramCache, set_uniform
from src.processing.LabelPropagation import dispatch_groups
from src.utils.AppLogging import logger

FLAGS_BINDING = 1
COUNTER_BINDING = 2
CLEAR_LOCAL_SIZE = 256


def flag_words(pixel_count: int) -> int:
    """uint32 words needed for one bit per label value 0..pixel_count."""
    return (pixel_count + 1 + 31) // 32


class LabelCounter:
    """Owns the flags and counter storage buffers."""

    def __init__(self, ctx: moderngl.Context, programs: ProgramCache, local_size: int = 16):
        self.ctx = ctx
        self.programs = programs
        self.local_size = local_size
        self.flags: Optional[moderngl.Buffer] = None
        self.counter: Optional[moderngl.Buffer] = None
        self.capacity_words = 0
        self.last_count = 0
        self.missed_readbacks = 0

    def ensure_capacity(self, pixel_count: int) -> int:
        """Grow the flags buffer to cover *pixel_count* labels; returns the word count."""
        words = flag_words(pixel_count)
        try:
            if self.flags is None or words > self.capacity_words:
                if self.flags is not None:
                    self.flags.release()
                self.flags = self.ctx.buffer(reserve=words * 4)
                self.capacity_words = words
                logger.info(f"[LabelCounter] Flags buffer {words} words ({pixel_count} pixels)")
            if self.counter is None:
                self.counter = self.ctx.buffer(reserve=4)
        except Exception as e:
            raise ResourceAllocationError(f"Label counter buffers ({words} words): {e}") from e
        return words

    def clear(self, words: int) -> None:
        program = self.programs["label_clear"]
        set_uniform(program, "uWordCount", words)
        program.run((words + CLEAR_LOCAL_SIZE - 1) // CLEAR_LOCAL_SIZE)
        self.ctx.memory_barrier(GL_SHADER_STORAGE_BARRIER_BIT)

    def count(self, label_texture: moderngl.Texture) -> Optional[int]:
        """
        Number of distinct nonzero labels in *label_texture*.

        Returns:
            The count, or None when the readback produced no data
        """
        width, height = label_texture.size
        words = self.ensure_capacity(width * height)
        self.flags.bind_to_storage_buffer(FLAGS_BINDING)
        self.counter.bind_to_storage_buffer(COUNTER_BINDING)

        self.clear(words)

        program = self.programs["label_count"]
        label_texture.use(location=0)
        set_uniform(program, "uLabelTexture", 0)
        program.run(*dispatch_groups(width, height, self.local_size))
        self.ctx.memory_barrier(GL_SHADER_STORAGE_BARRIER_BIT | GL_BUFFER_UPDATE_BARRIER_BIT)

        data = self.counter.read()
        if not data or len(data) < 4:
            self.missed_readbacks += 1
            logger.debug(f"[LabelCounter] Counter readback empty, keeping {self.last_count}")
            return None
        self.last_count = int(np.frombuffer(data, dtype=np.uint32, count=1)[0])
        return self.last_count

    def release(self) -> None:
        for buffer in (self.flags, self.counter):
            if buffer is not None:
                buffer.release()
        self.flags = None
        self.counter = None
        self.capacity_words = 0
