"""Growable byte buffer and the mapped array views over it.

The buffer keeps a logical length separate from its allocation so writes
can grow the allocation by doubling and a final trim can hand back an
exactly sized buffer. Reallocation always copies into a fresh bytearray
and bumps ``version``; a MappedArray checks that counter on every use.
"""

import logging

from .types import StaleViewError

logger = logging.getLogger(__name__)


class GrowableBuffer:
    __slots__ = ('data', 'byte_length', 'version')

    def __init__(self, data=None, byte_length: int = None):
        if data is None:
            self.data = bytearray()
        elif isinstance(data, int):
            self.data = bytearray(data)
        elif isinstance(data, bytearray):
            self.data = data
        else:
            self.data = bytearray(data)
        if byte_length is None:
            byte_length = len(self.data)
        if not 0 <= byte_length <= len(self.data):
            raise ValueError(
                f"Logical length {byte_length} outside allocation of {len(self.data)} bytes"
            )
        self.byte_length = byte_length
        self.version = 0

    @property
    def capacity(self) -> int:
        return len(self.data)

    def ensure(self, required: int) -> None:
        """Make room for ``required`` bytes from the start of the buffer."""
        capacity = len(self.data)
        if required <= capacity:
            if required > self.byte_length:
                self.byte_length = required
            return
        new_capacity = max(capacity, 1)
        while required > new_capacity:
            new_capacity *= 2
        logger.debug("Growing buffer from %d to %d bytes", capacity, new_capacity)
        self._reallocate(new_capacity)
        self.byte_length = required

    def trim(self) -> None:
        """Shrink the allocation to exactly the logical length."""
        if self.byte_length == len(self.data):
            return
        logger.debug("Trimming buffer from %d to %d bytes", len(self.data), self.byte_length)
        self._reallocate(self.byte_length)

    def _reallocate(self, size: int) -> None:
        data = bytearray(size)
        n = min(size, len(self.data))
        data[:n] = self.data[:n]
        self.data = data
        self.version += 1


class MappedArray:
    """Typed numpy view over a GrowableBuffer.

    Valid until the buffer next reallocates (a growing write, a trim or a
    dynamic_size change). Any use after that raises StaleViewError.
    """
    __slots__ = ('_buffer', '_version', '_array')

    def __init__(self, buffer: GrowableBuffer, array):
        self._buffer = buffer
        self._version = buffer.version
        self._array = array

    @property
    def is_valid(self) -> bool:
        return self._buffer.version == self._version

    @property
    def array(self):
        if not self.is_valid:
            raise StaleViewError(
                f"Mapped {self._array.dtype} array used after its buffer was reallocated"
            )
        return self._array

    @property
    def dtype(self):
        return self.array.dtype

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self.array
        return self.array.astype(dtype)

    def __len__(self):
        return len(self.array)

    def __getitem__(self, index):
        return self.array[index]

    def __setitem__(self, index, value):
        self.array[index] = value

    def __iter__(self):
        return iter(self.array)

    def tolist(self) -> list:
        return self.array.tolist()

    def __repr__(self):
        state = 'valid' if self.is_valid else 'stale'
        return f"MappedArray({self._array!r}, {state})"
