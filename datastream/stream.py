"""Binary stream reader/writer over a growable buffer.

Wraps a GrowableBuffer with a position pointer and reads/writes typed
scalars with struct.unpack_from/pack_into, typed arrays (copied into
fresh numpy arrays or mapped directly over the buffer), and ASCII, C and
UTF-16 strings. Writes past the end grow the buffer unless dynamic_size
is turned off.
"""

import math
import struct

import numpy as np

from .buffer import GrowableBuffer, MappedArray
from .endian import array_to_native
from .types import DEFAULT_ENDIANNESS, ENDIANNESS_VALUES, SCALAR_TYPES, ScalarKind
from . import struct_reader, struct_writer

_ASCII_ENCODINGS = frozenset(['ascii'])


def _kind(type_name) -> ScalarKind:
    if isinstance(type_name, ScalarKind):
        return type_name
    try:
        return SCALAR_TYPES[type_name]
    except KeyError:
        raise ValueError(f"Unknown scalar type {type_name!r}") from None


def _check_encoding(encoding):
    if encoding is not None and encoding.lower() not in _ASCII_ENCODINGS:
        raise ValueError(f"Unsupported encoding {encoding!r}")


class DataStream:
    """Reads and writes scalars, arrays, strings and structs at a cursor.

    ``data`` may be a GrowableBuffer, a bytearray (shared, not copied),
    any other bytes-like object (copied), an int initial size, or None.
    ``byte_offset`` moves the start of the stream window into the buffer
    and ``byte_length`` limits its visible length.
    """

    def __init__(self, data=None, byte_offset: int = 0,
                 endianness: str = DEFAULT_ENDIANNESS,
                 byte_length: int = None, dynamic_size: bool = True):
        if endianness not in ENDIANNESS_VALUES:
            raise ValueError(f"Endianness must be '<' or '>', got {endianness!r}")
        if isinstance(data, GrowableBuffer):
            self._buffer = data
        else:
            window_end = None if byte_length is None else byte_offset + byte_length
            self._buffer = GrowableBuffer(data, window_end)
        if not 0 <= byte_offset <= self._buffer.byte_length:
            raise ValueError(
                f"Byte offset {byte_offset} outside buffer of {self._buffer.byte_length} bytes"
            )
        self._byte_offset = byte_offset
        # No trim at construction, so a shared bytearray stays shared
        self._dynamic_size = bool(dynamic_size)
        self.position = 0
        self.endianness = endianness
        # First position at which a struct failed to decode; diagnostic only
        self.failure_position = None

    # ========== Buffer and cursor ==========

    @property
    def dynamic_size(self) -> bool:
        return self._dynamic_size

    @dynamic_size.setter
    def dynamic_size(self, value: bool):
        if not value:
            self._buffer.trim()
        self._dynamic_size = bool(value)

    @property
    def buffer(self) -> bytearray:
        """The backing bytearray, trimmed to the logical length."""
        self._buffer.trim()
        return self._buffer.data

    @property
    def raw_buffer(self) -> GrowableBuffer:
        return self._buffer

    @property
    def byte_offset(self) -> int:
        return self._byte_offset

    @byte_offset.setter
    def byte_offset(self, value: int):
        if not 0 <= value <= self._buffer.byte_length:
            raise ValueError(
                f"Byte offset {value} outside buffer of {self._buffer.byte_length} bytes"
            )
        self._byte_offset = value
        self.position = min(self.position, self.byte_length)

    @property
    def byte_length(self) -> int:
        """Number of bytes visible to this stream."""
        return self._buffer.byte_length - self._byte_offset

    def getvalue(self) -> bytes:
        """Copy of the bytes visible to this stream."""
        return bytes(self._buffer.data[self._byte_offset:self._buffer.byte_length])

    def ensure_capacity(self, extra: int) -> None:
        """Grow the buffer to hold ``extra`` bytes past the cursor."""
        if not self._dynamic_size:
            return
        self._buffer.ensure(self._byte_offset + self.position + extra)

    def seek(self, pos) -> None:
        """Move the cursor, clamping into [0, byte_length]."""
        if isinstance(pos, float) and not math.isfinite(pos):
            self.position = 0
            return
        try:
            pos = int(pos)
        except (TypeError, ValueError):
            pos = 0
        self.position = max(0, min(self.byte_length, pos))

    def is_eof(self) -> bool:
        return self.position >= self.byte_length

    def mark(self) -> int:
        """Checkpoint the cursor for a later reset()."""
        return self.position

    def reset(self, mark: int) -> None:
        self.position = mark

    def _endian(self, endianness):
        return self.endianness if endianness is None else endianness

    def _check_read(self, size: int) -> int:
        if self.position + size > self.byte_length:
            raise ValueError(
                f"Read of {size} bytes past end of stream at offset 0x{self.position:x}"
            )
        return self._byte_offset + self.position

    def _check_write(self, size: int) -> int:
        offset = self._byte_offset + self.position
        if offset + size > self._buffer.byte_length:
            raise ValueError(
                f"Write of {size} bytes past end of buffer at offset 0x{self.position:x}"
            )
        return offset

    # ========== Scalars ==========

    def read_scalar(self, type_name, endianness: str = None):
        kind = _kind(type_name)
        offset = self._check_read(kind.width)
        val, = struct.unpack_from(self._endian(endianness) + kind.fmt,
                                  self._buffer.data, offset)
        self.position += kind.width
        return val

    def write_scalar(self, type_name, value, endianness: str = None) -> None:
        kind = _kind(type_name)
        self.ensure_capacity(kind.width)
        offset = self._check_write(kind.width)
        fmt = self._endian(endianness) + kind.pack_fmt
        if kind.is_float:
            value = float(value)
            try:
                struct.pack_into(fmt, self._buffer.data, offset, value)
            except OverflowError:
                struct.pack_into(fmt, self._buffer.data, offset,
                                 math.copysign(math.inf, value))
        else:
            struct.pack_into(fmt, self._buffer.data, offset, int(value) & kind.mask)
        self.position += kind.width

    def read_uint8(self) -> int:
        return self.read_scalar('uint8')

    def read_int8(self) -> int:
        return self.read_scalar('int8')

    def read_uint16(self, endianness: str = None) -> int:
        return self.read_scalar('uint16', endianness)

    def read_int16(self, endianness: str = None) -> int:
        return self.read_scalar('int16', endianness)

    def read_uint32(self, endianness: str = None) -> int:
        return self.read_scalar('uint32', endianness)

    def read_int32(self, endianness: str = None) -> int:
        return self.read_scalar('int32', endianness)

    def read_float32(self, endianness: str = None) -> float:
        return self.read_scalar('float32', endianness)

    def read_float64(self, endianness: str = None) -> float:
        return self.read_scalar('float64', endianness)

    def write_uint8(self, value: int) -> None:
        self.write_scalar('uint8', value)

    def write_int8(self, value: int) -> None:
        self.write_scalar('int8', value)

    def write_uint16(self, value: int, endianness: str = None) -> None:
        self.write_scalar('uint16', value, endianness)

    def write_int16(self, value: int, endianness: str = None) -> None:
        self.write_scalar('int16', value, endianness)

    def write_uint32(self, value: int, endianness: str = None) -> None:
        self.write_scalar('uint32', value, endianness)

    def write_int32(self, value: int, endianness: str = None) -> None:
        self.write_scalar('int32', value, endianness)

    def write_float32(self, value: float, endianness: str = None) -> None:
        self.write_scalar('float32', value, endianness)

    def write_float64(self, value: float, endianness: str = None) -> None:
        self.write_scalar('float64', value, endianness)

    # ========== Mapped arrays ==========

    def map_array(self, type_name, length: int, endianness: str = None) -> MappedArray:
        """Map ``length`` elements over the buffer without copying.

        Multi-byte elements are converted to native byte order in place,
        so the underlying buffer bytes change. The view is only valid until
        the buffer next reallocates.
        """
        kind = _kind(type_name)
        size = length * kind.width
        offset = self._check_read(size)
        if length:
            array = np.frombuffer(self._buffer.data, dtype=kind.dtype,
                                  count=length, offset=offset)
        else:
            array = np.zeros(0, dtype=kind.dtype)
        array_to_native(array, self._endian(endianness))
        self.position += size
        return MappedArray(self._buffer, array)

    def map_uint8_array(self, length: int) -> MappedArray:
        return self.map_array('uint8', length)

    def map_int8_array(self, length: int) -> MappedArray:
        return self.map_array('int8', length)

    def map_uint16_array(self, length: int, endianness: str = None) -> MappedArray:
        return self.map_array('uint16', length, endianness)

    def map_int16_array(self, length: int, endianness: str = None) -> MappedArray:
        return self.map_array('int16', length, endianness)

    def map_uint32_array(self, length: int, endianness: str = None) -> MappedArray:
        return self.map_array('uint32', length, endianness)

    def map_int32_array(self, length: int, endianness: str = None) -> MappedArray:
        return self.map_array('int32', length, endianness)

    def map_float32_array(self, length: int, endianness: str = None) -> MappedArray:
        return self.map_array('float32', length, endianness)

    def map_float64_array(self, length: int, endianness: str = None) -> MappedArray:
        return self.map_array('float64', length, endianness)

    # ========== Copying arrays ==========

    def read_array(self, type_name, length: int = None, endianness: str = None) -> np.ndarray:
        """Read ``length`` elements (default: all remaining) into a new array."""
        kind = _kind(type_name)
        if length is None:
            length = max(self.byte_length - self.position, 0) // kind.width
        array = np.empty(length, dtype=kind.dtype)
        for i in range(length):
            array[i] = self.read_scalar(kind, endianness)
        return array

    def write_array(self, type_name, values, endianness: str = None) -> None:
        kind = _kind(type_name)
        self.ensure_capacity(len(values) * kind.width)
        for value in values:
            self.write_scalar(kind, value, endianness)

    def read_uint8_array(self, length: int = None) -> np.ndarray:
        return self.read_array('uint8', length)

    def read_int8_array(self, length: int = None) -> np.ndarray:
        return self.read_array('int8', length)

    def read_uint16_array(self, length: int = None, endianness: str = None) -> np.ndarray:
        return self.read_array('uint16', length, endianness)

    def read_int16_array(self, length: int = None, endianness: str = None) -> np.ndarray:
        return self.read_array('int16', length, endianness)

    def read_uint32_array(self, length: int = None, endianness: str = None) -> np.ndarray:
        return self.read_array('uint32', length, endianness)

    def read_int32_array(self, length: int = None, endianness: str = None) -> np.ndarray:
        return self.read_array('int32', length, endianness)

    def read_float32_array(self, length: int = None, endianness: str = None) -> np.ndarray:
        return self.read_array('float32', length, endianness)

    def read_float64_array(self, length: int = None, endianness: str = None) -> np.ndarray:
        return self.read_array('float64', length, endianness)

    def write_uint8_array(self, values) -> None:
        self.write_array('uint8', values)

    def write_int8_array(self, values) -> None:
        self.write_array('int8', values)

    def write_uint16_array(self, values, endianness: str = None) -> None:
        self.write_array('uint16', values, endianness)

    def write_int16_array(self, values, endianness: str = None) -> None:
        self.write_array('int16', values, endianness)

    def write_uint32_array(self, values, endianness: str = None) -> None:
        self.write_array('uint32', values, endianness)

    def write_int32_array(self, values, endianness: str = None) -> None:
        self.write_array('int32', values, endianness)

    def write_float32_array(self, values, endianness: str = None) -> None:
        self.write_array('float32', values, endianness)

    def write_float64_array(self, values, endianness: str = None) -> None:
        self.write_array('float64', values, endianness)

    # ========== Strings ==========

    def _write_chars(self, s: str, length: int = None) -> None:
        if length is None:
            length = len(s)
        n = min(len(s), length)
        for ch in s[:n]:
            self.write_uint8(ord(ch))
        for _ in range(length - n):
            self.write_uint8(0)

    def read_string(self, length: int = None, encoding: str = None) -> str:
        """Read ``length`` bytes (default: the rest) as one char per byte."""
        _check_encoding(encoding)
        if length is None:
            length = self.byte_length - self.position
        return self.map_uint8_array(length).array.tobytes().decode('latin-1')

    def write_string(self, s: str, encoding: str = None, length: int = None) -> None:
        """Write ``s`` one byte per char.

        With ``length`` the output is truncated or zero padded to exactly
        that many bytes; without it a single zero terminator is appended.
        """
        _check_encoding(encoding)
        self._write_chars(s, length)
        if length is None:
            self.write_uint8(0)

    def read_cstring(self, length: int = None) -> str:
        """Read a zero terminated string.

        With ``length``, exactly that many bytes are consumed (clamped to
        the end of the stream) wherever the terminator falls. Without it,
        the terminator is consumed unless the string ran to end of buffer.
        """
        remaining = max(self.byte_length - self.position, 0)
        scan = remaining if length is None else min(length, remaining)
        start = self._byte_offset + self.position
        end = self._buffer.data.find(0, start, start + scan)
        count = scan if end < 0 else end - start
        s = self.map_uint8_array(count).array.tobytes().decode('latin-1')
        if length is not None:
            self.position += scan - count
        elif count != remaining:
            self.position += 1
        return s

    def write_cstring(self, s: str, length: int = None) -> None:
        self._write_chars(s, length)
        if length is None:
            self.write_uint8(0)

    def read_utf16_string(self, length: int = None, endianness: str = None) -> str:
        """Read ``length`` UTF-16 code units, one char each (no pairing)."""
        units = self.read_uint16_array(length, endianness)
        return ''.join(map(chr, units.tolist()))

    def write_utf16_string(self, s: str, endianness: str = None,
                           length_override: int = None) -> None:
        encoded = s.encode('utf-16-le', 'surrogatepass')
        units = struct.unpack(f'<{len(encoded) // 2}H', encoded)
        if length_override is None:
            length_override = len(units)
        n = min(len(units), length_override)
        for unit in units[:n]:
            self.write_uint16(unit, endianness)
        for _ in range(length_override - n):
            self.write_uint16(0)

    # ========== Structs ==========

    def read_struct(self, schema):
        """Decode a record; returns None (cursor unmoved) on failure."""
        return struct_reader.read_struct(self, schema)

    def read_type(self, t, record: dict = None):
        return struct_reader.read_type(self, t, record)

    def write_struct(self, schema, record: dict) -> None:
        struct_writer.write_struct(self, schema, record)

    def write_type(self, t, value, record: dict = None) -> None:
        struct_writer.write_type(self, t, value, record)

    def __repr__(self):
        return (f"DataStream(position={self.position}, byte_length={self.byte_length}, "
                f"endianness={self.endianness!r})")
