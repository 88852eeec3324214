"""Type tag constants and schema node structures.

A loose schema (strings, lists, callables) is compiled once by
datastream.schema into the node classes below; the struct reader and
writer dispatch on the node class only.
"""

import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional

# Byte order prefixes, as understood by the struct module
LITTLE_ENDIAN = '<'
BIG_ENDIAN = '>'
ENDIANNESS_VALUES = frozenset([LITTLE_ENDIAN, BIG_ENDIAN])

NATIVE_ENDIANNESS = LITTLE_ENDIAN if sys.byteorder == 'little' else BIG_ENDIAN
DEFAULT_ENDIANNESS = LITTLE_ENDIAN

# Type tag suffixes selecting an explicit byte order
ENDIAN_SUFFIXES = {'le': LITTLE_ENDIAN, 'be': BIG_ENDIAN}


class StaleViewError(RuntimeError):
    """A mapped array was used after its buffer was reallocated."""


@dataclass(frozen=True)
class ScalarKind:
    name: str
    fmt: str     # struct format character
    width: int
    dtype: str   # numpy dtype, native byte order
    is_float: bool = False

    @property
    def pack_fmt(self) -> str:
        # Integers are masked to width and packed unsigned, which wraps
        # out-of-range values instead of raising struct.error.
        return self.fmt if self.is_float else self.fmt.upper()

    @property
    def mask(self) -> int:
        return (1 << (self.width * 8)) - 1


SCALAR_TYPES = {
    'uint8': ScalarKind('uint8', 'B', 1, 'u1'),
    'int8': ScalarKind('int8', 'b', 1, 'i1'),
    'uint16': ScalarKind('uint16', 'H', 2, 'u2'),
    'int16': ScalarKind('int16', 'h', 2, 'i2'),
    'uint32': ScalarKind('uint32', 'I', 4, 'u4'),
    'int32': ScalarKind('int32', 'i', 4, 'i4'),
    'float32': ScalarKind('float32', 'f', 4, 'f4', is_float=True),
    'float64': ScalarKind('float64', 'd', 8, 'f8', is_float=True),
}

# String type tag -> (base name, explicit byte order)
STRING_TYPES = {
    'string': ('string', None),
    'cstring': ('cstring', None),
    'u16string': ('u16string', None),
    'u16stringle': ('u16string', LITTLE_ENDIAN),
    'u16stringbe': ('u16string', BIG_ENDIAN),
}

# Loose-schema spelling of the greedy array length
GREEDY_MARKER = '*'


# ========== Array length specifications ==========

@dataclass(frozen=True)
class LiteralLength:
    count: int


@dataclass(frozen=True)
class FieldLength:
    """Length taken from an already decoded sibling field."""
    name: str


@dataclass(frozen=True)
class CallableLength:
    """Length computed by ``func(record, stream, node)``."""
    func: Callable


class GreedyLength:
    """Read elements until end of buffer or the first failing element."""
    __slots__ = ()

    def __repr__(self):
        return 'GREEDY'


GREEDY = GreedyLength()


# ========== Schema nodes ==========

@dataclass(frozen=True)
class ScalarType:
    name: str
    endianness: Optional[str] = None  # None -> stream default
    length_override: Optional[int] = None


@dataclass(frozen=True)
class StringType:
    name: str  # 'string', 'cstring' or 'u16string'
    endianness: Optional[str] = None
    length_override: Optional[int] = None


@dataclass(frozen=True)
class ArrayType:
    label: str
    element: Any
    length: Any  # LiteralLength, FieldLength, CallableLength or GREEDY


@dataclass(frozen=True)
class StructType:
    fields: tuple  # ((name, node), ...)

    @property
    def names(self) -> list:
        return [name for name, _ in self.fields]


@dataclass(frozen=True)
class FunctionCodec:
    """Caller-supplied function.

    Decoding calls ``func(stream, record)``; encoding calls
    ``func(stream, value)``.
    """
    func: Callable


@dataclass(frozen=True)
class ObjectCodec:
    codec: Any
    decode: Callable  # decode(stream, record)
    encode: Callable  # encode(stream, value, record)


SCHEMA_NODE_TYPES = (
    ScalarType, StringType, ArrayType, StructType, FunctionCodec, ObjectCodec,
)
