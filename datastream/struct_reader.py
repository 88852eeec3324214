"""Struct decoder with a dispatch table keyed by schema node class.

A failed field (a reader returning None) fails its enclosing struct: the
cursor is rewound to where the struct started and None propagates up, so
a greedy array of structs can stop cleanly at the first bad element.
"""

import logging
import struct

from .schema import compile_schema, compile_type
from .types import (
    GREEDY, LiteralLength, FieldLength, CallableLength,
    ScalarType, StringType, ArrayType, StructType, FunctionCodec, ObjectCodec,
)

logger = logging.getLogger(__name__)

# Errors that end a greedy array instead of aborting the decode
DECODE_ERRORS = (ValueError, IndexError, struct.error)

# Dispatch table: node class -> reader function
_readers = {}


def register_reader(node_type):
    """Decorator to register a reader function for a schema node class."""
    def decorator(func):
        _readers[node_type] = func
        return func
    return decorator


def read_struct(stream, schema):
    """Decode one record, or return None with the cursor unmoved."""
    node = schema if isinstance(schema, StructType) else compile_schema(schema)
    record = {}
    start = stream.mark()
    for name, field_type in node.fields:
        value = read_type(stream, field_type, record)
        if value is None:
            if stream.failure_position is None:
                stream.failure_position = stream.position
                logger.debug("First decode failure in field %r at offset 0x%x",
                             name, stream.position)
            stream.reset(start)
            return None
        record[name] = value
    return record


def read_type(stream, t, record: dict = None):
    """Decode one value of type ``t``; None signals a soft failure."""
    node = compile_type(t)
    if record is None:
        record = {}
    return _readers[type(node)](stream, node, record)


# ========== Reader implementations ==========

@register_reader(FunctionCodec)
def read_function_codec(stream, node, record):
    return node.func(stream, record)


@register_reader(ObjectCodec)
def read_object_codec(stream, node, record):
    return node.decode(stream, record)


@register_reader(StructType)
def read_struct_type(stream, node, record):
    return read_struct(stream, node)


@register_reader(ScalarType)
def read_scalar_type(stream, node, record):
    start = stream.position
    value = stream.read_scalar(node.name, node.endianness)
    if node.length_override is not None:
        stream.seek(start + node.length_override)
    return value


@register_reader(StringType)
def read_string_type(stream, node, record):
    start = stream.position
    length = node.length_override
    if node.name == 'cstring':
        value = stream.read_cstring(length)
    elif node.name == 'string':
        value = stream.read_string(length)
    else:
        value = stream.read_utf16_string(length, node.endianness)
    if length is not None:
        stream.seek(start + length)
    return value


@register_reader(ArrayType)
def read_array_type(stream, node, record):
    element = node.element
    length = resolve_length(stream, node, record)
    if isinstance(element, ScalarType) and element.length_override is None:
        return stream.read_array(element.name, length, element.endianness)
    if length is None:
        return _read_greedy(stream, element, record)
    values = []
    for _ in range(length):
        value = read_type(stream, element, record)
        if value is None:
            return None
        values.append(value)
    return values


def resolve_length(stream, node: ArrayType, record: dict):
    """Element count for an array node; None means greedy."""
    spec = node.length
    if spec is GREEDY:
        return None
    if isinstance(spec, LiteralLength):
        return spec.count
    if isinstance(spec, FieldLength):
        if record.get(spec.name) is None:
            raise ValueError(
                f"Length field {spec.name!r} of array {node.label!r} not decoded "
                f"at offset 0x{stream.position:x}"
            )
        return int(record[spec.name])
    if isinstance(spec, CallableLength):
        return int(spec.func(record, stream, node))
    raise ValueError(f"Not a valid array length: {spec!r}")


def _read_greedy(stream, element, record):
    values = []
    while not stream.is_eof():
        mark = stream.mark()
        try:
            value = read_type(stream, element, record)
        except DECODE_ERRORS as e:
            logger.debug("Greedy array stopped at offset 0x%x: %s", mark, e)
            stream.reset(mark)
            break
        if value is None:
            stream.reset(mark)
            break
        if stream.position == mark:
            # zero-width element
            break
        values.append(value)
    return values
