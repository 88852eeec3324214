"""Struct encoder, the mirror of struct_reader."""

from .schema import compile_schema, compile_type
from .types import (
    ScalarType, StringType, ArrayType, StructType, FunctionCodec, ObjectCodec,
)

# Dispatch table: node class -> writer function
_writers = {}


def register_writer(node_type):
    """Decorator to register a writer function for a schema node class."""
    def decorator(func):
        _writers[node_type] = func
        return func
    return decorator


def write_struct(stream, schema, record: dict) -> None:
    """Encode ``record`` field by field in schema order."""
    node = schema if isinstance(schema, StructType) else compile_schema(schema)
    for name, field_type in node.fields:
        if name not in record:
            raise ValueError(
                f"Record has no value for field {name!r} at offset 0x{stream.position:x}"
            )
        write_type(stream, field_type, record[name], record)


def write_type(stream, t, value, record: dict = None) -> None:
    node = compile_type(t)
    _writers[type(node)](stream, node, value, record)


def _fix_slot(stream, start: int, size):
    """Pad or truncate the value written at ``start`` to ``size`` bytes."""
    if size is None:
        return
    stream.position = start
    stream.ensure_capacity(size)
    stream.position = start + size


# ========== Writer implementations ==========

@register_writer(FunctionCodec)
def write_function_codec(stream, node, value, record):
    node.func(stream, value)


@register_writer(ObjectCodec)
def write_object_codec(stream, node, value, record):
    node.encode(stream, value, record)


@register_writer(StructType)
def write_struct_type(stream, node, value, record):
    write_struct(stream, node, value)


@register_writer(ScalarType)
def write_scalar_type(stream, node, value, record):
    start = stream.position
    stream.write_scalar(node.name, value, node.endianness)
    _fix_slot(stream, start, node.length_override)


@register_writer(StringType)
def write_string_type(stream, node, value, record):
    start = stream.position
    length = node.length_override
    if node.name == 'cstring':
        stream.write_cstring(value, length)
    elif node.name == 'string':
        stream.write_string(value, None, length)
    else:
        stream.write_utf16_string(value, node.endianness, length)
    if length is not None:
        _fix_slot(stream, start, length)


@register_writer(ArrayType)
def write_array_type(stream, node, value, record):
    element = node.element
    if isinstance(element, ScalarType) and element.length_override is None:
        stream.write_array(element.name, value, element.endianness)
        return
    for item in value:
        write_type(stream, element, item, record)
