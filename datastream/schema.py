"""Compiler from loose struct descriptions to schema nodes.

Loose grammar:
    'uint16', 'int32be', 'float64le'     scalar, optional byte order suffix
    'string', 'cstring', 'u16string[le|be]'
    'cstring:10', 'uint32:8'             fixed slot of N units
    [label, element, length]             array; length is an int, a digit
                                         string, '*' (greedy), a sibling
                                         field name or a callable
    [(name, type), ...] or {name: type}  nested struct
    callable                             custom decode/encode function
    object with decode/encode (get/set)  custom codec

Tags are split into base type, byte order and length override here, once,
so that decoding never re-parses strings.
"""

from .types import (
    SCALAR_TYPES, STRING_TYPES, ENDIAN_SUFFIXES, GREEDY, GREEDY_MARKER,
    SCHEMA_NODE_TYPES, GreedyLength, LiteralLength, FieldLength, CallableLength,
    ScalarType, StringType, ArrayType, StructType, FunctionCodec, ObjectCodec,
)


def compile_schema(schema) -> StructType:
    """Compile a struct description (pairs or mapping) into a StructType."""
    node = compile_type(schema)
    if not isinstance(node, StructType):
        raise ValueError(f"Expected a struct description, got {schema!r}")
    return node


def compile_type(t):
    """Compile a single loose type description into a schema node."""
    if isinstance(t, SCHEMA_NODE_TYPES):
        return t
    if isinstance(t, str):
        return parse_type_tag(t)
    if callable(t):
        return FunctionCodec(t)
    codec = _as_object_codec(t)
    if codec is not None:
        return codec
    if isinstance(t, dict):
        return StructType(tuple((name, compile_type(v)) for name, v in t.items()))
    if isinstance(t, (list, tuple)):
        if len(t) == 3 and isinstance(t[0], str):
            label, element, length = t
            return ArrayType(label=label, element=compile_type(element),
                             length=compile_length(length))
        return StructType(tuple(_compile_field(f) for f in t))
    raise ValueError(f"Not a valid type description: {t!r}")


def _compile_field(field):
    if not isinstance(field, (list, tuple)) or len(field) != 2 \
            or not isinstance(field[0], str):
        raise ValueError(f"Struct field must be a (name, type) pair, got {field!r}")
    name, t = field
    return (name, compile_type(t))


def _as_object_codec(t):
    decode = getattr(t, 'decode', None)
    encode = getattr(t, 'encode', None)
    if not (callable(decode) and callable(encode)):
        decode = getattr(t, 'get', None)
        encode = getattr(t, 'set', None)
    if callable(decode) and callable(encode):
        return ObjectCodec(codec=t, decode=decode, encode=encode)
    return None


def parse_type_tag(tag: str):
    """Split a scalar or string tag into its explicit parts."""
    base, sep, override = tag.partition(':')
    length_override = None
    if sep:
        try:
            length_override = int(override)
        except ValueError:
            raise ValueError(f"Bad length override in type tag {tag!r}") from None
        if length_override < 0:
            raise ValueError(f"Negative length override in type tag {tag!r}")

    if base in STRING_TYPES:
        name, endianness = STRING_TYPES[base]
        return StringType(name=name, endianness=endianness,
                          length_override=length_override)

    name, endianness = split_endianness(base)
    if name in SCALAR_TYPES:
        return ScalarType(name=name, endianness=endianness,
                          length_override=length_override)
    raise ValueError(f"Unknown type tag {tag!r}")


def split_endianness(name: str):
    """Return (base name, byte order or None) for 'uint16le' style names."""
    suffix = name[-2:]
    if suffix in ENDIAN_SUFFIXES and name[:-2] in SCALAR_TYPES:
        return name[:-2], ENDIAN_SUFFIXES[suffix]
    return name, None


def compile_length(spec):
    """Compile an array length specification."""
    if isinstance(spec, (GreedyLength, LiteralLength, FieldLength, CallableLength)):
        return spec
    if isinstance(spec, bool):
        raise ValueError(f"Not a valid array length: {spec!r}")
    if isinstance(spec, int):
        if spec < 0:
            raise ValueError(f"Negative array length: {spec}")
        return LiteralLength(spec)
    if isinstance(spec, str):
        if spec == GREEDY_MARKER:
            return GREEDY
        if spec.isdigit():
            return LiteralLength(int(spec))
        return FieldLength(spec)
    if callable(spec):
        return CallableLength(spec)
    raise ValueError(f"Not a valid array length: {spec!r}")
