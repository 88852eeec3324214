"""
Struct Tests - decoding and encoding records from schema descriptions.
"""

import numpy as np
import pytest

from datastream.schema import compile_schema
from datastream.stream import DataStream
from datastream.struct_reader import read_struct, read_type
from datastream.struct_writer import write_struct, write_type
from datastream.types import BIG_ENDIAN


def always_fail(stream, record):
    if not stream.is_eof():
        stream.read_uint8()
    return None


def magic_byte(stream, record):
    value = stream.read_uint8()
    return value if value == 0x7E else None


# =============================================================================
# Decoding
# =============================================================================

class TestReadStruct:

    def test_three_uint16(self):
        ds = DataStream(bytes([0x01, 0x00, 0x02, 0x00, 0x03, 0x00]))
        record = ds.read_struct([("a", "uint16"), ("b", "uint16"), ("c", "uint16")])
        assert record == {"a": 1, "b": 2, "c": 3}
        assert ds.position == 6

    def test_field_order_is_schema_order(self):
        ds = DataStream(b"\x02\x01")
        record = ds.read_struct([("z", "uint8"), ("a", "uint8")])
        assert list(record) == ["z", "a"]

    def test_mixed_endianness(self):
        ds = DataStream(b"\x00\x01\x01\x00\x00\x00\x00\x02")
        record = ds.read_struct([("be", "uint16be"), ("le", "uint16le"), ("d", "int32be")])
        assert record == {"be": 1, "le": 1, "d": 2}

    def test_stream_default_endianness(self):
        ds = DataStream(b"\x00\x05", endianness=BIG_ENDIAN)
        assert ds.read_struct([("v", "uint16")]) == {"v": 5}

    def test_nested_struct(self):
        ds = DataStream(b"\x01\x02\x03")
        schema = [("head", "uint8"), ("body", [("x", "uint8"), ("y", "uint8")])]
        assert ds.read_struct(schema) == {"head": 1, "body": {"x": 2, "y": 3}}

    def test_compiled_schema(self):
        schema = compile_schema({"a": "int8", "s": "cstring"})
        ds = DataStream(b"\xffhi\x00")
        assert read_struct(ds, schema) == {"a": -1, "s": "hi"}
        assert ds.position == 4

    def test_strings(self):
        data = b"AB\x00" + b"xyz\x00\x00" + b"q\x00r\x00"
        ds = DataStream(data)
        record = ds.read_struct([("c", "cstring"), ("s", "string:5"), ("u", "u16string")])
        assert record == {"c": "AB", "s": "xyz\x00\x00", "u": "qr"}
        assert ds.position == len(data)

    def test_big_endian_u16string(self):
        ds = DataStream(b"\x00h\x00i")
        assert ds.read_struct([("u", "u16stringbe:2")]) == {"u": "hi"}


class TestBacktracking:

    @pytest.mark.parametrize("data", [b"", b"\x00" * 3, b"\x01\x02\x03\x04\x05\x06\x07\x08"])
    def test_failing_last_field_rewinds(self, data):
        ds = DataStream(b"\x09" + data + b"\x00")
        ds.seek(1)
        schema = [("a", "uint8"), ("bad", always_fail)]
        assert ds.read_struct(schema) is None
        assert ds.position == 1

    def test_failure_position_is_one_shot(self):
        ds = DataStream(b"\x01\x02\x03\x04")
        schema = [("a", "uint8"), ("bad", always_fail)]
        assert ds.read_struct(schema) is None
        assert ds.failure_position == 2
        ds.seek(2)
        assert ds.read_struct(schema) is None
        assert ds.failure_position == 2
        assert ds.read_struct([("a", "uint8")]) == {"a": 3}
        assert ds.failure_position == 2

    def test_nested_failure_fails_parent(self):
        ds = DataStream(b"\x01\x02\x03")
        schema = [("a", "uint8"), ("inner", [("b", "uint8"), ("bad", always_fail)])]
        assert ds.read_struct(schema) is None
        assert ds.position == 0
        assert ds.failure_position == 3

    def test_hard_error_propagates(self):
        ds = DataStream(b"\x01")
        with pytest.raises(ValueError, match="past end"):
            ds.read_struct([("a", "uint8"), ("b", "uint32")])


class TestLengthOverride:

    def test_wider_slot(self):
        ds = DataStream(b"\x01\xaa\xaa\xaa\x02")
        assert ds.read_struct([("a", "uint8:4"), ("b", "uint8")]) == {"a": 1, "b": 2}

    def test_narrower_slot(self):
        ds = DataStream(b"\x01\x00\x00\x00")
        assert ds.read_struct([("a", "uint32:2"), ("b", "uint16")]) == {"a": 1, "b": 0}
        assert ds.position == 4

    def test_cstring_slot(self):
        ds = DataStream(b"ab\x00\xff\xff\x07")
        assert ds.read_struct([("name", "cstring:5"), ("n", "uint8")]) == {"name": "ab", "n": 7}

    def test_u16string_slot_is_bytes(self):
        """``u16string:N`` decodes N code units but the slot is N bytes."""
        ds = DataStream(b"a\x00b\x00c\x00d\x00")
        record = ds.read_struct([("s", "u16string:2"), ("t", "uint8")])
        assert record == {"s": "ab", "t": ord("b")}
        assert ds.position == 3

    def test_slot_past_end_does_not_grow(self):
        ds = DataStream(b"ab")
        with pytest.raises(ValueError, match="past end"):
            ds.read_struct([("s", "string:5")])
        assert ds.byte_length == 2


class TestArrays:

    def test_literal_length(self):
        ds = DataStream(b"\x01\x00\x02\x00\x09")
        record = ds.read_struct([("vals", ["vals", "uint16", 2]), ("tail", "uint8")])
        assert isinstance(record["vals"], np.ndarray)
        assert record["vals"].tolist() == [1, 2]
        assert record["tail"] == 9

    def test_field_length(self):
        ds = DataStream(b"\x03\x0a\x0b\x0c\xff")
        record = ds.read_struct([("count", "uint8"), ("items", ["items", "uint8", "count"])])
        assert record["count"] == 3
        assert record["items"].tolist() == [10, 11, 12]
        assert ds.position == 4

    def test_callable_length(self):
        def length(record, stream, node):
            assert node.label == "items"
            return record["n"] * 2

        ds = DataStream(b"\x01\x05\x06\x07")
        record = ds.read_struct([("n", "uint8"), ("items", ["items", "uint8", length])])
        assert record["items"].tolist() == [5, 6]

    def test_missing_length_field(self):
        ds = DataStream(b"\x01\x02")
        with pytest.raises(ValueError, match="nope"):
            ds.read_struct([("items", ["items", "uint8", "nope"])])

    def test_element_endianness(self):
        ds = DataStream(b"\x00\x01\x00\x02")
        record = ds.read_struct([("v", ["v", "uint16be", 2])])
        assert record["v"].tolist() == [1, 2]

    def test_greedy_typed_array(self):
        ds = DataStream(b"\x01\x00\x02\x00\x03")
        record = ds.read_struct([("v", ["v", "uint16", "*"])])
        assert record["v"].tolist() == [1, 2]
        assert ds.position == 4

    def test_array_of_strings(self):
        ds = DataStream(b"a\x00bc\x00d\x00")
        record = ds.read_struct([("names", ["names", "cstring", 2]), ("rest", ["rest", "cstring", "*"])])
        assert record == {"names": ["a", "bc"], "rest": ["d"]}

    def test_array_of_structs(self):
        ds = DataStream(b"\x02\x01\x02\x03\x04")
        point = [("x", "uint8"), ("y", "uint8")]
        record = ds.read_struct([("n", "uint8"), ("points", ["points", point, "n"])])
        assert record["points"] == [{"x": 1, "y": 2}, {"x": 3, "y": 4}]

    def test_failing_element_fails_struct(self):
        ds = DataStream(b"\x7e\x01\x00\x02")
        element = [("magic", magic_byte), ("v", "uint8")]
        assert ds.read_struct([("items", ["items", element, 2])]) is None
        assert ds.position == 0


class TestGreedy:

    def test_stops_at_soft_failure(self):
        """Three valid elements then garbage: three elements, cursor after the third."""
        ds = DataStream(b"\x7e\x01\x7e\x02\x7e\x03\x00\x09\x09")
        element = [("magic", magic_byte), ("v", "uint8")]
        record = ds.read_struct([("items", ["items", element, "*"])])
        assert [item["v"] for item in record["items"]] == [1, 2, 3]
        assert ds.position == 6

    def test_stops_at_decode_error(self):
        """A truncated fourth element raises, which ends the loop cleanly."""
        ds = DataStream(b"\x01\x00\x02\x00" * 3 + b"\x05\x00")
        element = [("a", "uint16"), ("b", "uint16")]
        record = ds.read_struct([("items", ["items", element, "*"])])
        assert len(record["items"]) == 3
        assert ds.position == 12

    def test_stops_at_raising_function(self):
        def strict(stream, record):
            value = stream.read_uint8()
            if value > 9:
                raise ValueError(f"digit expected, got {value}")
            return value

        ds = DataStream(b"\x01\x02\x03\x20")
        record = ds.read_struct([("digits", ["digits", strict, "*"])])
        assert record["digits"] == [1, 2, 3]
        assert ds.position == 3

    def test_partial_trailing_element(self):
        """A trailing fragment shorter than one element is left unread."""
        ds = DataStream(b"aabbccX")
        record = ds.read_struct([("items", ["items", [("v", "string:2")], "*"])])
        assert [item["v"] for item in record["items"]] == ["aa", "bb", "cc"]
        assert ds.position == 6
        assert ds.byte_length == 7

    def test_empty_buffer(self):
        ds = DataStream(b"")
        record = ds.read_struct([("items", ["items", [("v", "uint8")], "*"])])
        assert record == {"items": []}


class TestCustomCodecs:

    def test_function_sees_partial_record(self):
        def doubled(stream, record):
            return record["a"] * 2 + stream.read_uint8()

        ds = DataStream(b"\x03\x01")
        assert ds.read_struct([("a", "uint8"), ("b", doubled)]) == {"a": 3, "b": 7}

    def test_codec_object(self):
        class Flag:
            def decode(self, stream, record):
                return stream.read_uint8() != 0

            def encode(self, stream, value, record):
                stream.write_uint8(1 if value else 0)

        ds = DataStream(b"\x00\x05")
        assert ds.read_struct([("a", Flag()), ("b", Flag())]) == {"a": False, "b": True}

    def test_read_type_directly(self):
        ds = DataStream(b"\x05\x00")
        assert read_type(ds, "uint16") == 5
        ds.seek(0)
        assert ds.read_type(["v", "uint8", 2]).tolist() == [5, 0]


# =============================================================================
# Encoding
# =============================================================================

class TestWriteStruct:

    SCHEMA = [
        ("magic", "uint32be"),
        ("count", "uint8"),
        ("values", ["values", "int16", "count"]),
        ("name", "cstring"),
        ("label", "string:4"),
        ("pos", [("x", "float32"), ("y", "float64")]),
    ]

    def test_round_trip(self):
        record = {
            "magic": 0xCAFEBABE,
            "count": 3,
            "values": [-1, 0, 1],
            "name": "core",
            "label": "ab",
            "pos": {"x": 1.5, "y": -2.25},
        }
        ds = DataStream()
        ds.write_struct(self.SCHEMA, record)
        size = 4 + 1 + 6 + 5 + 4 + 12
        assert ds.byte_length == size
        ds.seek(0)
        decoded = ds.read_struct(self.SCHEMA)
        assert ds.position == size
        assert decoded["values"].tolist() == [-1, 0, 1]
        assert decoded["label"] == "ab\x00\x00"
        assert decoded["pos"] == {"x": 1.5, "y": -2.25}
        for key in ("magic", "count", "name"):
            assert decoded[key] == record[key]

    def test_scalar_slot_pads(self):
        ds = DataStream()
        write_struct(ds, [("a", "uint8:4"), ("b", "uint8")], {"a": 1, "b": 2})
        assert bytes(ds.buffer) == b"\x01\x00\x00\x00\x02"

    def test_string_slot_truncates(self):
        ds = DataStream()
        ds.write_struct([("s", "cstring:3")], {"s": "abcdef"})
        assert bytes(ds.buffer) == b"abc"

    def test_u16string_slot_is_bytes(self):
        ds = DataStream()
        ds.write_struct([("u", "u16string:4"), ("n", "uint8")], {"u": "hi", "n": 7})
        assert bytes(ds.buffer) == b"h\x00i\x00\x07\x00\x00\x00"

    def test_missing_field(self):
        ds = DataStream()
        with pytest.raises(ValueError, match="'b'"):
            ds.write_struct([("a", "uint8"), ("b", "uint8")], {"a": 1})

    def test_function_codec_write(self):
        written = []

        def codec(stream, value):
            written.append(value)
            stream.write_uint8(value)

        ds = DataStream()
        ds.write_struct([("v", codec)], {"v": 4})
        assert written == [4]
        assert bytes(ds.buffer) == b"\x04"

    def test_codec_object_write_gets_record(self):
        class Echo:
            def decode(self, stream, record):
                return stream.read_uint8()

            def encode(self, stream, value, record):
                stream.write_uint8(value + record["base"])

        ds = DataStream()
        ds.write_struct([("base", "uint8"), ("v", Echo())], {"base": 10, "v": 1})
        assert bytes(ds.buffer) == b"\x0a\x0b"

    def test_array_of_structs(self):
        point = [("x", "uint8"), ("y", "uint8")]
        ds = DataStream()
        write_type(ds, ["pts", point, 2], [{"x": 1, "y": 2}, {"x": 3, "y": 4}])
        assert bytes(ds.buffer) == b"\x01\x02\x03\x04"

    def test_big_endian_elements(self):
        ds = DataStream()
        ds.write_type(["v", "uint16be", 2], [1, 2])
        assert bytes(ds.buffer) == b"\x00\x01\x00\x02"
