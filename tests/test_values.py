import math
import struct

import pytest

from tinypb.stream import DecodeError, InputStream
from tinypb.values import (
    decode_bytes_field,
    decode_double_as_float,
    decode_fixed_length_bytes,
    decode_string_field,
    decode_svarint_field,
    decode_uvarint_field,
    decode_varint_field,
)


def _varint(value: int) -> bytes:
    value &= 0xFFFFFFFFFFFFFFFF
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _zigzag(value: int) -> int:
    return (value << 1) ^ (value >> 63)


def _stream(data: bytes) -> InputStream:
    return InputStream(data)


# ---------------------------------------------------------------- uvarint


def test_uvarint_pinned_example():
    assert decode_uvarint_field(_stream(b"\xac\x02"), 4) == 300


@pytest.mark.parametrize("size,value", [(1, 255), (2, 65535), (4, 0xFFFFFFFF),
                                        (8, 0xFFFFFFFFFFFFFFFF)])
def test_uvarint_largest_value_fits(size, value):
    stream = _stream(_varint(value))
    assert decode_uvarint_field(stream, size) == value
    assert stream.bytes_left == 0


@pytest.mark.parametrize("size,value", [(1, 256), (2, 65536), (4, 0x100000000)])
def test_uvarint_too_large(size, value):
    stream = _stream(_varint(value))
    with pytest.raises(DecodeError, match="integer too large"):
        decode_uvarint_field(stream, size)
    assert stream.errmsg == "integer too large"


def test_uvarint_invalid_size():
    with pytest.raises(DecodeError, match="invalid data_size"):
        decode_uvarint_field(_stream(b"\x01"), 3)


# ---------------------------------------------------------------- varint


@pytest.mark.parametrize("size", [1, 2, 4, 8])
def test_varint_negative_one_ten_bytes(size):
    data = _varint(-1)
    assert len(data) == 10
    assert decode_varint_field(_stream(data), size) == -1


def test_varint_five_byte_negative_for_32bit_field():
    data = _varint(-5 & 0xFFFFFFFF)
    assert len(data) == 5
    assert decode_varint_field(_stream(data), 4) == -5


def test_varint_five_byte_negative_is_positive_in_64bit_field():
    value = -5 & 0xFFFFFFFF
    assert decode_varint_field(_stream(_varint(value)), 8) == value


@pytest.mark.parametrize("size,value", [(1, 127), (1, -128), (2, -32768),
                                        (4, 2**31 - 1), (8, -(2**63))])
def test_varint_round_trip_limits(size, value):
    assert decode_varint_field(_stream(_varint(value)), size) == value


@pytest.mark.parametrize("size,value", [(1, 128), (1, -129), (2, 40000)])
def test_varint_too_large(size, value):
    with pytest.raises(DecodeError, match="integer too large"):
        decode_varint_field(_stream(_varint(value)), size)


def test_varint_invalid_size():
    with pytest.raises(DecodeError, match="invalid data_size"):
        decode_varint_field(_stream(b"\x01"), 5)


# ---------------------------------------------------------------- svarint


def test_svarint_pinned_zigzag():
    assert decode_svarint_field(_stream(b"\x03"), 4) == -2


@pytest.mark.parametrize("size,value", [(1, -128), (1, 127), (2, -300),
                                        (4, -(2**31)), (8, 2**63 - 1)])
def test_svarint_round_trip(size, value):
    stream = _stream(_varint(_zigzag(value)))
    assert decode_svarint_field(stream, size) == value
    assert stream.bytes_left == 0


@pytest.mark.parametrize("size,value", [(1, 300), (2, -40000), (4, 2**31)])
def test_svarint_too_large(size, value):
    with pytest.raises(DecodeError, match="integer too large"):
        decode_svarint_field(_stream(_varint(_zigzag(value))), size)


# ---------------------------------------------------------------- bytes


def test_bytes_static_field():
    stream = _stream(b"\x03abcrest")
    assert decode_bytes_field(stream, 8) == b"abc"
    assert stream.bytes_left == 4


def test_bytes_exactly_fills_field():
    assert decode_bytes_field(_stream(b"\x03xyz"), 3) == b"xyz"


def test_bytes_overflow():
    stream = _stream(b"\x03abc")
    with pytest.raises(DecodeError, match="bytes overflow"):
        decode_bytes_field(stream, 2)
    assert stream.errmsg == "bytes overflow"


def test_bytes_unbounded():
    payload = bytes(range(200))
    assert decode_bytes_field(_stream(_varint(200) + payload), None) == payload


def test_bytes_unbounded_longer_than_input():
    with pytest.raises(DecodeError, match="end-of-stream"):
        decode_bytes_field(_stream(b"\x05ab"), None)


def test_bytes_longer_than_size_counter():
    with pytest.raises(DecodeError, match="bytes overflow"):
        decode_bytes_field(_stream(_varint(0x10000)), None)


# ---------------------------------------------------------------- strings


def test_string_static():
    assert decode_string_field(_stream(b"\x05hello"), 10, True) == b"hello"


def test_string_overflow():
    with pytest.raises(DecodeError, match="string overflow"):
        decode_string_field(_stream(b"\x05hello"), 4, False)


def test_string_unbounded_past_end():
    with pytest.raises(DecodeError, match="end-of-stream"):
        decode_string_field(_stream(b"\x09hi"), None, False)


def test_string_invalid_utf8_rejected_when_validating():
    stream = _stream(b"\x02\xc0\x80")
    with pytest.raises(DecodeError, match="invalid utf8"):
        decode_string_field(stream, None, True)
    assert stream.errmsg == "invalid utf8"


def test_string_invalid_utf8_kept_without_validation():
    assert decode_string_field(_stream(b"\x02\xc0\x80"), None, False) == b"\xc0\x80"


def test_string_unicode_round_trip():
    text = "h\u00e9llo \u2603"
    raw = text.encode("utf-8")
    result = decode_string_field(_stream(_varint(len(raw)) + raw), None, True)
    assert result.decode("utf-8") == text


def test_string_size_too_large():
    with pytest.raises(DecodeError, match="size too large"):
        decode_string_field(_stream(_varint(0xFFFFFFFF)), None, False)


# ---------------------------------------------------------------- fixed length


def test_fixed_length_bytes_exact():
    stream = _stream(b"\x04\x01\x02\x03\x04")
    assert decode_fixed_length_bytes(stream, 4) == b"\x01\x02\x03\x04"
    assert stream.bytes_left == 0


def test_fixed_length_bytes_empty_is_zeros():
    assert decode_fixed_length_bytes(_stream(b"\x00"), 6) == bytes(6)


@pytest.mark.parametrize("data", [b"\x03abc", b"\x05abcde"])
def test_fixed_length_bytes_wrong_size(data):
    with pytest.raises(DecodeError, match="incorrect fixed length bytes size"):
        decode_fixed_length_bytes(_stream(data), 4)


# ---------------------------------------------------------------- double to float


def _double(value: float) -> InputStream:
    return _stream(struct.pack("<d", value))


@pytest.mark.parametrize("value", [0.0, 1.5, -2.0, 3.25, 1024.0, -0.125])
def test_double_as_float_exact_values(value):
    stream = _double(value)
    assert decode_double_as_float(stream) == value
    assert stream.bytes_left == 0


def test_double_as_float_rounds_like_single_precision():
    expected = struct.unpack("<f", struct.pack("<f", 0.1))[0]
    assert decode_double_as_float(_double(0.1)) == expected


def test_double_as_float_infinities():
    assert decode_double_as_float(_double(math.inf)) == math.inf
    assert decode_double_as_float(_double(-math.inf)) == -math.inf


def test_double_as_float_nan():
    assert math.isnan(decode_double_as_float(_double(math.nan)))


def test_double_as_float_too_large_is_infinity():
    assert decode_double_as_float(_double(1e300)) == math.inf
    assert decode_double_as_float(_double(-1e300)) == -math.inf


def test_double_as_float_too_small_is_zero():
    assert decode_double_as_float(_double(1e-300)) == 0.0


def test_double_as_float_denormal_round_trip():
    tiny = struct.unpack("<f", struct.pack("<I", 0x00000400))[0]
    assert decode_double_as_float(_double(tiny)) == tiny


def test_double_as_float_short_input():
    with pytest.raises(DecodeError, match="end-of-stream"):
        decode_double_as_float(_stream(b"\x00\x00\x00"))