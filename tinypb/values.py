"""Decoders for single field values: integers, bytes, strings and floats.

Each function reads one value from an :class:`InputStream` and returns it,
raising :class:`DecodeError` when the value does not fit its field.
"""

from __future__ import annotations

import struct
from typing import Optional

from .fields import validate_utf8
from .stream import DecodeError, InputStream

__all__ = [
    "decode_uvarint_field",
    "decode_varint_field",
    "decode_svarint_field",
    "decode_bytes_field",
    "decode_string_field",
    "decode_fixed_length_bytes",
    "decode_double_as_float",
]

# Largest length a field's size counter can hold.
_SIZE_MAX = 0xFFFF

_UNSIGNED_MASKS = {8: 0xFFFFFFFFFFFFFFFF, 4: 0xFFFFFFFF, 2: 0xFFFF, 1: 0xFF}


def _fail(stream: InputStream, message: str) -> None:
    if stream.errmsg is None:
        stream.errmsg = message
    raise DecodeError(message)


def _to_signed(value: int, size: int) -> int:
    bits = size * 8
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


def _store_signed(stream: InputStream, value: int, data_size: int) -> int:
    if data_size not in _UNSIGNED_MASKS:
        _fail(stream, "invalid data_size")
    clamped = _to_signed(value, data_size)
    if clamped != value:
        _fail(stream, "integer too large")
    return clamped


def decode_uvarint_field(stream: InputStream, data_size: int) -> int:
    """Decode an unsigned varint into a field of ``data_size`` bytes."""
    value = stream.decode_varint()
    mask = _UNSIGNED_MASKS.get(data_size)
    if mask is None:
        _fail(stream, "invalid data_size")
    if value & mask != value:
        _fail(stream, "integer too large")
    return value


def decode_varint_field(stream: InputStream, data_size: int) -> int:
    """Decode a signed (two's complement) varint into a ``data_size`` field.

    Fields narrower than 8 bytes take the value as a 32-bit integer first,
    so negative values encoded in only five bytes still decode correctly.
    """
    value = stream.decode_varint()
    svalue = _to_signed(value, 8 if data_size == 8 else 4)
    return _store_signed(stream, svalue, data_size)


def decode_svarint_field(stream: InputStream, data_size: int) -> int:
    """Decode a zig-zag encoded varint into a field of ``data_size`` bytes."""
    svalue = stream.decode_svarint()
    return _store_signed(stream, svalue, data_size)


def decode_bytes_field(stream: InputStream, max_size: Optional[int]) -> bytes:
    """Decode a length-prefixed bytes value.

    ``max_size`` is the most bytes the field can hold; None means the field
    is allocated to fit, limited only by the input.
    """
    size = stream.decode_varint32()
    if size > _SIZE_MAX:
        _fail(stream, "bytes overflow")
    if max_size is None:
        if stream.bytes_left < size:
            _fail(stream, "end-of-stream")
    elif size > max_size:
        _fail(stream, "bytes overflow")
    return stream.read(size)


def decode_string_field(
    stream: InputStream, max_size: Optional[int], validate: bool
) -> bytes:
    """Decode a length-prefixed string and return its raw bytes.

    ``max_size`` is the most bytes of text the field can hold, not counting
    a terminator; None means the field is allocated to fit. With
    ``validate`` the text must be valid UTF-8.
    """
    size = stream.decode_varint32()
    if size == 0xFFFFFFFF:
        _fail(stream, "size too large")
    if max_size is None:
        if stream.bytes_left < size:
            _fail(stream, "end-of-stream")
    elif size > max_size:
        _fail(stream, "string overflow")
    data = stream.read(size)
    if validate and not validate_utf8(data):
        _fail(stream, "invalid utf8")
    return data


def decode_fixed_length_bytes(stream: InputStream, size: int) -> bytes:
    """Decode a bytes value that must be exactly ``size`` bytes long.

    An empty value decodes as ``size`` zero bytes.
    """
    length = stream.decode_varint32()
    if length > _SIZE_MAX:
        _fail(stream, "bytes overflow")
    if length == 0:
        return bytes(size)
    if length != size:
        _fail(stream, "incorrect fixed length bytes size")
    return stream.read(size)


def decode_double_as_float(stream: InputStream) -> float:
    """Decode an 8-byte double and narrow it to single precision.

    Values too large become infinity, values too small become zero, and
    small values become denormals.
    """
    value = stream.decode_fixed64()

    sign = (value >> 63) & 1
    exponent = ((value >> 52) & 0x7FF) - 1023
    mantissa = (value >> 28) & 0xFFFFFF  # highest 24 bits

    if exponent == 1024:
        # Infinity or NaN
        exponent = 128
        mantissa >>= 1
    else:
        if exponent > 127:
            exponent = 128
            mantissa = 0
        elif exponent < -150:
            exponent = -127
            mantissa = 0
        elif exponent < -126:
            mantissa |= 0x1000000
            mantissa >>= -126 - exponent
            exponent = -127

        mantissa = (mantissa + 1) >> 1

        if mantissa & 0x800000:
            exponent += 1
            mantissa &= 0x7FFFFF
            mantissa >>= 1

    bits = (mantissa | ((exponent + 127) << 23) | (sign << 31)) & 0xFFFFFFFF
    return struct.unpack("<f", struct.pack("<I", bits))[0]