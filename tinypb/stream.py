"""Input streams with the primitive protocol buffers wire decoders."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Union

from .fields import WireType

__all__ = ["DecodeError", "InputStream"]

_SKIP_CHUNK = 16
_MAX_RAW_VARINT = 10


class DecodeError(Exception):
    """Raised when input cannot be decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class _BufferSource:
    """Reads from an in-memory buffer, keeping a shared read position."""

    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        self.position = 0

    def fetch(self, count: int) -> bytes:
        chunk = self.data[self.position:self.position + count]
        self.position += len(chunk)
        return chunk

    def discard(self, count: int) -> bool:
        if self.position + count > len(self.data):
            return False
        self.position += count
        return True


class _ReaderSource:
    """Reads through a callable that returns up to ``count`` bytes."""

    def __init__(self, reader: Callable[[int], bytes]) -> None:
        self.reader = reader

    def fetch(self, count: int) -> bytes:
        parts = []
        wanted = count
        while wanted > 0:
            chunk = self.reader(wanted)
            if not chunk:
                break
            parts.append(bytes(chunk))
            wanted -= len(chunk)
        return b"".join(parts)


class InputStream:
    """A length-limited input stream over a buffer or a reader callable.

    ``bytes_left`` is the most that may still be read from this stream. A
    reader that returns no data signals end of input; the stream then sets
    ``bytes_left`` to zero. ``errmsg`` keeps the first error reported.
    """

    def __init__(
        self,
        data: bytes = b"",
        *,
        reader: Optional[Callable[[int], bytes]] = None,
        bytes_left: Optional[int] = None,
    ) -> None:
        self._source: Union[_BufferSource, _ReaderSource]
        if reader is not None:
            if data:
                raise ValueError("give either data or a reader, not both")
            self._source = _ReaderSource(reader)
            limit = sys.maxsize if bytes_left is None else bytes_left
        else:
            self._source = _BufferSource(data)
            limit = len(data) if bytes_left is None else bytes_left
        if limit < 0:
            raise ValueError("bytes_left must not be negative")
        self.bytes_left = limit
        self.errmsg: Optional[str] = None

    def _substream(self, size: int) -> InputStream:
        sub = object.__new__(InputStream)
        sub._source = self._source
        sub.bytes_left = size
        sub.errmsg = self.errmsg
        return sub

    def _fail(self, message: str) -> None:
        if self.errmsg is None:
            self.errmsg = message
        raise DecodeError(message)

    def _fetch(self, count: int) -> bytes:
        chunk = self._source.fetch(count)
        if len(chunk) != count:
            if isinstance(self._source, _ReaderSource) and not chunk:
                self.bytes_left = 0
            self._fail("io error")
        return chunk

    # ------------------------------------------------------------------
    # Raw reading

    def read(self, count: int) -> bytes:
        """Read exactly ``count`` bytes."""
        if count < 0:
            raise ValueError("count must not be negative")
        if count == 0:
            return b""
        if self.bytes_left < count:
            self._fail("end-of-stream")
        data = self._fetch(count)
        self.bytes_left -= count
        return data

    def read_byte(self) -> int:
        """Read a single byte and return its value."""
        if self.bytes_left == 0:
            self._fail("end-of-stream")
        value = self._fetch(1)[0]
        self.bytes_left -= 1
        return value

    def skip(self, count: int) -> None:
        """Discard ``count`` bytes of input."""
        if count < 0:
            raise ValueError("count must not be negative")
        if count == 0:
            return
        if isinstance(self._source, _ReaderSource):
            while count > 0:
                step = min(count, _SKIP_CHUNK)
                self.read(step)
                count -= step
            return
        if self.bytes_left < count:
            self._fail("end-of-stream")
        if not self._source.discard(count):
            self._fail("io error")
        self.bytes_left -= count

    # ------------------------------------------------------------------
    # Primitive decoders

    def _decode_varint32(self, eof_ok: bool) -> Optional[int]:
        if eof_ok:
            if self.bytes_left == 0:
                return None
            previous = self.errmsg
            try:
                byte = self.read_byte()
            except DecodeError:
                if self.bytes_left == 0:
                    self.errmsg = previous
                    return None
                raise
        else:
            byte = self.read_byte()

        if not byte & 0x80:
            return byte

        bitpos = 7
        result = byte & 0x7F
        while True:
            byte = self.read_byte()
            if bitpos >= 32:
                # Trailing 0x80 bytes, or 0xFF sign extension for negatives.
                sign_extension = 0xFF if bitpos < 63 else 0x01
                valid = (byte & 0x7F) == 0 or (
                    (result >> 31) != 0 and byte == sign_extension
                )
                if bitpos >= 64 or not valid:
                    self._fail("varint overflow")
            elif bitpos == 28:
                if (byte & 0x70) != 0 and (byte & 0x78) != 0x78:
                    self._fail("varint overflow")
                result |= (byte & 0x0F) << bitpos
            else:
                result |= (byte & 0x7F) << bitpos
            bitpos += 7
            if not byte & 0x80:
                return result

    def decode_varint32(self) -> int:
        """Decode a varint that must fit in 32 bits (unsigned)."""
        value = self._decode_varint32(eof_ok=False)
        assert value is not None
        return value

    def decode_varint(self) -> int:
        """Decode a varint of up to 64 bits (unsigned)."""
        bitpos = 0
        result = 0
        while True:
            byte = self.read_byte()
            if bitpos >= 63 and (byte & 0xFE) != 0:
                self._fail("varint overflow")
            result |= (byte & 0x7F) << bitpos
            bitpos += 7
            if not byte & 0x80:
                return result & 0xFFFFFFFFFFFFFFFF

    def decode_svarint(self) -> int:
        """Decode a zig-zag encoded signed varint."""
        value = self.decode_varint()
        if value & 1:
            return -(value >> 1) - 1
        return value >> 1

    def decode_bool(self) -> bool:
        return self.decode_varint32() != 0

    def decode_fixed32(self) -> int:
        """Decode four little-endian bytes as an unsigned integer."""
        return int.from_bytes(self.read(4), "little")

    def decode_fixed64(self) -> int:
        """Decode eight little-endian bytes as an unsigned integer."""
        return int.from_bytes(self.read(8), "little")

    def decode_tag(self) -> Optional[tuple[int, Union[WireType, int]]]:
        """Decode a field key as ``(tag, wire_type)``.

        Returns None at a clean end of input. Unknown wire types are given
        as plain integers.
        """
        value = self._decode_varint32(eof_ok=True)
        if value is None:
            return None
        raw_wire = value & 7
        wire_type: Union[WireType, int]
        try:
            wire_type = WireType(raw_wire)
        except ValueError:
            wire_type = raw_wire
        return value >> 3, wire_type

    # ------------------------------------------------------------------
    # Skipping and raw values

    def _skip_varint(self) -> None:
        while self.read(1)[0] & 0x80:
            pass

    def _skip_string(self) -> None:
        self.skip(self.decode_varint32())

    def skip_field(self, wire_type: int) -> None:
        """Skip one field payload of the given wire type."""
        if wire_type == WireType.VARINT:
            self._skip_varint()
        elif wire_type == WireType.FIXED64:
            self.skip(8)
        elif wire_type == WireType.STRING:
            self._skip_string()
        elif wire_type == WireType.FIXED32:
            self.skip(4)
        else:
            self._fail("invalid wire_type")

    def read_raw_value(self, wire_type: int) -> bytes:
        """Read the undecoded bytes of a scalar value of ``wire_type``."""
        if wire_type == WireType.VARINT:
            out = bytearray()
            while True:
                if len(out) >= _MAX_RAW_VARINT:
                    self._fail("varint overflow")
                byte = self.read(1)[0]
                out.append(byte)
                if not byte & 0x80:
                    return bytes(out)
        if wire_type == WireType.FIXED64:
            return self.read(8)
        if wire_type == WireType.FIXED32:
            return self.read(4)
        self._fail("invalid wire_type")
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Substreams

    @contextmanager
    def string_substream(self) -> Iterator[InputStream]:
        """Read a length prefix and yield a stream limited to that length.

        On normal exit any unread bytes of the substream are skipped. The
        substream's error message is handed back to this stream.
        """
        size = self.decode_varint32()
        if self.bytes_left < size:
            self._fail("parent stream too short")
        sub = self._substream(size)
        self.bytes_left -= size
        try:
            yield sub
            if sub.bytes_left:
                sub.skip(sub.bytes_left)
        finally:
            self.errmsg = sub.errmsg