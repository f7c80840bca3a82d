"""Decoding whole protocol buffers messages into dictionaries.

A decoded message is a ``dict`` keyed by field name:

* required and optional fields hold their value; static optional fields
  also get a ``has_<name>`` entry telling whether the value was present;
* repeated fields hold a list;
* of the descriptor's oneof fields only the member last decoded is present;
* submessages are nested dictionaries;
* pointer-allocated singular fields are None until decoded;
* an extension range field holds a list of :class:`Extension` objects;
* callback-allocated fields are handed to the descriptor's
  ``field_callback(stream, field, message)``, which fails by returning False.

A submessage field of type ``SUBMSG_W_CB`` may have a callable stored in the
parent under ``<name>_callback``; it is called as ``callback(stream, field,
submessage)`` before the submessage is decoded, and if it consumes the whole
submessage no further decoding takes place.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dc_field
from enum import IntFlag
from typing import Any, Callable, MutableMapping, Optional

from .fields import AType, Field, HType, LType, MessageDescriptor, WireType
from .stream import DecodeError, InputStream
from .values import (
    decode_bytes_field,
    decode_double_as_float,
    decode_fixed_length_bytes,
    decode_string_field,
    decode_svarint_field,
    decode_uvarint_field,
    decode_varint_field,
)

__all__ = [
    "DecodeFlags",
    "Extension",
    "set_defaults",
    "decode",
    "decode_message",
]

# Largest number of entries a repeated field can hold.
SIZE_MAX = 0xFFFF
# Only this many required fields are checked for presence.
MAX_REQUIRED_FIELDS = 64

Message = MutableMapping[str, Any]


class DecodeFlags(IntFlag):
    """Options for :func:`decode`."""

    NONE = 0
    NOINIT = 0x01
    """Do not set fields to their defaults first; merge into the message."""
    DELIMITED = 0x02
    """The message is preceded by its length as a varint."""
    NULLTERMINATED = 0x04
    """Stop at a zero tag instead of reporting an error."""
    VALIDATE_UTF8 = 0x100
    """Reject strings that are not valid UTF-8."""


@dataclass
class Extension:
    """An extension field attached to a message's extension range.

    ``descriptor`` describes a message with exactly one field, whose value
    is decoded into ``message``. ``decoder``, if given, replaces the default
    handling and is called as ``decoder(stream, extension, tag, wire_type)``;
    it handles the field by consuming its data.
    """

    descriptor: MessageDescriptor
    message: dict = dc_field(default_factory=dict)
    decoder: Optional[Callable[..., Any]] = None
    found: bool = False


def _error(stream: InputStream, message: str) -> DecodeError:
    if stream.errmsg is None:
        stream.errmsg = message
    return DecodeError(message)


def _has_key(item: Field) -> str:
    return f"has_{item.name}"


def _zero_value(item: Field) -> Any:
    ltype = item.ltype
    if ltype is LType.BOOL:
        return False
    if ltype is LType.FIXED64 and item.data_size == 4:
        return 0.0
    if ltype is LType.BYTES:
        return b""
    if ltype is LType.STRING:
        return ""
    if ltype is LType.FIXED_LENGTH_BYTES:
        return bytes(item.data_size)
    return 0


def _clear_other_oneofs(descriptor: MessageDescriptor, message: Message, keep: Field) -> None:
    for member in descriptor.fields:
        if member.htype is HType.ONEOF and member is not keep:
            message.pop(member.name, None)


class _Decoder:
    def __init__(self, validate_utf8: bool = False) -> None:
        self.validate_utf8 = validate_utf8

    # --------------------------------------------------------------
    # Defaults

    def set_defaults(self, descriptor: MessageDescriptor, message: Message) -> None:
        defstream: Optional[InputStream] = None
        key = None
        if descriptor.default_value is not None:
            defstream = InputStream(descriptor.default_value)
            key = defstream.decode_tag()

        for item in descriptor.fields:
            self._field_to_default(item, message)
            if defstream is not None and key is not None and key[0] == item.tag:
                self._decode_field(defstream, key[1], item, descriptor, message)
                key = defstream.decode_tag()
                if item.atype is AType.STATIC and item.htype is HType.OPTIONAL:
                    message[_has_key(item)] = False

    def _field_to_default(self, item: Field, message: Message) -> None:
        if item.is_extension:
            for ext in message.setdefault(item.name, []):
                if ext.descriptor.fields:
                    ext.found = False
                    self.set_defaults(ext.descriptor, ext.message)
        elif item.atype is AType.STATIC:
            if item.htype is HType.OPTIONAL:
                message[_has_key(item)] = False
            if item.htype is HType.REPEATED:
                message[item.name] = []
            elif item.htype is HType.ONEOF:
                message.pop(item.name, None)
            elif item.is_submessage:
                message[item.name] = self._default_submessage(item, message.get(item.name))
            else:
                message[item.name] = _zero_value(item)
        elif item.atype is AType.POINTER:
            if item.htype is HType.REPEATED:
                message[item.name] = []
            elif item.htype is HType.ONEOF:
                message.pop(item.name, None)
            else:
                message[item.name] = None
        # Callback fields are left untouched.

    def _default_submessage(self, item: Field, current: Any) -> dict:
        sub = item.submessage
        if sub is None:
            return {}
        target = current if sub.needs_defaults and isinstance(current, dict) else {}
        self.set_defaults(sub, target)
        return target

    # --------------------------------------------------------------
    # Whole messages

    def decode_inner(
        self,
        stream: InputStream,
        descriptor: MessageDescriptor,
        message: Message,
        noinit: bool = False,
        nullterminated: bool = False,
    ) -> None:
        if not noinit and descriptor.fields:
            try:
                self.set_defaults(descriptor, message)
            except DecodeError as exc:
                raise _error(stream, "failed to set defaults") from exc

        extensions_looked_up = False
        extensions: Optional[list] = None
        extension_start: Optional[int] = None
        fixed: Optional[Field] = None
        seen_required: set[int] = set()

        while stream.bytes_left:
            key = stream.decode_tag()
            if key is None:
                break
            tag, wire_type = key
            if tag == 0:
                if nullterminated:
                    break
                raise _error(stream, "zero tag")

            item = descriptor.find(tag)
            if item is None:
                if not extensions_looked_up:
                    extensions_looked_up = True
                    ext_field = descriptor.find_extension()
                    if ext_field is not None:
                        extensions = message.get(ext_field.name) or None
                        if extensions:
                            extension_start = ext_field.tag
                if extension_start is not None and extensions and tag >= extension_start:
                    position = stream.bytes_left
                    self._decode_extensions(stream, tag, wire_type, extensions)
                    if position != stream.bytes_left:
                        continue
                stream.skip_field(wire_type)
                continue

            if item.fixed_count and fixed is not item:
                if fixed is not None and len(message[fixed.name]) != fixed.array_size:
                    raise _error(stream, "wrong size for fixed count field")
                fixed = item
                message[item.name] = []

            if item.htype is HType.REQUIRED:
                seen_required.add(item.tag)

            self._decode_field(stream, wire_type, item, descriptor, message)

        if fixed is not None and len(message[fixed.name]) != fixed.array_size:
            raise _error(stream, "wrong size for fixed count field")

        required = descriptor.required_fields()[:MAX_REQUIRED_FIELDS]
        if any(item.tag not in seen_required for item in required):
            raise _error(stream, "missing required field")

    # --------------------------------------------------------------
    # Extensions

    def _decode_extensions(
        self, stream: InputStream, tag: int, wire_type: int, extensions: list
    ) -> None:
        position = stream.bytes_left
        for ext in extensions:
            if position != stream.bytes_left:
                break
            if ext.decoder is not None:
                if ext.decoder(stream, ext, tag, wire_type) is False:
                    raise _error(stream, stream.errmsg or "extension decoder failed")
            else:
                self._default_extension(stream, ext, tag, wire_type)

    def _default_extension(
        self, stream: InputStream, ext: Extension, tag: int, wire_type: int
    ) -> None:
        if not ext.descriptor.fields:
            raise _error(stream, "invalid extension")
        item = ext.descriptor.fields[0]
        if item.tag != tag:
            return
        ext.found = True
        self._decode_field(stream, wire_type, item, ext.descriptor, ext.message)

    # --------------------------------------------------------------
    # Single fields

    def _decode_field(
        self,
        stream: InputStream,
        wire_type: int,
        item: Field,
        descriptor: MessageDescriptor,
        message: Message,
    ) -> None:
        if item.atype is AType.STATIC:
            self._decode_static(stream, wire_type, item, descriptor, message)
        elif item.atype is AType.POINTER:
            self._decode_pointer(stream, wire_type, item, descriptor, message)
        elif item.atype is AType.CALLBACK:
            self._decode_callback(stream, wire_type, item, descriptor, message)
        else:
            raise _error(stream, "invalid field type")

    def _repeated_list(self, item: Field, message: Message) -> list:
        items = message.get(item.name)
        if not isinstance(items, list):
            items = []
            message[item.name] = items
        return items

    def _decode_static(
        self,
        stream: InputStream,
        wire_type: int,
        item: Field,
        descriptor: MessageDescriptor,
        message: Message,
    ) -> None:
        htype = item.htype
        if htype in (HType.REQUIRED, HType.OPTIONAL):
            if htype is HType.OPTIONAL:
                message[_has_key(item)] = True
            current = message.get(item.name)
            target = current if item.is_submessage and isinstance(current, dict) else None
            message[item.name] = self._decode_basic(stream, wire_type, item, message, target)
        elif htype is HType.REPEATED:
            items = self._repeated_list(item, message)
            if wire_type == WireType.STRING and item.ltype.is_packable:
                with stream.string_substream() as sub:
                    while sub.bytes_left > 0 and len(items) < item.array_size:
                        items.append(
                            self._decode_basic(sub, WireType.PACKED, item, message)
                        )
                    overflow = sub.bytes_left != 0
                if overflow:
                    raise _error(stream, "array overflow")
            else:
                if len(items) >= item.array_size:
                    raise _error(stream, "array overflow")
                items.append(self._decode_basic(stream, wire_type, item, message))
        elif htype is HType.ONEOF:
            target = None
            if item.is_submessage and isinstance(message.get(item.name), dict):
                target = message[item.name]
            _clear_other_oneofs(descriptor, message, item)
            message[item.name] = self._decode_basic(stream, wire_type, item, message, target)
        else:
            raise _error(stream, "invalid field type")

    def _decode_pointer(
        self,
        stream: InputStream,
        wire_type: int,
        item: Field,
        descriptor: MessageDescriptor,
        message: Message,
    ) -> None:
        if item.htype in (HType.REQUIRED, HType.OPTIONAL, HType.ONEOF):
            if item.htype is HType.ONEOF:
                _clear_other_oneofs(descriptor, message, item)
            message[item.name] = self._decode_basic(stream, wire_type, item, message)
            return

        if item.htype is not HType.REPEATED:
            raise _error(stream, "invalid field type")

        items = self._repeated_list(item, message)
        if wire_type == WireType.STRING and item.ltype.is_packable:
            too_many = False
            with stream.string_substream() as sub:
                while sub.bytes_left:
                    if len(items) >= SIZE_MAX:
                        too_many = True
                        break
                    items.append(self._decode_basic(sub, WireType.PACKED, item, message))
            if too_many:
                raise _error(stream, "too many array entries")
        else:
            if len(items) >= SIZE_MAX:
                raise _error(stream, "too many array entries")
            items.append(self._decode_basic(stream, wire_type, item, message))

    def _decode_callback(
        self,
        stream: InputStream,
        wire_type: int,
        item: Field,
        descriptor: MessageDescriptor,
        message: Message,
    ) -> None:
        callback = descriptor.field_callback
        if callback is None:
            stream.skip_field(wire_type)
            return

        if wire_type == WireType.STRING:
            failure: Optional[str] = None
            with stream.string_substream() as sub:
                while True:
                    previous = sub.bytes_left
                    if callback(sub, item, message) is False:
                        failure = sub.errmsg or "callback failed"
                        break
                    if not 0 < sub.bytes_left < previous:
                        break
            if failure is not None:
                raise _error(stream, failure)
        else:
            raw = stream.read_raw_value(wire_type)
            sub = InputStream(raw)
            if callback(sub, item, message) is False:
                raise _error(stream, sub.errmsg or "callback failed")

    def _decode_basic(
        self,
        stream: InputStream,
        wire_type: int,
        item: Field,
        message: Message,
        target: Optional[dict] = None,
    ) -> Any:
        ltype = item.ltype

        def expect(*allowed: WireType) -> None:
            if wire_type not in allowed:
                raise _error(stream, "wrong wire type")

        if ltype is LType.BOOL:
            expect(WireType.VARINT, WireType.PACKED)
            return stream.decode_bool()
        if ltype is LType.VARINT:
            expect(WireType.VARINT, WireType.PACKED)
            return decode_varint_field(stream, item.data_size)
        if ltype is LType.UVARINT:
            expect(WireType.VARINT, WireType.PACKED)
            return decode_uvarint_field(stream, item.data_size)
        if ltype is LType.SVARINT:
            expect(WireType.VARINT, WireType.PACKED)
            return decode_svarint_field(stream, item.data_size)
        if ltype is LType.FIXED32:
            expect(WireType.FIXED32, WireType.PACKED)
            return stream.decode_fixed32()
        if ltype is LType.FIXED64:
            expect(WireType.FIXED64, WireType.PACKED)
            if item.data_size == 4:
                return decode_double_as_float(stream)
            return stream.decode_fixed64()

        pointer = item.atype is AType.POINTER
        if ltype is LType.BYTES:
            expect(WireType.STRING)
            return decode_bytes_field(stream, None if pointer else item.data_size)
        if ltype is LType.STRING:
            expect(WireType.STRING)
            raw = decode_string_field(
                stream, None if pointer else item.data_size - 1, self.validate_utf8
            )
            return raw.decode("utf-8", "surrogateescape")
        if ltype.is_submessage:
            expect(WireType.STRING)
            return self._decode_submessage(stream, item, message, target)
        if ltype is LType.FIXED_LENGTH_BYTES:
            expect(WireType.STRING)
            return decode_fixed_length_bytes(stream, item.data_size)
        raise _error(stream, "invalid field type")

    def _decode_submessage(
        self,
        stream: InputStream,
        item: Field,
        parent: Message,
        target: Optional[dict],
    ) -> dict:
        if item.submessage is None:
            raise _error(stream, "invalid field descriptor")
        noinit = target is not None
        result: dict = target if target is not None else {}
        failure: Optional[str] = None

        with stream.string_substream() as sub:
            consumed = False
            if item.ltype is LType.SUBMSG_W_CB:
                callback = parent.get(f"{item.name}_callback")
                if callable(callback):
                    if callback(sub, item, result) is False:
                        failure = sub.errmsg or "callback failed"
                    consumed = sub.bytes_left == 0
            if failure is None and not consumed:
                self.decode_inner(sub, item.submessage, result, noinit=noinit)

        if failure is not None:
            raise _error(stream, failure)
        return result


def set_defaults(descriptor: MessageDescriptor, message: Optional[Message] = None) -> Message:
    """Set every field of ``message`` to its default value and return it.

    Callback fields are left as they are.
    """
    if message is None:
        message = {}
    _Decoder().set_defaults(descriptor, message)
    return message


def decode(
    stream: InputStream,
    descriptor: MessageDescriptor,
    message: Optional[Message] = None,
    flags: int = DecodeFlags.NONE,
) -> Message:
    """Decode one message from ``stream`` into ``message`` and return it.

    Raises :class:`DecodeError` on malformed input; the stream's ``errmsg``
    then holds the reason.
    """
    flags = DecodeFlags(flags)
    if message is None:
        message = {}
    decoder = _Decoder(validate_utf8=DecodeFlags.VALIDATE_UTF8 in flags)
    noinit = DecodeFlags.NOINIT in flags
    nullterminated = DecodeFlags.NULLTERMINATED in flags
    if DecodeFlags.DELIMITED in flags:
        with stream.string_substream() as sub:
            decoder.decode_inner(sub, descriptor, message, noinit, nullterminated)
    else:
        decoder.decode_inner(stream, descriptor, message, noinit, nullterminated)
    return message


def decode_message(
    data: bytes, descriptor: MessageDescriptor, flags: int = DecodeFlags.NONE
) -> Message:
    """Decode a message from a byte string into a new dictionary."""
    return decode(InputStream(data), descriptor, None, flags)