"""Field type codes, compact field-info tables and message descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Iterator, Optional, Sequence

__all__ = [
    "WireType",
    "LType",
    "HType",
    "AType",
    "FieldType",
    "FieldInfo",
    "Field",
    "MessageDescriptor",
    "parse_field_info",
    "iter_field_infos",
    "validate_utf8",
]


class WireType(IntEnum):
    """Protocol buffers wire types, plus a marker for packed array items."""

    VARINT = 0
    FIXED64 = 1
    STRING = 2
    FIXED32 = 5
    PACKED = 0xFF


class LType(IntEnum):
    """How a single value is encoded (low nibble of the type byte)."""

    BOOL = 0x00
    VARINT = 0x01
    UVARINT = 0x02
    SVARINT = 0x03
    FIXED32 = 0x04
    FIXED64 = 0x05
    BYTES = 0x06
    STRING = 0x07
    SUBMESSAGE = 0x08
    SUBMSG_W_CB = 0x09
    EXTENSION = 0x0A
    FIXED_LENGTH_BYTES = 0x0B

    @property
    def is_packable(self) -> bool:
        return self <= LType.FIXED64

    @property
    def is_submessage(self) -> bool:
        return self in (LType.SUBMESSAGE, LType.SUBMSG_W_CB)


class HType(IntEnum):
    """Field multiplicity (bits 4..5 of the type byte)."""

    REQUIRED = 0x00
    OPTIONAL = 0x10
    REPEATED = 0x20
    ONEOF = 0x30


class AType(IntEnum):
    """How field storage is allocated (bits 6..7 of the type byte)."""

    STATIC = 0x00
    CALLBACK = 0x40
    POINTER = 0x80


@dataclass(frozen=True)
class FieldType:
    """A combined field type: value encoding, multiplicity and allocation."""

    ltype: LType
    htype: HType = HType.OPTIONAL
    atype: AType = AType.STATIC

    @classmethod
    def from_byte(cls, value: int) -> FieldType:
        """Split a type byte into its parts; raise ValueError if invalid."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"type byte out of range: {value}")
        return cls(LType(value & 0x0F), HType(value & 0x30), AType(value & 0xC0))

    def to_byte(self) -> int:
        return int(self.ltype) | int(self.htype) | int(self.atype)

    @property
    def is_submessage(self) -> bool:
        return self.ltype.is_submessage


@dataclass(frozen=True)
class FieldInfo:
    """One entry of a compact field-info table."""

    tag: int
    type: FieldType
    array_size: int
    data_offset: int
    size_offset: int
    data_size: int
    word_count: int


def _signed_byte(value: int) -> int:
    value &= 0xFF
    return value - 0x100 if value & 0x80 else value


def parse_field_info(words: Sequence[int]) -> FieldInfo:
    """Parse the field-info entry that starts at the first word of ``words``.

    The low two bits of the first word give the entry length as 2**n words.
    """
    if not words:
        raise ValueError("field info table is empty")
    word0 = words[0]
    word_count = 1 << (word0 & 3)
    if len(words) < word_count:
        raise ValueError(
            f"field info needs {word_count} words, only {len(words)} given"
        )
    for word in words[:word_count]:
        if not 0 <= word <= 0xFFFFFFFF:
            raise ValueError(f"field info word out of range: {word}")

    ftype = FieldType.from_byte((word0 >> 8) & 0xFF)
    low_tag = (word0 >> 2) & 0x3F
    kind = word0 & 3

    if kind == 0:
        array_size = 1
        tag = low_tag
        size_offset = (word0 >> 24) & 0x0F
        data_offset = (word0 >> 16) & 0xFF
        data_size = (word0 >> 28) & 0x0F
    elif kind == 1:
        word1 = words[1]
        array_size = (word0 >> 16) & 0x0FFF
        tag = low_tag | ((word1 >> 28) << 6)
        size_offset = (word0 >> 28) & 0x0F
        data_offset = word1 & 0xFFFF
        data_size = (word1 >> 16) & 0x0FFF
    else:
        word1, word2, word3 = words[1:4]
        array_size = (word0 >> 16) if kind == 2 else words[4]
        tag = low_tag | ((word1 >> 8) << 6)
        size_offset = _signed_byte(word1)
        data_offset = word2
        data_size = word3

    return FieldInfo(
        tag=tag,
        type=ftype,
        array_size=array_size,
        data_offset=data_offset,
        size_offset=size_offset,
        data_size=data_size,
        word_count=word_count,
    )


def iter_field_infos(words: Sequence[int], field_count: int) -> Iterator[FieldInfo]:
    """Yield ``field_count`` consecutive entries from a field-info table."""
    position = 0
    for _ in range(field_count):
        info = parse_field_info(words[position:])
        position += info.word_count
        yield info


@dataclass(frozen=True)
class Field:
    """A field of a message: its tag, type, limits and submessage layout."""

    name: str
    tag: int
    type: FieldType
    array_size: int = 1
    data_size: int = 0
    submessage: Optional[MessageDescriptor] = None
    fixed_count: bool = False

    def __post_init__(self) -> None:
        if self.tag < 1:
            raise ValueError(f"field {self.name!r}: tag must be positive")
        if self.array_size < 0 or self.data_size < 0:
            raise ValueError(f"field {self.name!r}: sizes must not be negative")
        if self.fixed_count and self.type.htype is not HType.REPEATED:
            raise ValueError(f"field {self.name!r}: fixed count needs a repeated field")

    @property
    def ltype(self) -> LType:
        return self.type.ltype

    @property
    def htype(self) -> HType:
        return self.type.htype

    @property
    def atype(self) -> AType:
        return self.type.atype

    @property
    def is_submessage(self) -> bool:
        return self.type.is_submessage

    @property
    def is_extension(self) -> bool:
        return self.type.ltype is LType.EXTENSION


@dataclass
class MessageDescriptor:
    """The layout of a message type: its fields in tag order and defaults.

    ``default_value`` holds encoded default values, and ``field_callback``
    is the handler used for callback-allocated fields.
    """

    fields: Sequence[Field]
    default_value: Optional[bytes] = None
    field_callback: Optional[Callable] = None
    name: str = ""
    _by_tag: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.fields = tuple(sorted(self.fields, key=lambda f: f.tag))
        seen: set[int] = set()
        extensions = 0
        for item in self.fields:
            if item.tag in seen:
                raise ValueError(f"duplicate tag {item.tag} in {self.name!r}")
            seen.add(item.tag)
            extensions += item.is_extension
        if extensions > 1:
            raise ValueError(f"more than one extension range in {self.name!r}")
        self._by_tag = {f.tag: f for f in self.fields if not f.is_extension}

    def __iter__(self) -> Iterator[Field]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def largest_tag(self) -> int:
        return self.fields[-1].tag if self.fields else 0

    @property
    def needs_defaults(self) -> bool:
        """Whether setting defaults does more than zeroing the fields."""
        return (
            self.default_value is not None
            or self.field_callback is not None
            or any(f.is_submessage for f in self.fields)
        )

    def find(self, tag: int) -> Optional[Field]:
        """Return the non-extension field with ``tag``, or None."""
        if tag > self.largest_tag:
            return None
        return self._by_tag.get(tag)

    def find_extension(self) -> Optional[Field]:
        """Return the extension range field, or None if there is none."""
        return next((f for f in self.fields if f.is_extension), None)

    def required_fields(self) -> list[Field]:
        """Return the required fields in tag order."""
        return [f for f in self.fields if f.htype is HType.REQUIRED]


def validate_utf8(data: bytes) -> bool:
    """Check that ``data`` up to its first NUL byte is valid UTF-8 text.

    Overlong forms, surrogates, code points above U+10FFFF and the
    non-characters U+FFFE and U+FFFF are rejected.
    """
    raw = bytes(data).split(b"\x00", 1)[0]
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return "\ufffe" not in text and "\uffff" not in text