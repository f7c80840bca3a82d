# tinypb

A small Protocol Buffers decoder that works from field descriptors built at
run time rather than from generated classes. It reads the protobuf wire
format into plain dictionaries, with strict size limits for every field,
which makes it useful for checking, inspecting or consuming messages from
devices whose message layouts use fixed-capacity fields.

## Installation

```
pip install .
```

The package has no runtime dependencies. To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

### `tinypb.fields`

The description of a message.

- `WireType`, `LType`, `HType` and `AType` name the wire types, the value
  encodings, the field multiplicities (required, optional, repeated, oneof)
  and the allocation kinds (static, callback, pointer).
- `FieldType` combines an `LType`, `HType` and `AType`;
  `FieldType.from_byte()` and `to_byte()` convert to and from the packed
  type byte.
- `parse_field_info(words)` unpacks one 1-, 2-, 4- or 8-word field-info
  record into a `FieldInfo`; `iter_field_infos(words, field_count)` yields
  consecutive records from a table.
- `Field` describes one field: name, tag, type, `array_size`, `data_size`,
  an optional nested `submessage` descriptor and a `fixed_count` flag for
  repeated fields that must always carry exactly `array_size` entries.
- `MessageDescriptor` holds the fields in tag order, optional encoded
  `default_value` bytes and an optional `field_callback`. It rejects
  duplicate tags and more than one extension range, and offers
  `find(tag)`, `find_extension()` and `required_fields()`.
- `validate_utf8(data)` checks bytes (up to the first NUL) as UTF-8,
  rejecting overlong forms, surrogates, values above U+10FFFF and the
  non-characters U+FFFE and U+FFFF.

### `tinypb.stream`

`InputStream` is a length-limited reader over a byte string, or over a
callable `reader(count)` passed as `reader=`. It provides `read`,
`read_byte`, `skip`, `decode_varint32`, `decode_varint`, `decode_svarint`,
`decode_bool`, `decode_fixed32`, `decode_fixed64`, `decode_tag` (which
returns `(tag, wire_type)` or `None` at a clean end of input),
`skip_field`, `read_raw_value`, and `string_substream()`, a context
manager that reads a length prefix and yields a substream limited to that
length. Every failure raises `DecodeError` with a short message such as
`"end-of-stream"`, `"varint overflow"` or `"parent stream too short"`; the
stream's `errmsg` keeps the first error reported.

### `tinypb.values`

Decoders for single values that enforce the target field's limits:

- `decode_uvarint_field`, `decode_varint_field` and `decode_svarint_field`
  take the field's `data_size` in bytes (1, 2, 4 or 8) and raise
  `"integer too large"` when the value does not fit, or
  `"invalid data_size"` for any other size.
- `decode_bytes_field(stream, max_size)` and
  `decode_string_field(stream, max_size, validate)` read length-prefixed
  data, raising `"bytes overflow"` or `"string overflow"` past `max_size`
  (`None` means no capacity limit beyond the input).
- `decode_fixed_length_bytes(stream, size)` requires exactly `size` bytes;
  an empty value decodes as `size` zero bytes.
- `decode_double_as_float(stream)` reads an 8-byte double and narrows it
  to single precision, turning values too large into infinity and values
  too small into zero.

### `tinypb.decoder`

Whole-message decoding into dictionaries keyed by field name.

- `decode(stream, descriptor, message=None, flags=DecodeFlags.NONE)` fills
  `message` (a new dict if none is given) and returns it.
- `decode_message(data, descriptor, flags=DecodeFlags.NONE)` does the same
  from a byte string.
- `set_defaults(descriptor, message=None)` resets every non-callback field
  to its default, including values from the descriptor's `default_value`.
- `DecodeFlags`: `NOINIT` merges into an existing message without setting
  defaults first, `DELIMITED` reads a length-prefixed message,
  `NULLTERMINATED` stops at a zero tag, and `VALIDATE_UTF8` rejects
  strings that are not valid UTF-8.
- `Extension` objects, listed under a message's extension range field,
  receive fields whose tags fall in that range.

In a decoded message, static optional fields also get a `has_<name>` entry,
repeated fields are lists, only the last decoded oneof member is present,
and submessages are nested dictionaries. String fields with static
allocation hold at most `data_size - 1` bytes of text. A `FIXED64` field
with `data_size` 4 is decoded as a single-precision float; other fixed
fields come back as unsigned integers. Unknown fields are skipped; missing
required fields and incomplete fixed-count arrays raise `DecodeError`.

## Example

```python
from tinypb.decoder import decode_message
from tinypb.fields import Field, FieldType, HType, LType, MessageDescriptor
from tinypb.stream import DecodeError

point = MessageDescriptor(
    [
        Field("x", 1, FieldType(LType.VARINT, HType.REQUIRED), data_size=4),
        Field("y", 2, FieldType(LType.VARINT, HType.OPTIONAL), data_size=4),
        Field("tags", 3, FieldType(LType.UVARINT, HType.REPEATED),
              array_size=8, data_size=4),
    ],
    name="Point",
)

try:
    message = decode_message(bytes([0x08, 0x96, 0x01, 0x10, 0x05]), point)
except DecodeError as exc:
    print(f"bad message: {exc}")
else:
    print(message)  # {'x': 150, 'has_y': True, 'y': 5, 'tags': []}
```

## What it does not do

tinypb only decodes. It has no encoder, does not read `.proto` files or
generate descriptors from them, and has no command-line tool: descriptors
are built in Python with `Field` and `MessageDescriptor`.