"""Record payload decompression and field framing.

Payload format (after decompression), little-endian, no padding:
  u16 field_count
  field_count x (u32 hash, u32 size, size bytes data)

Both parsers stop quietly at the first field whose header or data would run
past the end of the buffer and return what was parsed up to that point.
"""
from __future__ import annotations

import struct
import zlib
from typing import Iterator

from bdbinspect.bdb.constants import CLASSNAME_HASH, ERROR_CLASS, UNKNOWN_CLASS, ZLIB_SIGNATURE
from bdbinspect.bdb.records import DecodedField, RecordDetail, RecordSummary
from bdbinspect.fields.decoders import decode_field, decode_string
from bdbinspect.fields.dictionary import FieldDictionary

_COUNT = struct.Struct("<H")
_FIELD_HEADER = struct.Struct("<II")   # hash(4) + size(4)


def decompress_record(value: bytes) -> bytes:
    """Inflate a zlib-compressed payload; raw or corrupt payloads pass through."""
    if len(value) >= 2 and value[0] == ZLIB_SIGNATURE:
        try:
            return zlib.decompress(value)
        except zlib.error:
            return value
    return value


def iter_fields(data: bytes) -> Iterator[tuple[int, int, int]]:
    """Yield (hash, size, data_offset) for each well-framed field."""
    if len(data) < 2:
        return
    count = _COUNT.unpack_from(data, 0)[0]
    offset = 2
    data_len = len(data)
    for _ in range(count):
        if offset + 8 > data_len:
            break
        field_hash, size = _FIELD_HEADER.unpack_from(data, offset)
        offset += 8
        if offset + size > data_len:
            break
        yield field_hash, size, offset
        offset += size


def field_count(data: bytes) -> int:
    return _COUNT.unpack_from(data, 0)[0] if len(data) >= 2 else 0


def parse_summary(value: bytes) -> RecordSummary:
    """Class name and counts; stops scanning at the class-name field."""
    data = decompress_record(value)
    class_name = UNKNOWN_CLASS
    for field_hash, size, offset in iter_fields(data):
        if field_hash == CLASSNAME_HASH:
            class_name = decode_string(data[offset:offset + size])
            break
    return RecordSummary(
        class_name=class_name,
        field_count=field_count(data),
        compressed_size=len(value),
        decompressed_size=len(data),
    )


def parse_detail(value: bytes, dictionary: FieldDictionary) -> RecordDetail:
    """Decode every field through the dictionary, in payload order."""
    data = decompress_record(value)
    class_name = UNKNOWN_CLASS
    fields: list[DecodedField] = []
    for field_hash, size, offset in iter_fields(data):
        raw = data[offset:offset + size]
        info = dictionary.resolve(field_hash)
        decoded = decode_field(raw, info)
        if field_hash == CLASSNAME_HASH:
            class_name = decoded
        fields.append(DecodedField(
            hash=field_hash,
            size=size,
            data=raw,
            name=info.name,
            type=info.type,
            decoded=decoded,
        ))
    return RecordDetail(class_name=class_name, fields=fields, decompressed_size=len(data))


def parse_summary_hex(value_hex: str) -> RecordSummary:
    """Summary of a dump value line; undecodable hex yields an '[error]' row."""
    try:
        value = bytes.fromhex(value_hex)
    except ValueError:
        return RecordSummary(ERROR_CLASS, 0, len(value_hex) // 2, 0)
    return parse_summary(value)


def parse_detail_hex(value_hex: str, dictionary: FieldDictionary) -> RecordDetail:
    try:
        value = bytes.fromhex(value_hex)
    except ValueError:
        return RecordDetail(class_name=ERROR_CLASS)
    return parse_detail(value, dictionary)
