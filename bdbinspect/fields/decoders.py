"""Typed field decoders.

Render a field's raw bytes as a stable, human-readable string according to
the FieldType its dictionary entry was classified as. Decoding never raises:
any byte-level mismatch falls back to a bounded hex dump of the field.

Layouts (little-endian throughout):
  bool/byte 1B, short 2B, int/unsigned int/float/Time/AtomicInteger 4B,
  long long/ManagedReference 8B, Quaternion 4 floats (w, x, y, z),
  String     u16 len + UTF-8 bytes
  UnicodeString u32 chars + chars*2 UTF-16LE bytes
  StringId   String file + String key
  Vector<T>  i32 count + elements
  VectorMap  i32 count + i32 capacity + entries (not decoded)
  Coordinate legacy named sub-object, or 6 raw floats
"""
from __future__ import annotations

import struct
from datetime import datetime, timezone
from typing import Callable, Optional

from bdbinspect.bdb.constants import (
    COORDINATE_MAX_SUBFIELDS,
    COORDINATE_RAW_FLOATS,
    HEX_DUMP_MAX_BYTES,
    VECTOR_MAX_COUNT,
    VECTOR_PREVIEW_ELEMENTS,
)
from bdbinspect.fields.dictionary import FieldInfo, FieldType, classify

_UINT8 = struct.Struct("<B")
_INT16 = struct.Struct("<h")
_UINT16 = struct.Struct("<H")
_INT32 = struct.Struct("<i")
_UINT32 = struct.Struct("<I")
_UINT64 = struct.Struct("<Q")
_FLOAT = struct.Struct("<f")
_QUAT = struct.Struct("<4f")

# Errors a malformed field can raise while being read
_DECODE_ERRORS = (struct.error, IndexError, ValueError, OverflowError, OSError)

Reader = Callable[[bytes, int], tuple[str, int]]


def hex_dump(data: bytes) -> str:
    """Space-separated uppercase hex of the first 64 bytes plus a byte count."""
    if not data:
        return "(0 bytes)"
    shown = data[:HEX_DUMP_MAX_BYTES].hex(" ").upper()
    if len(data) > HEX_DUMP_MAX_BYTES:
        return f"{shown} ... ({len(data)} bytes)"
    return f"{shown} ({len(data)} bytes)"


def format_float(value: float) -> str:
    """Four decimal places with trailing zeros trimmed."""
    text = f"{value:.4f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def decode_string(data: bytes, offset: int = 0) -> str:
    """Decode a u16 length-prefixed UTF-8 string."""
    if offset + 2 > len(data):
        return ""
    length = _UINT16.unpack_from(data, offset)[0]
    offset += 2
    if offset + length > len(data):
        return f"[truncated, len={length}]"
    return data[offset:offset + length].decode("utf-8", errors="replace")


def decode_unicode_string(data: bytes, offset: int = 0) -> str:
    """Decode a u32 char-count-prefixed UTF-16LE string."""
    if offset + 4 > len(data):
        return ""
    char_count = _UINT32.unpack_from(data, offset)[0]
    offset += 4
    byte_len = char_count * 2
    if offset + byte_len > len(data):
        return f"[truncated, chars={char_count}]"
    return data[offset:offset + byte_len].decode("utf-16-le", errors="replace")


def decode_string_id(data: bytes) -> str:
    """Decode a StringId (file, key) pair as '@file:key'."""
    if len(data) < 2:
        return "@:"
    file_len = _UINT16.unpack_from(data, 0)[0]
    offset = 2
    if offset + file_len > len(data):
        return "@?:?"
    file = data[offset:offset + file_len].decode("utf-8", errors="replace")
    offset += file_len
    if offset + 2 > len(data):
        return f"@{file}:?"
    key_len = _UINT16.unpack_from(data, offset)[0]
    offset += 2
    if offset + key_len > len(data):
        return f"@{file}:?"
    key = data[offset:offset + key_len].decode("utf-8", errors="replace")
    if not file and not key:
        return "(empty)"
    return f"@{file}:{key}"


# -- Fixed-width readers: (data, offset) -> (text, next_offset) --

def _read_bool(data: bytes, offset: int) -> tuple[str, int]:
    return ("true" if _UINT8.unpack_from(data, offset)[0] else "false"), offset + 1


def _read_byte(data: bytes, offset: int) -> tuple[str, int]:
    return str(_UINT8.unpack_from(data, offset)[0]), offset + 1


def _read_short(data: bytes, offset: int) -> tuple[str, int]:
    return str(_INT16.unpack_from(data, offset)[0]), offset + 2


def _read_int(data: bytes, offset: int) -> tuple[str, int]:
    return str(_INT32.unpack_from(data, offset)[0]), offset + 4


def _read_uint(data: bytes, offset: int) -> tuple[str, int]:
    value = _UINT32.unpack_from(data, offset)[0]
    text = f"0x{value:X}" if value > 0xFFFF else str(value)
    return text, offset + 4


def _read_float(data: bytes, offset: int) -> tuple[str, int]:
    return format_float(_FLOAT.unpack_from(data, offset)[0]), offset + 4


def _read_int64(data: bytes, offset: int) -> tuple[str, int]:
    value = _UINT64.unpack_from(data, offset)[0]
    return ("0" if value == 0 else f"0x{value:016X}"), offset + 8


def _read_reference(data: bytes, offset: int) -> tuple[str, int]:
    value = _UINT64.unpack_from(data, offset)[0]
    return ("null" if value == 0 else f"0x{value:016X}"), offset + 8


def _read_time(data: bytes, offset: int) -> tuple[str, int]:
    ts = _UINT32.unpack_from(data, offset)[0]
    if ts == 0:
        return "0 (never)", offset + 4
    instant = datetime.fromtimestamp(ts, tz=timezone.utc)
    return instant.strftime("%Y-%m-%dT%H:%M:%S.000Z"), offset + 4


def _read_quaternion(data: bytes, offset: int) -> tuple[str, int]:
    w, x, y, z = _QUAT.unpack_from(data, offset)
    return f"(w={w:.4f}, x={x:.4f}, y={y:.4f}, z={z:.4f})", offset + 16


def _read_string_element(data: bytes, offset: int) -> tuple[str, int]:
    length = _UINT16.unpack_from(data, offset)[0]
    end = offset + 2 + length
    if end > len(data):
        raise ValueError("string element overruns field")
    return '"' + data[offset + 2:end].decode("utf-8", errors="replace") + '"', end


def _read_unicode_element(data: bytes, offset: int) -> tuple[str, int]:
    char_count = _UINT32.unpack_from(data, offset)[0]
    end = offset + 4 + char_count * 2
    if end > len(data):
        raise ValueError("string element overruns field")
    return '"' + data[offset + 4:end].decode("utf-16-le", errors="replace") + '"', end


_SCALAR_READERS: dict[FieldType, Reader] = {
    FieldType.BOOL: _read_bool,
    FieldType.BYTE: _read_byte,
    FieldType.SHORT: _read_short,
    FieldType.INT: _read_int,
    FieldType.ATOMIC_INT: _read_int,
    FieldType.UINT: _read_uint,
    FieldType.FLOAT: _read_float,
    FieldType.INT64: _read_int64,
    FieldType.REFERENCE: _read_reference,
    FieldType.TIME: _read_time,
    FieldType.QUATERNION: _read_quaternion,
}

_ELEMENT_READERS: dict[FieldType, Reader] = {
    **_SCALAR_READERS,
    FieldType.STRING: _read_string_element,
    FieldType.UNICODE_STRING: _read_unicode_element,
}


# -- Compound decoders --

def decode_vector(data: bytes, element_type: Optional[str]) -> str:
    """Decode a count-prefixed collection, previewing the first 20 elements."""
    if len(data) < 4:
        return hex_dump(data)
    count = _INT32.unpack_from(data, 0)[0]
    if count < 0 or count > VECTOR_MAX_COUNT:
        return f"[count={count}] {hex_dump(data)}"
    if count == 0:
        return "[] (empty)"

    element_type = element_type or "?"
    reader = _ELEMENT_READERS.get(classify(element_type))
    if reader is None:
        return f"[{count} x {element_type}] {hex_dump(data)}"

    parts: list[str] = []
    offset = 4
    for _ in range(min(count, VECTOR_PREVIEW_ELEMENTS)):
        if offset >= len(data):
            break
        try:
            value, offset = reader(data, offset)
        except _DECODE_ERRORS:
            break
        parts.append(value)

    if count > VECTOR_PREVIEW_ELEMENTS:
        parts.append(f"... ({count} total)")
    return "[" + ", ".join(parts) + "]"


def decode_vector_map(data: bytes) -> str:
    """Summarize a map by count/capacity with a short hex preview."""
    if len(data) < 8:
        return hex_dump(data)
    count = _INT32.unpack_from(data, 0)[0]
    capacity = _INT32.unpack_from(data, 4)[0]
    if count < 0 or count > VECTOR_MAX_COUNT:
        return f"{{count={count}, cap={capacity}}} {hex_dump(data)}"
    if count == 0:
        return "{} (empty)"
    return f"{{{count} entries, cap={capacity}}} {hex_dump(data[:HEX_DUMP_MAX_BYTES])}"


def decode_coordinate(data: bytes) -> str:
    """Decode a Coordinate, trying the legacy named-field framing first.

    Legacy framing: u16 count, then per field u16 name length, name bytes,
    u32 size, data. Four-byte sub-fields are taken as floats.
    """
    if len(data) >= 2:
        var_count = _UINT16.unpack_from(data, 0)[0]
        if 0 < var_count <= COORDINATE_MAX_SUBFIELDS:
            floats: list[float] = []
            offset = 2
            for _ in range(var_count):
                if offset + 2 > len(data):
                    break
                name_len = _UINT16.unpack_from(data, offset)[0]
                offset += 2 + name_len
                if offset + 4 > len(data):
                    break
                size = _UINT32.unpack_from(data, offset)[0]
                offset += 4
                if offset + size > len(data):
                    break
                if size == 4:
                    floats.append(_FLOAT.unpack_from(data, offset)[0])
                offset += size
            if len(floats) >= 3:
                return "(" + ", ".join(f"{v:.2f}" for v in floats) + ")"

    if len(data) >= COORDINATE_RAW_FLOATS * 4:
        values = struct.unpack_from(f"<{COORDINATE_RAW_FLOATS}f", data, 0)
        return "(" + ", ".join(f"{v:.2f}" for v in values) + ")"
    return hex_dump(data)


def _decode_scalar(data: bytes, info: FieldInfo) -> str:
    return _SCALAR_READERS[info.kind](data, 0)[0]


_DECODERS: dict[FieldType, Callable[[bytes, FieldInfo], str]] = {
    **{kind: _decode_scalar for kind in _SCALAR_READERS},
    FieldType.STRING: lambda data, info: decode_string(data, 0),
    FieldType.UNICODE_STRING: lambda data, info: decode_unicode_string(data, 0),
    FieldType.STRING_ID: lambda data, info: decode_string_id(data),
    FieldType.VECTOR: lambda data, info: decode_vector(data, info.element_type),
    FieldType.MAP: lambda data, info: decode_vector_map(data),
    FieldType.COORDINATE: lambda data, info: decode_coordinate(data),
}


def decode_field(data: bytes, info: FieldInfo) -> str:
    """Decode one field's bytes according to its dictionary entry."""
    decoder = _DECODERS.get(info.kind)
    if decoder is None:
        return hex_dump(data)
    try:
        return decoder(data, info)
    except _DECODE_ERRORS:
        return hex_dump(data)
