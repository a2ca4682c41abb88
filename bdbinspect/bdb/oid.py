"""Object identifier helpers.

An OID is a 64-bit value: the upper 16 bits name the table (the logical
database that issued it), the lower 48 bits are a per-table counter. On the
wire the dump key starts with the OID as 8 little-endian bytes.
"""
from __future__ import annotations

import struct

_UINT64 = struct.Struct("<Q")

TABLE_MASK = 0xFFFF
COUNTER_MASK = 0x0000FFFFFFFFFFFF


def table_id(oid: int) -> int:
    return (oid >> 48) & TABLE_MASK


def counter(oid: int) -> int:
    return oid & COUNTER_MASK


def format_oid(oid: int) -> str:
    """Fixed-width uppercase hex with 0x prefix."""
    return f"0x{oid:016X}"


def parse_oid(text: str) -> int:
    """Parse '0x...' hex or a decimal string into an OID."""
    text = text.strip()
    value = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
    if not 0 <= value <= 0xFFFFFFFFFFFFFFFF:
        raise ValueError(f"OID out of range: {text}")
    return value


def oid_from_key(key: bytes) -> int:
    """Read the OID from the first 8 bytes of a raw dump key (0 if short)."""
    if len(key) < 8:
        return 0
    return _UINT64.unpack_from(key)[0]


def oid_from_key_hex(key_hex: str) -> int:
    try:
        return oid_from_key(bytes.fromhex(key_hex))
    except ValueError:
        return 0


def oid_to_dump_key(oid: int) -> str:
    """Encode an OID the way the dump utility prints its key (lowercase hex)."""
    return _UINT64.pack(oid).hex()
