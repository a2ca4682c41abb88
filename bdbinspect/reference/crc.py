"""SWG CRC-32 and the object-template CRC string table.

The CRC is the non-reflected CRC-32 (polynomial 0x04C11DB7, init and final
xor 0xFFFFFFFF) over the lowercased string.

CRC string table format (IFF, chunk sizes big-endian, payloads little-endian):
  FORM CSTB
    FORM 0000
      DATA  u32 entry count
      CRCT  count x u32 CRC (sorted)
      STRT  count x u32 offset into STNG
      STNG  null-terminated template paths
"""
from __future__ import annotations

import struct
from pathlib import Path
from typing import Iterable

from bdbinspect.log import get_logger

log = get_logger(__name__)

_POLY = 0x04C11DB7
_CHUNK_HEADER = struct.Struct(">4sI")
_U32_LE = struct.Struct("<I")


def _build_table() -> list[int]:
    table = []
    for i in range(256):
        crc = i << 24
        for _ in range(8):
            crc = ((crc << 1) ^ _POLY) if crc & 0x80000000 else (crc << 1)
        table.append(crc & 0xFFFFFFFF)
    return table


_TABLE = _build_table()


def swg_crc(text: str) -> int:
    """CRC of a template path or zone name, case-insensitive."""
    crc = 0xFFFFFFFF
    for byte in text.lower().encode("latin-1", errors="replace"):
        crc = ((crc << 8) & 0xFFFFFFFF) ^ _TABLE[((crc >> 24) ^ byte) & 0xFF]
    return crc ^ 0xFFFFFFFF


def _read_chunk(data: bytes, pos: int, expected: bytes) -> tuple[int, int]:
    """Check the tag at ``pos``; return (payload_offset, payload_size)."""
    if pos + 8 > len(data):
        raise ValueError(f"Truncated IFF: expected {expected.decode()} at offset {pos}")
    tag, size = _CHUNK_HEADER.unpack_from(data, pos)
    if tag != expected:
        raise ValueError(f"Expected {expected.decode()} at offset {pos}, got {tag!r}")
    return pos + 8, size


def _read_form(data: bytes, pos: int, name: bytes) -> int:
    body, _ = _read_chunk(data, pos, b"FORM")
    if data[body:body + 4] != name:
        raise ValueError(f"Expected FORM {name.decode()}, got {data[body:body + 4]!r}")
    return body + 4


def parse_crc_table(data: bytes) -> dict[int, str]:
    """Parse a CSTB file into {crc: template path}. Raises ValueError if malformed."""
    pos = _read_form(data, 0, b"CSTB")
    pos = _read_form(data, pos, b"0000")

    body, size = _read_chunk(data, pos, b"DATA")
    count = _U32_LE.unpack_from(data, body)[0]
    pos = body + size

    body, size = _read_chunk(data, pos, b"CRCT")
    if size < count * 4:
        raise ValueError(f"CRCT holds {size // 4} entries, expected {count}")
    crcs = struct.unpack_from(f"<{count}I", data, body)
    pos = body + size

    body, size = _read_chunk(data, pos, b"STRT")
    if size < count * 4:
        raise ValueError(f"STRT holds {size // 4} entries, expected {count}")
    offsets = struct.unpack_from(f"<{count}I", data, body)
    pos = body + size

    stng, size = _read_chunk(data, pos, b"STNG")
    strings = data[stng:stng + size]

    entries = {}
    for crc, offset in zip(crcs, offsets):
        end = strings.find(b"\x00", offset)
        if end == -1:
            end = len(strings)
        entries[crc] = strings[offset:end].decode("latin-1")
    return entries


def load_crc_table(paths: Iterable[Path]) -> dict[int, str]:
    """Load the first readable table among ``paths``; empty if none loads."""
    for path in paths:
        try:
            table = parse_crc_table(path.read_bytes())
        except FileNotFoundError:
            continue
        except (OSError, ValueError, struct.error) as e:
            log.warning("skipping CRC table %s: %s", path, e)
            continue
        log.info("loaded %d template CRCs from %s", len(table), path)
        return table
    return {}


def zone_crc_map(names: Iterable[str]) -> dict[int, str]:
    return {swg_crc(name): name for name in names}
