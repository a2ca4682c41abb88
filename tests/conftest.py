"""
Pytest fixtures for bdbinspect.

Provides:
- Record payload builders (field framing, optional zlib compression)
- A small field dictionary
- Fake dump/stat utilities and database files they can "read"
"""

from __future__ import annotations

import struct
import sys
import zlib
from pathlib import Path
from typing import Callable, Iterable

import pytest

from bdbinspect.bdb.constants import CLASSNAME_HASH
from bdbinspect.bdb.oid import oid_to_dump_key
from bdbinspect.fields.dictionary import FieldDictionary

FIXTURES = Path(__file__).parent / "fixtures"

H_NAME = 0x11111111
H_USES = 0x22222222
H_SLOTS = 0x33333333
H_PARENT = 0x44444444
H_ZONE = 0x55555555


def pack_string(text: str) -> bytes:
    data = text.encode("utf-8")
    return struct.pack("<H", len(data)) + data


def pack_payload(fields: Iterable[tuple[int, bytes]], compress: bool = False) -> bytes:
    fields = list(fields)
    out = struct.pack("<H", len(fields))
    for field_hash, data in fields:
        out += struct.pack("<II", field_hash, len(data)) + data
    return zlib.compress(out) if compress else out


def object_payload(class_name: str, name: str = "obj", uses: int = 0,
                   compress: bool = True) -> bytes:
    """A typical record: class name first, then a few dictionary fields."""
    return pack_payload([
        (CLASSNAME_HASH, pack_string(class_name)),
        (H_NAME, pack_string(name)),
        (H_USES, struct.pack("<i", uses)),
    ], compress=compress)


def render_dump(records: Iterable[tuple[int, bytes]]) -> str:
    """Text in db_dump's format for (oid, value) pairs."""
    lines = ["VERSION=3", "format=bytevalue", "type=hash", "db_pagesize=4096", "HEADER=END"]
    for oid, value in records:
        lines.append(" " + oid_to_dump_key(oid))
        lines.append(" " + value.hex())
    lines.append("DATA=END")
    return "\n".join(lines) + "\n"


@pytest.fixture
def payload() -> Callable[..., bytes]:
    return pack_payload


@pytest.fixture
def dictionary() -> FieldDictionary:
    return FieldDictionary.from_pairs([
        (H_NAME, "SceneObject.objectName", "String"),
        (H_USES, "TangibleObject.useCount", "int"),
        (H_SLOTS, "SceneObject.slotIds", "Vector<int>"),
        (H_PARENT, "SceneObject.parent", "ManagedWeakReference<SceneObject* >"),
        (H_ZONE, "SceneObject.zoneCRC", "unsigned int"),
    ])


@pytest.fixture
def dump_command() -> tuple[str, ...]:
    return (sys.executable, str(FIXTURES / "fake_db_dump.py"))


@pytest.fixture
def stat_command() -> tuple[str, ...]:
    return (sys.executable, str(FIXTURES / "fake_db_stat.py"))


@pytest.fixture
def make_db(tmp_path: Path) -> Callable[..., Path]:
    """Write a fake database file holding the dump text for ``records``."""

    def _make(records: Iterable[tuple[int, bytes]], name: str = "sceneobjects.db") -> Path:
        path = tmp_path / name
        path.write_text(render_dump(records), encoding="ascii")
        return path

    return _make


@pytest.fixture
def sample_records() -> list[tuple[int, bytes]]:
    """Ten records alternating PlayerCreature / BuildingObject, with one raw payload."""
    records = []
    for i in range(10):
        class_name = "PlayerCreature" if i % 2 == 0 else "BuildingObject"
        oid = (1 << 48) | (1000 + i)
        records.append((oid, object_payload(class_name, name=f"obj{i}", uses=i, compress=(i != 3))))
    return records


@pytest.fixture
def sample_db(make_db, sample_records) -> Path:
    return make_db(sample_records)
