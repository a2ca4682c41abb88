"""Dataclasses for raw dump records and decoded record views."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from bdbinspect.bdb.oid import format_oid


@dataclass(slots=True)
class RawRecord:
    """One key/value pair as emitted by the dump stream (value still compressed)."""
    oid: int
    key_hex: str
    value_hex: str

    @property
    def oid_hex(self) -> str:
        return format_oid(self.oid)


@dataclass(slots=True)
class DecodedField:
    """A single hash-tagged field within a record payload."""
    hash: int
    size: int
    data: bytes
    name: str
    type: str          # Declared type string from the dictionary, '?' if unknown
    decoded: str
    annotation: Optional[str] = None

    @property
    def hash_hex(self) -> str:
        return f"0x{self.hash:08X}"

    def to_dict(self) -> dict:
        out = {
            "name": self.name,
            "type": self.type,
            "decoded": self.decoded,
            "size": self.size,
            "hash": self.hash_hex,
        }
        if self.annotation:
            out["annotation"] = self.annotation
        return out


@dataclass(slots=True)
class RecordSummary:
    """Class name and counts, produced without decoding individual fields."""
    class_name: str
    field_count: int
    compressed_size: int
    decompressed_size: int


@dataclass(slots=True)
class RecordDetail:
    """A fully decoded record."""
    class_name: str
    fields: list[DecodedField] = field(default_factory=list)
    decompressed_size: int = 0
    oid: Optional[int] = None

    @property
    def oid_hex(self) -> Optional[str]:
        return format_oid(self.oid) if self.oid is not None else None

    def get_field(self, name: str) -> Optional[DecodedField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict:
        return {
            "oid": self.oid_hex,
            "class_name": self.class_name,
            "decompressed_size": self.decompressed_size,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass(slots=True)
class DbStats:
    """Metadata read from db_stat, independent of any record decode."""
    record_count: int
    db_type: str        # 'hash' or 'btree'
    page_size: int
    byte_order: str


@dataclass(slots=True)
class ClassIndexEntry:
    """Per-class aggregate over a whole database."""
    class_name: str
    count: int
    avg_size: int       # Average decompressed payload size in bytes
