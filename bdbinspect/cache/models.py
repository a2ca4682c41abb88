"""Dataclasses for index cache rows and metadata."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class CacheInfo:
    exists: bool
    build_time: Optional[str] = None
    total_records: Optional[int] = None
    version: Optional[int] = None


@dataclass
class CachedRecordSummary:
    """One indexed record (no payload)."""
    rownum: int
    oid: str
    class_name: str
    field_count: int
    compressed_size: int
    decompressed_size: int

    def to_dict(self) -> dict:
        return {
            "rownum": self.rownum,
            "oid": self.oid,
            "class_name": self.class_name,
            "field_count": self.field_count,
            "compressed_size": self.compressed_size,
            "decompressed_size": self.decompressed_size,
        }
