"""Read-only queries against a built index cache."""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from bdbinspect.bdb.oid import oid_to_dump_key, parse_oid
from bdbinspect.bdb.records import ClassIndexEntry
from bdbinspect.cache.models import CachedRecordSummary, CacheInfo
from bdbinspect.config import derive_cache_companions, derive_cache_path
from bdbinspect.errors import CacheMissingError
from bdbinspect.log import get_logger

log = get_logger(__name__)

_SUMMARY_COLUMNS = "rownum, oid, class_name, field_count, compressed_size, decompressed_size"


def delete_cache(db_path: Path) -> int:
    """Delete the cache and its -wal/-shm companions. Returns files removed."""
    removed = 0
    for path in derive_cache_companions(db_path):
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            pass
    if removed:
        log.info("deleted index cache for %s", db_path)
    return removed


def get_cache_info(db_path: Path) -> CacheInfo:
    """Report whether a usable cache exists, with its build metadata."""
    cache_path = derive_cache_path(db_path)
    if not cache_path.exists():
        return CacheInfo(exists=False)
    try:
        with CacheStore(cache_path) as store:
            return store.info()
    except sqlite3.DatabaseError as e:
        log.warning("unreadable cache %s: %s", cache_path, e)
        return CacheInfo(exists=False)


class CacheStore:
    """Query layer over ``<db>.cache``."""

    def __init__(self, cache_path: Path):
        if not cache_path.exists():
            raise CacheMissingError(f"No index cache at {cache_path}. Build one with 'bdbi cache build'.")
        self.cache_path = cache_path
        uri = cache_path.resolve().as_uri() + "?mode=ro"
        self.conn = sqlite3.connect(uri, uri=True)

    @classmethod
    def for_database(cls, db_path: Path) -> "CacheStore":
        return cls(derive_cache_path(db_path))

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # -- Metadata --

    def info(self) -> CacheInfo:
        meta = dict(self.conn.execute(
            "SELECT key, value FROM cache_meta WHERE key IN ('build_time', 'total_records', 'version')"
        ).fetchall())
        total = _to_int(meta.get("total_records"))
        if total is None:
            # Build never finished writing its metadata, or wrote garbage
            return CacheInfo(exists=False)
        return CacheInfo(
            exists=True,
            build_time=meta.get("build_time"),
            total_records=total,
            version=_to_int(meta.get("version")),
        )

    # -- Queries --

    def record_page(self, page: int, page_size: int) -> list[CachedRecordSummary]:
        """Records in dump order, one page at a time."""
        cur = self.conn.execute(
            f"SELECT {_SUMMARY_COLUMNS} FROM records ORDER BY rownum LIMIT ? OFFSET ?",
            (page_size, page * page_size),
        )
        return [CachedRecordSummary(*row) for row in cur.fetchall()]

    def class_index(self) -> list[ClassIndexEntry]:
        """Per-class record count and average decompressed size, largest first."""
        cur = self.conn.execute(
            "SELECT class_name, COUNT(*), CAST(AVG(decompressed_size) AS INTEGER) "
            "FROM records GROUP BY class_name ORDER BY COUNT(*) DESC, class_name"
        )
        return [ClassIndexEntry(name, count, avg or 0) for name, count, avg in cur.fetchall()]

    def class_count(self, class_name: str) -> int:
        cur = self.conn.execute("SELECT COUNT(*) FROM records WHERE class_name = ?", (class_name,))
        return cur.fetchone()[0]

    def class_record_page(self, class_name: str, page: int,
                          page_size: int) -> tuple[list[CachedRecordSummary], int]:
        """One page of a class in dump order, plus the class's total count."""
        total = self.class_count(class_name)
        cur = self.conn.execute(
            f"SELECT {_SUMMARY_COLUMNS} FROM records WHERE class_name = ? "
            "ORDER BY rownum LIMIT ? OFFSET ?",
            (class_name, page_size, page * page_size),
        )
        return [CachedRecordSummary(*row) for row in cur.fetchall()], total

    def class_oid_keys(self, class_name: str, page: int, page_size: int) -> tuple[list[str], int]:
        """Like class_record_page, but as dump key hex (8-byte little-endian OIDs)."""
        total = self.class_count(class_name)
        cur = self.conn.execute(
            "SELECT oid FROM records WHERE class_name = ? ORDER BY rownum LIMIT ? OFFSET ?",
            (class_name, page_size, page * page_size),
        )
        keys = []
        for (oid_text,) in cur.fetchall():
            try:
                keys.append(oid_to_dump_key(parse_oid(oid_text)))
            except ValueError:
                log.warning("skipping malformed OID %r in cache", oid_text)
        return keys, total

    def find_oid(self, oid: str) -> Optional[CachedRecordSummary]:
        cur = self.conn.execute(f"SELECT {_SUMMARY_COLUMNS} FROM records WHERE oid = ?", (oid,))
        row = cur.fetchone()
        return CachedRecordSummary(*row) if row else None


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
