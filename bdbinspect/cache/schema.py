"""SQLite schema for the per-database index cache."""
from __future__ import annotations

import sqlite3

CACHE_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cache_meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS records (
    rownum            INTEGER PRIMARY KEY,   -- position in dump order
    oid               TEXT NOT NULL,         -- '0x' + 16 uppercase hex digits
    class_name        TEXT NOT NULL,
    field_count       INTEGER NOT NULL,
    compressed_size   INTEGER NOT NULL,
    decompressed_size INTEGER NOT NULL
);
"""

# Created after the bulk load; maintaining it during inserts is far slower
INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_class ON records(class_name);"

INSERT_SQL = (
    "INSERT INTO records "
    "(rownum, oid, class_name, field_count, compressed_size, decompressed_size) "
    "VALUES (?, ?, ?, ?, ?, ?)"
)


def init_cache(conn: sqlite3.Connection) -> None:
    """Create the cache tables (no class index yet)."""
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def finalize_cache(conn: sqlite3.Connection, build_time: str, total_records: int) -> None:
    """Index class names and record build metadata."""
    conn.execute(INDEX_SQL)
    conn.executemany(
        "INSERT OR REPLACE INTO cache_meta (key, value) VALUES (?, ?)",
        [
            ("build_time", build_time),
            ("total_records", str(total_records)),
            ("version", str(CACHE_VERSION)),
        ],
    )
    conn.commit()
