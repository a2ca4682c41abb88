"""Default paths and constants for inspecting object databases."""
from pathlib import Path


def derive_cache_path(db: Path) -> Path:
    """Derive the index cache path from the database path (sibling file)."""
    return db.with_name(db.name + ".cache")


def derive_cache_companions(db: Path) -> list[Path]:
    """Return the cache file plus its SQLite write-ahead and shared-memory files."""
    cache = derive_cache_path(db)
    return [
        cache,
        cache.with_name(cache.name + "-wal"),
        cache.with_name(cache.name + "-shm"),
    ]


def derive_lock_path(db: Path) -> Path:
    """Lock file held by whichever process is building the cache."""
    cache = derive_cache_path(db)
    return cache.with_name(cache.name + ".lock")


def derive_crc_table_paths(db: Path, max_depth: int = 10) -> list[Path]:
    """Return candidate CRC string table paths by walking up to a ``tre`` dir."""
    rel = Path("misc") / "object_template_crc_string_table.iff"
    directory = db.resolve().parent
    for _ in range(max_depth):
        tre = directory / "tre"
        if tre.is_dir():
            return [tre / "working" / rel, tre / "infinity" / rel]
        if directory.parent == directory:
            break
        directory = directory.parent
    return []


# External tools (Berkeley DB 5.3 utilities)
DUMP_COMMAND = ("/usr/bin/db5.3_dump",)
STAT_COMMAND = ("/usr/bin/db5.3_stat", "-d")

# Paging
PAGE_SIZE = 50
CACHE_BATCH_SIZE = 5000     # Rows per transaction during cache build
PROGRESS_INTERVAL = 5000    # Records between progress callbacks

# Timeouts (seconds)
STATS_TIMEOUT = 10
PAGE_TIMEOUT = 60
CLASS_SCAN_TIMEOUT = 60
KEY_SCAN_TIMEOUT = 300
CACHE_BUILD_TIMEOUT = 1800
