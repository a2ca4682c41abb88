"""Database metadata via ``db_stat -d`` (metadata pages only, no records).

db_stat prints one ``<value><TAB><label>`` pair per line, for example::

    61561   Hash magic number
    9       Hash version number
    Little-endian   Byte order
    16384   Underlying database page size
    125533  Number of keys in the database
"""
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence

from bdbinspect.bdb.constants import (
    DEFAULT_BYTE_ORDER,
    DEFAULT_DB_PAGE_SIZE,
    STAT_BTREE_MAGIC,
    STAT_BYTE_ORDER,
    STAT_HASH_MAGIC,
    STAT_PAGE_SIZE,
    STAT_RECORD_COUNT,
)
from bdbinspect.bdb.records import DbStats
from bdbinspect.config import STAT_COMMAND, STATS_TIMEOUT
from bdbinspect.errors import StatsError, ToolMissingError
from bdbinspect.log import get_logger

log = get_logger(__name__)


def _leading_int(line: str, default: int) -> int:
    parts = line.split()
    try:
        return int(parts[0], 10)
    except (IndexError, ValueError):
        return default


def parse_stats(output: str) -> DbStats:
    """Parse db_stat -d output; unrecognized lines are ignored."""
    record_count = 0
    db_type = "hash"
    page_size = DEFAULT_DB_PAGE_SIZE
    byte_order = DEFAULT_BYTE_ORDER

    for line in output.splitlines():
        line = line.strip()
        if line.endswith(STAT_RECORD_COUNT):
            record_count = _leading_int(line, 0)
        elif line.endswith(STAT_PAGE_SIZE):
            page_size = _leading_int(line, DEFAULT_DB_PAGE_SIZE)
        elif line.endswith(STAT_BYTE_ORDER):
            byte_order = line[:-len(STAT_BYTE_ORDER)].strip() or DEFAULT_BYTE_ORDER
        elif line.endswith(STAT_HASH_MAGIC):
            db_type = "hash"
        elif line.endswith(STAT_BTREE_MAGIC):
            db_type = "btree"

    return DbStats(record_count=record_count, db_type=db_type, page_size=page_size, byte_order=byte_order)


def get_db_stats(db_path: Path, command: Sequence[str] = STAT_COMMAND,
                 timeout: float = STATS_TIMEOUT) -> DbStats:
    """Run the stat utility. Timeouts are errors: a partial answer is useless."""
    argv = [*command, str(db_path)]
    tool = Path(argv[0]).name
    try:
        proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except OSError as e:
        raise ToolMissingError(argv[0], e.strerror or str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise StatsError(f"{tool} timed out after {timeout}s") from e

    if proc.returncode != 0:
        raise StatsError(f"{tool} failed (code {proc.returncode}): {proc.stderr.strip()}")

    stats = parse_stats(proc.stdout)
    log.debug("stats for %s: %s", db_path, stats)
    return stats
