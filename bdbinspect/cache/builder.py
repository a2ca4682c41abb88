"""Build the index cache with one streaming pass over the dump.

Each record gets a summary parse; rows are written in batches, one
transaction per batch. The class-name index and build metadata are written
only after the bulk load. A build that fails, times out or is cancelled
deletes everything it wrote. Builds hold the database's cross-process
build lock, so no other build can touch those files meanwhile.
"""
from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from bdbinspect.bdb.oid import format_oid, oid_from_key_hex
from bdbinspect.bdb.stream import CancelToken, DumpStream
from bdbinspect.cache.lock import BuildLock
from bdbinspect.cache.schema import INSERT_SQL, finalize_cache, init_cache
from bdbinspect.cache.store import delete_cache
from bdbinspect.config import CACHE_BATCH_SIZE, CACHE_BUILD_TIMEOUT, DUMP_COMMAND, derive_cache_path
from bdbinspect.errors import CacheBuildError
from bdbinspect.fields.parser import parse_summary_hex
from bdbinspect.log import get_logger

log = get_logger(__name__)


class BuildCancelled(CacheBuildError):
    """The build was cancelled by its caller."""


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def build_cache(stream: DumpStream,
                token: Optional[CancelToken] = None,
                progress: Optional[Callable[[int], None]] = None,
                batch_size: int = CACHE_BATCH_SIZE,
                timeout: Optional[float] = CACHE_BUILD_TIMEOUT,
                lock: Optional[BuildLock] = None) -> int:
    """Build ``<db>.cache`` for the stream's database. Returns rows written.

    The database's build lock is held for the whole build. Pass ``lock`` when
    the caller already holds it; otherwise it is taken here and raises
    CacheBuildError if another build is running.
    """
    if lock is not None and lock.held:
        return _write_cache(stream, token, progress, batch_size, timeout)
    with BuildLock(stream.db_path):
        return _write_cache(stream, token, progress, batch_size, timeout)


def _write_cache(stream: DumpStream,
                 token: Optional[CancelToken],
                 progress: Optional[Callable[[int], None]],
                 batch_size: int,
                 timeout: Optional[float]) -> int:
    db_path = stream.db_path
    cache_path = derive_cache_path(db_path)
    delete_cache(db_path)

    try:
        conn = sqlite3.connect(str(cache_path))
    except sqlite3.Error as e:
        raise CacheBuildError(f"Cannot create cache {cache_path}: {e}") from e

    rownum = 0
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=OFF")
        init_cache(conn)

        batch: list[tuple] = []
        with stream.open(timeout=timeout, token=token) as session:
            for key_hex, value_hex in session.pairs():
                if token is not None and token.cancelled:
                    break
                summary = parse_summary_hex(value_hex)
                batch.append((
                    rownum,
                    format_oid(oid_from_key_hex(key_hex)),
                    summary.class_name,
                    summary.field_count,
                    summary.compressed_size,
                    summary.decompressed_size,
                ))
                rownum += 1
                if len(batch) >= batch_size:
                    conn.executemany(INSERT_SQL, batch)
                    conn.commit()
                    batch.clear()
                    if progress is not None:
                        progress(rownum)
            timed_out = session.timed_out

        if token is not None and token.cancelled:
            raise BuildCancelled(f"Cache build cancelled after {rownum:,} records")
        if timed_out:
            raise CacheBuildError(f"Cache build timed out after {timeout}s ({rownum:,} records scanned)")

        if batch:
            conn.executemany(INSERT_SQL, batch)
            conn.commit()
        finalize_cache(conn, _utc_timestamp(), rownum)
        conn.execute("PRAGMA journal_mode=DELETE")
        conn.close()
    except BaseException as e:
        conn.close()
        delete_cache(db_path)
        if isinstance(e, sqlite3.Error):
            raise CacheBuildError(f"Cache write failed: {e}") from e
        raise

    log.info("cached %d records for %s", rownum, db_path)
    return rownum


class CacheBuild:
    """A build running on a background thread.

    ``future`` resolves to the row count, or to the exception that ended the
    build. ``on_done`` is never called once ``cancel()`` has returned True.
    """

    def __init__(self, stream: DumpStream,
                 progress: Optional[Callable[[int], None]] = None,
                 on_done: Optional[Callable[[int], None]] = None,
                 on_error: Optional[Callable[[BaseException], None]] = None,
                 batch_size: int = CACHE_BATCH_SIZE,
                 timeout: Optional[float] = CACHE_BUILD_TIMEOUT):
        self.stream = stream
        self.token = CancelToken()
        self.future: Future = Future()
        self._progress = progress
        self._on_done = on_done
        self._on_error = on_error
        self._batch_size = batch_size
        self._timeout = timeout
        self._lock = threading.Lock()
        self._settled = False
        self._build_lock = BuildLock(stream.db_path)
        self._thread = threading.Thread(
            target=self._run, name=f"cache-build-{stream.db_path.name}", daemon=True,
        )

    @property
    def db_path(self) -> Path:
        return self.stream.db_path

    @property
    def done(self) -> bool:
        return self.future.done()

    def start(self) -> "CacheBuild":
        """Take the build lock and start the thread. Raises CacheBuildError if locked."""
        self._build_lock.acquire()
        self.future.set_running_or_notify_cancel()
        try:
            self._thread.start()
        except BaseException:
            self._build_lock.release()
            raise
        return self

    def cancel(self) -> bool:
        """Stop the build and delete its partial output. False if already finished."""
        with self._lock:
            if self._settled:
                return False
            self.token.cancel()
            return True

    def result(self, timeout: Optional[float] = None) -> int:
        return self.future.result(timeout)

    def _run(self) -> None:
        try:
            total = build_cache(
                self.stream, token=self.token, progress=self._progress,
                batch_size=self._batch_size, timeout=self._timeout, lock=self._build_lock,
            )
        except BaseException as e:
            with self._lock:
                self._settled = True
                notify = not self.token.cancelled
            self._build_lock.release()
            self.future.set_exception(e)
            if notify and self._on_error is not None:
                self._on_error(e)
            return

        with self._lock:
            self._settled = True
            cancelled = self.token.cancelled
            if cancelled:
                # Cancelled between the last record and here
                delete_cache(self.db_path)
        self._build_lock.release()
        if cancelled:
            self.future.set_exception(BuildCancelled("Cache build cancelled"))
            return
        self.future.set_result(total)
        if self._on_done is not None:
            self._on_done(total)


class CacheBuilder:
    """Starts cache builds, allowing at most one in flight per database."""

    def __init__(self, command: Sequence[str] = DUMP_COMMAND,
                 batch_size: int = CACHE_BATCH_SIZE,
                 timeout: Optional[float] = CACHE_BUILD_TIMEOUT):
        self.command = tuple(command)
        self.batch_size = batch_size
        self.timeout = timeout
        self._active: dict[Path, CacheBuild] = {}
        self._lock = threading.Lock()

    def active(self, db_path: Path) -> Optional[CacheBuild]:
        with self._lock:
            build = self._active.get(db_path.resolve())
        if build is not None and not build.done:
            return build
        return None

    def start(self, db_path: Path,
              progress: Optional[Callable[[int], None]] = None,
              on_done: Optional[Callable[[int], None]] = None,
              on_error: Optional[Callable[[BaseException], None]] = None) -> CacheBuild:
        key = db_path.resolve()
        with self._lock:
            current = self._active.get(key)
            if current is not None and not current.done:
                raise CacheBuildError(f"A cache build is already running for {db_path}")
            build = CacheBuild(
                DumpStream(db_path, self.command),
                progress=progress, on_done=on_done, on_error=on_error,
                batch_size=self.batch_size, timeout=self.timeout,
            )
            # Raises if another process is building this database
            build.start()
            self._active[key] = build
        build.future.add_done_callback(lambda _: self._release(key, build))
        log.info("started cache build for %s", db_path)
        return build

    def _release(self, key: Path, build: CacheBuild) -> None:
        with self._lock:
            if self._active.get(key) is build:
                del self._active[key]
