"""Cross-process lock that keeps cache builds for one database exclusive.

The lock is an OS-level advisory lock on ``<db>.cache.lock``. The OS drops
it when the holder exits, so a crashed build never leaves a stale lock. The
lock file itself is left in place; only the lock on it matters.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

from bdbinspect.config import derive_lock_path
from bdbinspect.errors import CacheBuildError
from bdbinspect.log import get_logger

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

log = get_logger(__name__)


class BuildLock:
    """Exclusive, non-blocking lock for building one database's cache."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.path = derive_lock_path(db_path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> "BuildLock":
        """Take the lock or raise CacheBuildError if another build holds it."""
        if self._fd is not None:
            return self
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise CacheBuildError(f"Cannot create lock file {self.path}: {e.strerror or e}") from e
        try:
            if sys.platform == "win32":
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise CacheBuildError(f"A cache build is already running for {self.db_path}") from e

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self._fd = fd
        log.debug("acquired build lock %s", self.path)
        return self

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if sys.platform == "win32":
                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        log.debug("released build lock %s", self.path)

    def __enter__(self) -> "BuildLock":
        return self.acquire()

    def __exit__(self, *args):
        self.release()


def build_in_progress(db_path: Path) -> bool:
    """True if some process currently holds the build lock for ``db_path``."""
    if not derive_lock_path(db_path).exists():
        return False
    lock = BuildLock(db_path)
    try:
        lock.acquire()
    except CacheBuildError:
        return True
    lock.release()
    return False
