"""Streaming reader for db_dump's text protocol.

Protocol (one item per line):
  free-form header lines ...
  HEADER=END
   <key hex>
   <value hex>
  ... (key/value lines strictly alternate, each prefixed with a space)
  DATA=END

Every ``DumpStream.open()`` spawns a fresh dump process, so a stream can be
read any number of times. A session owns its process: leaving the session
(normally, on error, on timeout or on cancellation) kills it.
"""
from __future__ import annotations

import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from bdbinspect.bdb.constants import DATA_END, HEADER_END
from bdbinspect.config import DUMP_COMMAND
from bdbinspect.errors import DumpError, ToolMissingError
from bdbinspect.log import get_logger

log = get_logger(__name__)

STDERR_TAIL_LINES = 200     # Lines of dump stderr kept for error messages
STDERR_JOIN_TIMEOUT = 2.0


class CancelToken:
    """Cooperative cancellation flag shared by a caller and a running scan.

    Scans check ``cancelled`` at every record boundary; callbacks registered
    by open sessions kill their processes as soon as ``cancel()`` is called.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


class DumpSession:
    """One running dump process and its key/value state machine."""

    def __init__(self, argv: Sequence[str], timeout: Optional[float] = None,
                 token: Optional[CancelToken] = None):
        self.argv = list(argv)
        self.timeout = timeout
        self.token = token
        self.timed_out = False
        self.cancelled = False
        self.finished = False      # DATA=END seen
        self.returncode: Optional[int] = None
        self.stderr = ""
        self._proc: Optional[subprocess.Popen] = None
        self._timer: Optional[threading.Timer] = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def interrupted(self) -> bool:
        return self.timed_out or self.cancelled

    def __enter__(self) -> "DumpSession":
        if self._proc is None:
            self.start()
        return self

    def __exit__(self, *args):
        self.close()

    def start(self) -> None:
        try:
            self._proc = subprocess.Popen(
                self.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="ascii",
                errors="replace",
            )
        except OSError as e:
            raise ToolMissingError(self.argv[0], e.strerror or str(e)) from e
        log.debug("spawned %s (pid %d)", " ".join(self.argv), self._proc.pid)

        # stderr is drained as it arrives so a chatty dump cannot fill the pipe
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name=f"dump-stderr-{self._proc.pid}", daemon=True,
        )
        self._stderr_thread.start()

        if self.timeout is not None and self.timeout > 0:
            self._timer = threading.Timer(self.timeout, self._expire)
            self._timer.daemon = True
            self._timer.start()
        if self.token is not None:
            self.token.register(self._on_cancel)

    def _drain_stderr(self) -> None:
        for line in self._proc.stderr:
            line = line.rstrip("\r\n")
            log.debug("dump stderr: %s", line)
            self._stderr_tail.append(line)

    def _expire(self) -> None:
        log.debug("dump timed out after %ss, killing", self.timeout)
        self.timed_out = True
        self._kill()

    def _on_cancel(self) -> None:
        self.cancelled = True
        self._kill()

    def _kill(self) -> None:
        with self._lock:
            if self._proc is not None and self._proc.poll() is None:
                self._proc.kill()

    def pairs(self) -> Iterator[tuple[str, str]]:
        """Yield (key_hex, value_hex) for each complete record.

        A key line with no following value line is dropped. A process that
        exits after the data section started simply ends the sequence; one
        that never reaches it raises DumpError.
        """
        if self._proc is None:
            raise RuntimeError("DumpSession.pairs() called before start()")
        in_data = False
        pending_key: Optional[str] = None

        for line in self._proc.stdout:
            line = line.rstrip("\r\n")
            if not in_data:
                if line == HEADER_END:
                    in_data = True
                continue
            if line == DATA_END:
                self.finished = True
                break

            hex_text = line.strip()
            if pending_key is None:
                pending_key = hex_text
            else:
                yield pending_key, hex_text
                pending_key = None

        if not in_data and not self.interrupted:
            self._reap()
            tool = Path(self.argv[0]).name
            if self.returncode:
                raise DumpError(f"{tool} failed (code {self.returncode}): {self.stderr.strip()}")
            raise DumpError(f"{tool} produced no data section (missing {HEADER_END}): {self.stderr.strip()}")

    def _reap(self) -> None:
        if self._proc is None or self.returncode is not None:
            return
        self.returncode = self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=STDERR_JOIN_TIMEOUT)
        self.stderr = "\n".join(self._stderr_tail)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        if self.token is not None:
            self.token.unregister(self._on_cancel)
        if self._proc is None:
            return
        self._kill()
        self._reap()
        if self._proc.stdout is not None:
            self._proc.stdout.close()
        # A reader thread still blocked on stderr keeps the pipe
        if self._stderr_thread is None or not self._stderr_thread.is_alive():
            if self._proc.stderr is not None:
                self._proc.stderr.close()
        log.debug("dump exited with code %s", self.returncode)


class DumpStream:
    """Restartable (key_hex, value_hex) sequence over one database file."""

    def __init__(self, db_path: Path, command: Sequence[str] = DUMP_COMMAND):
        self.db_path = db_path
        self.command = tuple(command)

    def argv(self) -> list[str]:
        return [*self.command, str(self.db_path)]

    def open(self, timeout: Optional[float] = None,
             token: Optional[CancelToken] = None) -> DumpSession:
        """Start a new dump process. Use as a context manager."""
        session = DumpSession(self.argv(), timeout=timeout, token=token)
        session.start()
        return session

    def __iter__(self) -> Iterator[tuple[str, str]]:
        with self.open() as session:
            yield from session.pairs()
