"""Record retrieval strategies over a single dump stream.

- ``fetch_page``: skip ``page * page_size`` records, return the next page raw.
- ``fetch_class_page``: summary-parse every record, fully decode only the
  matches that fall on the requested page.
- ``fetch_by_keys``: fully decode only records whose key is in a target set
  (usually from the index), stopping once every key has been seen.
- ``scan_class_index``: per-class counts from a full summary pass.

Every strategy stops early on timeout or cancellation and returns what it has
collected, flagged via ``timed_out`` / ``cancelled``.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from bdbinspect.bdb.constants import CLASSNAME_HASH
from bdbinspect.bdb.oid import oid_from_key_hex
from bdbinspect.bdb.records import ClassIndexEntry, RawRecord, RecordDetail
from bdbinspect.bdb.stream import CancelToken, DumpSession, DumpStream
from bdbinspect.config import (
    CLASS_SCAN_TIMEOUT,
    KEY_SCAN_TIMEOUT,
    PAGE_TIMEOUT,
    PROGRESS_INTERVAL,
)
from bdbinspect.fields.dictionary import FieldDictionary
from bdbinspect.fields.parser import parse_detail_hex, parse_summary_hex
from bdbinspect.log import get_logger

log = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]   # (scanned, found)


@dataclass
class PageResult:
    page: int
    page_size: int
    records: list[RawRecord] = field(default_factory=list)
    timed_out: bool = False
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.timed_out or self.cancelled


@dataclass
class ClassPageResult:
    """Decoded records for one page plus the union of their field names.

    ``total_matching`` is authoritative only when ``total_exact`` is set: a
    class scan cut short by timeout or cancellation has only counted the
    matches it reached.
    """
    class_name: Optional[str]
    page: int
    page_size: int
    records: list[RecordDetail] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    total_matching: int = 0
    total_exact: bool = True
    scanned: int = 0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.timed_out or self.cancelled

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 1
        return max(1, -(-self.total_matching // self.page_size))

    def to_dict(self) -> dict:
        return {
            "class_name": self.class_name,
            "page": self.page,
            "total_pages": self.total_pages,
            "total_matching": self.total_matching,
            "total_exact": self.total_exact,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
            "columns": self.columns,
            "records": [r.to_dict() for r in self.records],
        }


@dataclass
class ClassScanResult:
    entries: list[ClassIndexEntry] = field(default_factory=list)
    scanned: int = 0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.timed_out or self.cancelled


def _stop_requested(token: Optional[CancelToken]) -> bool:
    return token is not None and token.cancelled


def _interruption(session: DumpSession, complete: bool) -> tuple[bool, bool]:
    """(timed_out, cancelled) for a session; a completed scan is never partial."""
    if complete:
        return False, False
    return session.timed_out, session.cancelled or _stop_requested(session.token)


def _decode(key_hex: str, value_hex: str, dictionary: FieldDictionary) -> RecordDetail:
    detail = parse_detail_hex(value_hex, dictionary)
    detail.oid = oid_from_key_hex(key_hex)
    return detail


def _add_columns(columns: dict[str, None], detail: RecordDetail) -> None:
    for f in detail.fields:
        if f.hash != CLASSNAME_HASH:
            columns.setdefault(f.name, None)


def fetch_page(stream: DumpStream, page: int, page_size: int,
               timeout: Optional[float] = PAGE_TIMEOUT,
               token: Optional[CancelToken] = None) -> PageResult:
    """Return records [page*page_size, (page+1)*page_size) in stream order, undecoded."""
    result = PageResult(page=page, page_size=page_size)
    if page_size <= 0:
        return result
    skip = page * page_size
    complete = False

    with stream.open(timeout=timeout, token=token) as session:
        for index, (key_hex, value_hex) in enumerate(session.pairs()):
            if _stop_requested(token):
                break
            if index < skip:
                continue
            result.records.append(RawRecord(oid=oid_from_key_hex(key_hex), key_hex=key_hex, value_hex=value_hex))
            if len(result.records) >= page_size:
                complete = True
                break
        else:
            complete = not session.interrupted
        result.timed_out, result.cancelled = _interruption(session, complete)

    log.debug("page %d: %d records%s", page, len(result.records), " (partial)" if result.partial else "")
    return result


def fetch_class_page(stream: DumpStream, dictionary: FieldDictionary, class_name: str,
                     page: int, page_size: int,
                     known_total: Optional[int] = None,
                     timeout: Optional[float] = CLASS_SCAN_TIMEOUT,
                     token: Optional[CancelToken] = None,
                     progress: Optional[ProgressCallback] = None) -> ClassPageResult:
    """Return one page of records of ``class_name`` without an index.

    Without ``known_total`` the scan runs to the end of the stream to count
    every match. With it, the scan stops as soon as the page is full or all
    known matches have been seen.
    """
    result = ClassPageResult(class_name=class_name, page=page, page_size=page_size)
    skip = page * page_size
    if page_size <= 0 or (known_total is not None and skip >= known_total):
        result.total_matching = known_total or 0
        return result

    columns: dict[str, None] = {}
    matches = 0
    scanned = 0
    complete = False

    with stream.open(timeout=timeout, token=token) as session:
        for key_hex, value_hex in session.pairs():
            if _stop_requested(token):
                break
            scanned += 1
            if progress is not None and scanned % PROGRESS_INTERVAL == 0:
                progress(scanned, matches)

            if parse_summary_hex(value_hex).class_name != class_name:
                continue
            matches += 1
            if matches > skip and len(result.records) < page_size:
                detail = _decode(key_hex, value_hex, dictionary)
                result.records.append(detail)
                _add_columns(columns, detail)

            if known_total is not None and (len(result.records) >= page_size or matches >= known_total):
                complete = True
                break
        else:
            complete = not session.interrupted
        result.timed_out, result.cancelled = _interruption(session, complete)

    result.columns = list(columns)
    result.scanned = scanned
    if known_total is not None:
        result.total_matching = known_total
    else:
        result.total_matching = matches
        result.total_exact = complete
    log.debug("class %s page %d: %d records, %d matches in %d scanned",
              class_name, page, len(result.records), matches, scanned)
    return result


def fetch_by_keys(stream: DumpStream, dictionary: FieldDictionary, target_keys: Iterable[str],
                  class_name: Optional[str] = None, page: int = 0, page_size: int = 0,
                  known_total: Optional[int] = None,
                  timeout: Optional[float] = KEY_SCAN_TIMEOUT,
                  token: Optional[CancelToken] = None,
                  progress: Optional[ProgressCallback] = None) -> ClassPageResult:
    """Decode only records whose raw key hex is in ``target_keys``.

    Non-matching records are skipped without decompression. Results come
    back in stream order.
    """
    remaining = {k.strip().lower() for k in target_keys}
    result = ClassPageResult(class_name=class_name, page=page, page_size=page_size or len(remaining))
    if not remaining:
        result.total_matching = known_total or 0
        return result

    columns: dict[str, None] = {}
    scanned = 0
    complete = False

    with stream.open(timeout=timeout, token=token) as session:
        for key_hex, value_hex in session.pairs():
            if _stop_requested(token):
                break
            scanned += 1
            if progress is not None and scanned % PROGRESS_INTERVAL == 0:
                progress(scanned, len(result.records))

            key = key_hex.lower()
            if key not in remaining:
                continue
            remaining.discard(key)
            detail = _decode(key_hex, value_hex, dictionary)
            result.records.append(detail)
            _add_columns(columns, detail)
            if not remaining:
                complete = True
                break
        else:
            # Stream ended with keys unseen; the index is stale, not the scan partial
            complete = not session.interrupted
        result.timed_out, result.cancelled = _interruption(session, complete)

    if remaining and complete:
        log.warning("%d indexed keys not found in dump; index may be stale", len(remaining))
    result.columns = list(columns)
    result.scanned = scanned
    result.total_matching = known_total if known_total is not None else len(result.records)
    return result


def scan_class_index(stream: DumpStream,
                     timeout: Optional[float] = KEY_SCAN_TIMEOUT,
                     token: Optional[CancelToken] = None,
                     progress: Optional[ProgressCallback] = None) -> ClassScanResult:
    """Count records per class with one summary pass (no index needed)."""
    counts: dict[str, int] = defaultdict(int)
    sizes: dict[str, int] = defaultdict(int)
    result = ClassScanResult()
    complete = False

    with stream.open(timeout=timeout, token=token) as session:
        for _, value_hex in session.pairs():
            if _stop_requested(token):
                break
            result.scanned += 1
            if progress is not None and result.scanned % PROGRESS_INTERVAL == 0:
                progress(result.scanned, len(counts))
            summary = parse_summary_hex(value_hex)
            counts[summary.class_name] += 1
            sizes[summary.class_name] += summary.decompressed_size
        else:
            complete = not session.interrupted
        result.timed_out, result.cancelled = _interruption(session, complete)

    result.entries = sorted(
        (ClassIndexEntry(name, count, sizes[name] // count) for name, count in counts.items()),
        key=lambda e: (-e.count, e.class_name),
    )
    return result
