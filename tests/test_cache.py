from __future__ import annotations

import sqlite3
import time

import pytest

from bdbinspect.bdb.oid import format_oid
from bdbinspect.bdb.retrieval import fetch_by_keys, fetch_class_page
from bdbinspect.bdb.stream import DumpStream
from bdbinspect.cache.builder import BuildCancelled, CacheBuilder, build_cache
from bdbinspect.cache.lock import BuildLock, build_in_progress
from bdbinspect.cache.store import CacheStore, delete_cache, get_cache_info
from bdbinspect.config import derive_cache_companions, derive_cache_path
from bdbinspect.errors import CacheBuildError, CacheMissingError


def _rows(db):
    with CacheStore.for_database(db) as store:
        return [r.to_dict() for r in store.record_page(0, 100)]


def test_build_and_query(sample_db, sample_records, dump_command):
    total = build_cache(DumpStream(sample_db, dump_command))
    assert total == 10

    info = get_cache_info(sample_db)
    assert info.exists
    assert info.total_records == 10
    assert info.version == 1
    assert info.build_time.endswith("Z")

    with CacheStore.for_database(sample_db) as store:
        page = store.record_page(1, 4)
        assert [r.rownum for r in page] == [4, 5, 6, 7]
        assert page[0].oid == format_oid(sample_records[4][0])
        assert page[0].class_name == "PlayerCreature"
        assert page[0].field_count == 3

        assert [(e.class_name, e.count) for e in store.class_index()] == [
            ("BuildingObject", 5),
            ("PlayerCreature", 5),
        ]
        rows, count = store.class_record_page("BuildingObject", 1, 3)
        assert count == 5
        assert [r.rownum for r in rows] == [7, 9]
        assert store.find_oid(format_oid(sample_records[3][0])).rownum == 3
        assert store.find_oid(format_oid(0xFFFF)) is None


def test_uncompressed_record_is_indexed(sample_db, sample_records, dump_command):
    build_cache(DumpStream(sample_db, dump_command))
    with CacheStore.for_database(sample_db) as store:
        row = store.record_page(3, 1)[0]
    assert row.compressed_size == row.decompressed_size == len(sample_records[3][1])


def test_rebuild_is_consistent(sample_db, dump_command):
    stream = DumpStream(sample_db, dump_command)
    build_cache(stream)
    first = _rows(sample_db)
    build_cache(stream)
    assert _rows(sample_db) == first


def test_batches_report_progress(sample_db, dump_command):
    calls = []
    build_cache(DumpStream(sample_db, dump_command), progress=calls.append, batch_size=3)
    assert calls == [3, 6, 9]
    assert get_cache_info(sample_db).total_records == 10


def test_indexed_keys_match_class_scan(sample_db, dump_command, dictionary):
    stream = DumpStream(sample_db, dump_command)
    build_cache(stream)
    with CacheStore.for_database(sample_db) as store:
        keys, total = store.class_oid_keys("PlayerCreature", 0, 3)
    indexed = fetch_by_keys(stream, dictionary, keys, class_name="PlayerCreature",
                            page=0, page_size=3, known_total=total)
    scanned = fetch_class_page(stream, dictionary, "PlayerCreature", page=0, page_size=3)
    assert [r.to_dict() for r in indexed.records] == [r.to_dict() for r in scanned.records]
    assert indexed.total_matching == scanned.total_matching == 5


def test_missing_cache(sample_db):
    assert not get_cache_info(sample_db).exists
    with pytest.raises(CacheMissingError):
        CacheStore.for_database(sample_db)


def test_delete_removes_companions(sample_db, dump_command):
    build_cache(DumpStream(sample_db, dump_command))
    assert delete_cache(sample_db) >= 1
    assert not any(p.exists() for p in derive_cache_companions(sample_db))
    assert delete_cache(sample_db) == 0


def test_garbage_cache_file_is_not_usable(sample_db):
    derive_cache_path(sample_db).write_bytes(b"not a database at all" * 100)
    assert not get_cache_info(sample_db).exists


def test_cancel_deletes_partial_index(sample_db, dump_command, monkeypatch):
    monkeypatch.setenv("FAKE_DUMP_STALL_AFTER", "4")
    done, errors = [], []
    builder = CacheBuilder(dump_command, batch_size=2, timeout=30)
    build = builder.start(sample_db, on_done=done.append, on_error=errors.append)
    time.sleep(1.0)
    assert build.cancel()
    with pytest.raises(BuildCancelled):
        build.result(timeout=10)
    assert not any(p.exists() for p in derive_cache_companions(sample_db))
    assert done == [] and errors == []
    assert builder.active(sample_db) is None


def test_timeout_fails_build(sample_db, dump_command, monkeypatch):
    monkeypatch.setenv("FAKE_DUMP_STALL_AFTER", "4")
    errors = []
    build = CacheBuilder(dump_command, timeout=1.5).start(sample_db, on_error=errors.append)
    with pytest.raises(CacheBuildError, match="timed out") as exc:
        build.result(timeout=10)
    assert not isinstance(exc.value, BuildCancelled)
    assert not derive_cache_path(sample_db).exists()
    assert len(errors) == 1


def test_one_build_per_database(sample_db, dump_command, monkeypatch):
    monkeypatch.setenv("FAKE_DUMP_STALL_AFTER", "4")
    builder = CacheBuilder(dump_command, timeout=30)
    first = builder.start(sample_db)
    with pytest.raises(CacheBuildError, match="already running"):
        builder.start(sample_db)
    assert builder.active(sample_db) is first

    first.cancel()
    with pytest.raises(BuildCancelled):
        first.result(timeout=10)

    monkeypatch.delenv("FAKE_DUMP_STALL_AFTER")
    assert builder.start(sample_db).result(timeout=10) == 10


def test_cancel_after_completion_is_refused(sample_db, dump_command):
    build = CacheBuilder(dump_command).start(sample_db)
    assert build.result(timeout=10) == 10
    assert not build.cancel()
    assert get_cache_info(sample_db).exists


def test_separate_builders_share_one_build(sample_db, dump_command, monkeypatch):
    monkeypatch.setenv("FAKE_DUMP_STALL_AFTER", "4")
    first = CacheBuilder(dump_command, timeout=2.0).start(sample_db)
    second = CacheBuilder(dump_command, timeout=30)
    with pytest.raises(CacheBuildError, match="already running"):
        second.start(sample_db)
    assert second.active(sample_db) is None
    assert build_in_progress(sample_db)

    with pytest.raises(CacheBuildError, match="timed out"):
        first.result(timeout=10)
    assert not build_in_progress(sample_db)

    monkeypatch.delenv("FAKE_DUMP_STALL_AFTER")
    assert second.start(sample_db).result(timeout=10) == 10
    assert get_cache_info(sample_db).exists


def test_locked_build_leaves_existing_cache_alone(sample_db, dump_command):
    stream = DumpStream(sample_db, dump_command)
    build_cache(stream)
    before = _rows(sample_db)

    with BuildLock(sample_db):
        with pytest.raises(CacheBuildError, match="already running"):
            build_cache(stream)
        with pytest.raises(CacheBuildError, match="already running"):
            CacheBuilder(dump_command).start(sample_db)

    assert get_cache_info(sample_db).exists
    assert _rows(sample_db) == before
    assert build_cache(stream) == 10


def test_non_integer_total_is_not_usable(sample_db, dump_command):
    build_cache(DumpStream(sample_db, dump_command))
    conn = sqlite3.connect(str(derive_cache_path(sample_db)))
    with conn:
        conn.execute("UPDATE cache_meta SET value = 'n/a' WHERE key = 'total_records'")
    conn.close()
    assert not get_cache_info(sample_db).exists
