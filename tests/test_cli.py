from __future__ import annotations

import json

import pytest
from click.testing import CliRunner
from conftest import H_NAME, H_USES

from bdbinspect import cli as cli_module
from bdbinspect.cache.lock import BuildLock
from bdbinspect.cli import cli
from bdbinspect.config import derive_cache_path
from bdbinspect.profiles import Config, Settings


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def settings(dump_command, stat_command, monkeypatch) -> Settings:
    settings = Settings(dump_command=dump_command, stat_command=stat_command, page_size=4)
    monkeypatch.setattr(cli_module, "load_config", lambda: Config(settings=settings))
    return settings


@pytest.fixture
def fields_json(tmp_path):
    path = tmp_path / "fields.json"
    path.write_text(json.dumps({
        f"0x{H_NAME:08X}": ["SceneObject.objectName", "String"],
        f"0x{H_USES:08X}": ["TangibleObject.useCount", "int"],
    }))
    return path


def _run(runner, sample_db, *args):
    return runner.invoke(cli, ["--db", str(sample_db), *args])


def test_stats(runner, sample_db, settings):
    result = _run(runner, sample_db, "stats")
    assert result.exit_code == 0, result.output
    assert "Records:    10" in result.output
    assert "Type:       hash" in result.output
    assert "cache build" in result.output


def test_page_from_dump(runner, sample_db, settings):
    result = _run(runner, sample_db, "page", "--page", "1")
    assert result.exit_code == 0, result.output
    assert "(dump)" in result.output
    assert "0x00010000000003EC" in result.output
    assert "0x00010000000003EF" in result.output
    assert "0x00010000000003F0" not in result.output


def test_page_json(runner, sample_db, settings):
    result = _run(runner, sample_db, "page", "--format", "json")
    assert result.exit_code == 0, result.output
    rows = json.loads(result.output)
    assert [r["rownum"] for r in rows] == [0, 1, 2, 3]
    assert rows[1]["class_name"] == "BuildingObject"


def test_show_record(runner, sample_db, settings, fields_json):
    result = runner.invoke(cli, ["--db", str(sample_db), "--dictionary", str(fields_json), "show", "1"])
    assert result.exit_code == 0, result.output
    assert "Class:  BuildingObject" in result.output
    assert "SceneObject.objectName" in result.output
    assert "= obj1 (String)" in result.output


def test_show_past_end(runner, sample_db, settings):
    result = _run(runner, sample_db, "show", "3", "--page", "2")
    assert result.exit_code == 0, result.output
    assert "No record 3 on page 2" in result.output


def test_find_by_oid(runner, sample_db, settings):
    result = _run(runner, sample_db, "find", "0x00010000000003EA")
    assert result.exit_code == 0, result.output
    assert "Class:  PlayerCreature" in result.output
    result = _run(runner, sample_db, "find", "bogus")
    assert result.exit_code == 2


def test_classes_by_scan(runner, sample_db, settings):
    result = _run(runner, sample_db, "classes")
    assert result.exit_code == 0, result.output
    assert "BuildingObject" in result.output
    assert "PlayerCreature" in result.output


def test_class_csv_without_index(runner, sample_db, settings, fields_json, tmp_path):
    out = tmp_path / "players.csv"
    result = runner.invoke(cli, [
        "--db", str(sample_db), "--dictionary", str(fields_json),
        "class", "PlayerCreature", "--page", "1", "--format", "csv", "-o", str(out),
    ])
    assert result.exit_code == 0, result.output
    lines = out.read_text().splitlines()
    assert lines[0] == "oid,class_name,SceneObject.objectName,TangibleObject.useCount"
    assert lines[1] == "0x00010000000003F0,PlayerCreature,obj8,8"


def test_cache_lifecycle(runner, sample_db, settings, fields_json):
    result = _run(runner, sample_db, "cache", "info")
    assert "No index cache" in result.output

    result = _run(runner, sample_db, "cache", "build")
    assert result.exit_code == 0, result.output
    assert "Indexed 10 records." in result.output
    assert derive_cache_path(sample_db).exists()

    result = _run(runner, sample_db, "cache", "info")
    assert "Records:  10" in result.output

    result = _run(runner, sample_db, "page")
    assert "index, 10 records" in result.output

    result = runner.invoke(cli, [
        "--db", str(sample_db), "--dictionary", str(fields_json),
        "class", "BuildingObject", "--format", "json",
    ])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output[result.output.index("{"):])
    assert data["total_matching"] == 5
    assert [r["fields"][1]["decoded"] for r in data["records"]] == ["obj1", "obj3", "obj5", "obj7"]

    result = _run(runner, sample_db, "cache", "delete")
    assert "Index cache deleted." in result.output
    assert not derive_cache_path(sample_db).exists()


def test_cache_commands_respect_running_build(runner, sample_db, settings):
    result = _run(runner, sample_db, "cache", "build")
    assert result.exit_code == 0, result.output

    with BuildLock(sample_db):
        result = _run(runner, sample_db, "cache", "build")
        assert result.exit_code == 1
        assert "already running" in result.output

        result = _run(runner, sample_db, "cache", "delete")
        assert result.exit_code == 1
        assert "Cancel it first" in result.output

    assert derive_cache_path(sample_db).exists()
    result = _run(runner, sample_db, "cache", "delete")
    assert "Index cache deleted." in result.output

def test_missing_tool_is_one_error_line(runner, sample_db, settings, tmp_path):
    settings.stat_command = (str(tmp_path / "no-such-stat"),)
    result = _run(runner, sample_db, "stats")
    assert result.exit_code == 1
    assert "Error: Failed to run" in result.output
    assert "Berkeley DB" in result.output


def test_no_database(runner, settings):
    result = runner.invoke(cli, ["stats"])
    assert result.exit_code == 2
    assert "bdbi init" in result.output
