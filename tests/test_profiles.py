from __future__ import annotations

import click
import pytest

from bdbinspect.config import DUMP_COMMAND
from bdbinspect.profiles import (
    Config,
    Profile,
    Settings,
    load_config,
    resolve_db,
    save_config,
    validate_profile_name,
)


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "config.toml")
    assert config.profiles == {}
    assert config.settings.dump_command == DUMP_COMMAND
    assert config.settings.page_size == 50


def test_round_trip(tmp_path):
    path = tmp_path / "config.toml"
    db = tmp_path / "sceneobjects.db"
    config = Config(
        default_profile="live",
        profiles={"live": Profile("live", db)},
        settings=Settings(
            dump_command=("/opt/bdb/bin/db_dump", "-k"),
            dictionary=tmp_path / "fields.json",
            page_size=25,
        ),
    )
    save_config(config, path)
    loaded = load_config(path)
    assert loaded.default_profile == "live"
    assert loaded.profiles["live"].db == db
    assert loaded.settings.dump_command == ("/opt/bdb/bin/db_dump", "-k")
    assert loaded.settings.dictionary == tmp_path / "fields.json"
    assert loaded.settings.crc_table is None
    assert loaded.settings.page_size == 25


def test_single_string_command(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[tools]\nstat_command = '/usr/local/bin/db_stat'\n")
    assert load_config(path).settings.stat_command == ("/usr/local/bin/db_stat",)


def test_profile_names():
    assert validate_profile_name("live-2")
    assert not validate_profile_name("has space")


def test_resolve_prefers_explicit_db(tmp_path):
    db = tmp_path / "a.db"
    db.write_text("")
    other = tmp_path / "b.db"
    other.write_text("")
    config = Config(default_profile="x", profiles={"x": Profile("x", other)})
    assert resolve_db(db, None, config) == db
    assert resolve_db(None, None, config) == other
    assert resolve_db(None, "x", config) == other


def test_resolve_failures(tmp_path):
    with pytest.raises(click.UsageError, match="bdbi init"):
        resolve_db(None, None, Config())
    with pytest.raises(click.UsageError, match="not found"):
        resolve_db(tmp_path / "missing.db", None, Config())
    config = Config(profiles={"x": Profile("x", tmp_path / "gone.db")})
    with pytest.raises(click.UsageError, match="Available profiles: x"):
        resolve_db(None, "y", config)
