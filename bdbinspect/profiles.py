"""Config profiles for database paths and tool settings."""
from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

import click

from bdbinspect.config import DUMP_COMMAND, PAGE_SIZE, STAT_COMMAND

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

_PROFILE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass
class Profile:
    name: str
    db: Path


@dataclass
class Settings:
    """The ``[tools]`` table: external commands, field dictionary and paging."""
    dump_command: tuple[str, ...] = DUMP_COMMAND
    stat_command: tuple[str, ...] = STAT_COMMAND
    dictionary: Path | None = None
    crc_table: Path | None = None
    page_size: int = PAGE_SIZE


@dataclass
class Config:
    default_profile: str | None = None
    profiles: dict[str, Profile] = field(default_factory=dict)
    settings: Settings = field(default_factory=Settings)


def get_config_path() -> Path:
    """Return the TOML config file path via click.get_app_dir."""
    return Path(click.get_app_dir("bdbinspect")) / "config.toml"


def _command(value, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    if isinstance(value, str):
        return (value,)
    return tuple(str(part) for part in value)


def _parse_settings(tools: dict) -> Settings:
    page_size = int(tools.get("page_size", PAGE_SIZE))
    if page_size <= 0:
        raise click.UsageError(f"Invalid page_size in config: {page_size}")
    return Settings(
        dump_command=_command(tools.get("dump_command"), DUMP_COMMAND),
        stat_command=_command(tools.get("stat_command"), STAT_COMMAND),
        dictionary=Path(tools["dictionary"]) if tools.get("dictionary") else None,
        crc_table=Path(tools["crc_table"]) if tools.get("crc_table") else None,
        page_size=page_size,
    )


def load_config(path: Path | None = None) -> Config:
    """Read TOML config. Returns empty Config if file missing."""
    path = path or get_config_path()
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        data = tomllib.load(f)

    config = Config(
        default_profile=data.get("default_profile"),
        settings=_parse_settings(data.get("tools", {})),
    )
    for name, info in data.get("profiles", {}).items():
        config.profiles[name] = Profile(name=name, db=Path(info["db"]))
    return config


def _literal_list(parts: tuple[str, ...]) -> str:
    return "[" + ", ".join(f"'{p}'" for p in parts) + "]"


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write config to TOML using literal strings for paths."""
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    lines: list[str] = []
    if config.default_profile:
        lines.append(f"default_profile = \"{config.default_profile}\"")
    lines.append("")

    settings = config.settings
    lines.append("[tools]")
    lines.append(f"dump_command = {_literal_list(settings.dump_command)}")
    lines.append(f"stat_command = {_literal_list(settings.stat_command)}")
    if settings.dictionary:
        lines.append(f"dictionary = '{settings.dictionary}'")
    if settings.crc_table:
        lines.append(f"crc_table = '{settings.crc_table}'")
    lines.append(f"page_size = {settings.page_size}")
    lines.append("")

    for name, profile in config.profiles.items():
        lines.append(f"[profiles.{name}]")
        # Use TOML literal strings (single quotes) so backslashes aren't escapes
        lines.append(f"db = '{profile.db}'")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def validate_profile_name(name: str) -> bool:
    """Check that a profile name is a valid TOML bare key."""
    return bool(_PROFILE_NAME_RE.match(name))


def resolve_db(db: Path | None, profile_name: str | None, config: Config | None = None) -> Path:
    """Resolve the database path: --db > --profile > default profile.

    Raises click.UsageError with a helpful message if nothing resolves.
    """
    if db is not None:
        if not db.exists():
            raise click.UsageError(f"Database file not found: {db}")
        return db

    config = config or load_config()

    name = profile_name or config.default_profile
    if name is None:
        raise click.UsageError(
            "No database provided. Either:\n"
            "  1. Run 'bdbi init' to set up a profile\n"
            "  2. Pass --db <path> explicitly\n"
            "  3. Pass --profile <name> to use a named profile"
        )

    profile = config.profiles.get(name)
    if profile is None:
        available = ", ".join(config.profiles) or "(none)"
        raise click.UsageError(
            f"Profile '{name}' not found. Available profiles: {available}"
        )

    if not profile.db.exists():
        raise click.UsageError(
            f"Database file not found for profile '{name}': {profile.db}\n"
            "Run 'bdbi init' to update the path."
        )

    return profile.db
