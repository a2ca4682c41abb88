"""Click CLI for inspecting object database dumps."""
from __future__ import annotations

import concurrent.futures
from pathlib import Path
from typing import Optional

import click

from bdbinspect.errors import BdbInspectError
from bdbinspect.log import configure_logging
from bdbinspect.profiles import (
    Config,
    Profile,
    load_config,
    resolve_db,
    save_config,
    validate_profile_name,
)


class Context:
    """Holds the resolved database path and settings from --db / --profile / config."""

    def __init__(self, db: Path | None = None, profile: str | None = None,
                 dictionary: Path | None = None):
        self._explicit_db = db
        self._profile_name = profile
        self._explicit_dictionary = dictionary
        self._config: Config | None = None
        self._resolved_db: Path | None = None
        self._dictionary = None

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = load_config()
        return self._config

    @property
    def settings(self):
        return self.config.settings

    @property
    def db(self) -> Path:
        if self._resolved_db is None:
            self._resolved_db = resolve_db(self._explicit_db, self._profile_name, self.config)
        return self._resolved_db

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    def stream(self):
        from bdbinspect.bdb.stream import DumpStream
        return DumpStream(self.db, self.settings.dump_command)

    @property
    def dictionary(self):
        from bdbinspect.fields.dictionary import FieldDictionary

        if self._dictionary is None:
            path = self._explicit_dictionary or self.settings.dictionary
            if path is None:
                self._dictionary = FieldDictionary()
            else:
                try:
                    self._dictionary = FieldDictionary.load(path)
                except (OSError, ValueError, KeyError, IndexError) as e:
                    raise click.ClickException(f"Cannot load field dictionary {path}: {e}")
        return self._dictionary

    def reference(self):
        from bdbinspect.reference.annotate import load_reference_data

        extra = [self.settings.crc_table] if self.settings.crc_table else []
        return load_reference_data(self.db, extra)

    def cache_exists(self) -> bool:
        from bdbinspect.cache.store import get_cache_info
        return get_cache_info(self.db).exists


pass_ctx = click.make_pass_decorator(Context)


class BdbGroup(click.Group):
    """Reports library errors as a single message instead of a traceback."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except BdbInspectError as e:
            raise click.ClickException(str(e)) from e


def _scan_progress(scanned: int, found: int) -> None:
    click.echo(f"\r  scanned {scanned:,} records, {found:,} found", nl=False, err=True)


def _report_partial(result, scanned: Optional[int] = None) -> None:
    if not result.partial:
        return
    reason = "cancelled" if result.cancelled else "timed out"
    where = f" after scanning {scanned:,} records" if scanned is not None else ""
    click.echo(f"Warning: scan {reason}{where}; results are partial.", err=True)


def _write_output(data: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(data, encoding="utf-8")
        click.echo(f"Exported to {output}")
    else:
        click.echo(data)


@click.group(cls=BdbGroup)
@click.option(
    "--db", required=False, default=None,
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    help="Path to a Berkeley DB database file (optional if profiles configured)",
)
@click.option(
    "--profile", "-p", default=None, type=str,
    help="Named profile to use (from bdbi init)",
)
@click.option(
    "--dictionary", "-d", default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Field dictionary (.json or tab-separated) overriding the configured one",
)
@click.option(
    "--log-level", default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Diagnostic log level (logs go to stderr)",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.version_option(package_name="bdbinspect")
@click.pass_context
def cli(ctx, db: Optional[Path], profile: Optional[str], dictionary: Optional[Path],
        log_level: str, json_logs: bool):
    """bdbi - object database dump inspector.

    Browse records of a Berkeley DB object database through its dump
    utility: page through raw records, decode individual objects, filter
    by class, and build an SQLite index for fast class lookups.
    """
    configure_logging(log_level, json_logs=json_logs)
    ctx.ensure_object(dict)
    ctx.obj = Context(db=db, profile=profile, dictionary=dictionary)


@cli.command()
def init():
    """Set up config profiles for database paths (interactive)."""
    config = load_config()

    # Show existing profiles
    if config.profiles:
        click.echo("Current profiles:")
        for name, p in config.profiles.items():
            default_marker = " (default)" if name == config.default_profile else ""
            click.echo(f"  {name}: {p.db}{default_marker}")
        click.echo()
        if not click.confirm("Overwrite existing profiles?", default=False):
            click.echo("Aborted.")
            return
        config = Config(settings=config.settings)

    click.echo("Set up bdbi profiles. Each profile stores a path to a database file.\n")

    while True:
        default_name = "default" if not config.profiles else None
        name = click.prompt("Profile name", default=default_name).strip()
        if not validate_profile_name(name):
            click.echo(f"Invalid profile name '{name}'. Use letters, digits, hyphens, underscores.")
            continue

        while True:
            db_str = click.prompt("Path to database file").strip().strip('"').strip("'")
            db_path = Path(db_str)
            if db_path.exists() and db_path.is_file():
                break
            click.echo(f"File not found: {db_path}")

        config.profiles[name] = Profile(name=name, db=db_path)

        if len(config.profiles) == 1:
            config.default_profile = name
        elif click.confirm(f"Set '{name}' as the default profile?", default=False):
            config.default_profile = name

        if not click.confirm("\nAdd another profile?", default=False):
            break
        click.echo()

    dict_str = click.prompt(
        "Field dictionary path (blank for none)",
        default=str(config.settings.dictionary or ""), show_default=False,
    ).strip().strip('"').strip("'")
    config.settings.dictionary = Path(dict_str) if dict_str else None

    if config.default_profile is None and config.profiles:
        config.default_profile = next(iter(config.profiles))

    saved_path = save_config(config)
    click.echo(f"\nConfig saved to {saved_path}\n")

    click.echo("Profiles:")
    for name, p in config.profiles.items():
        default_marker = " (default)" if name == config.default_profile else ""
        click.echo(f"  {name}: {p.db}{default_marker}")

    click.echo("\nExample commands:")
    click.echo("  bdbi stats")
    click.echo("  bdbi cache build")
    click.echo("  bdbi class CreatureObject")
    click.echo("  bdbi --db <path> page   (override profile)")


@cli.command()
@pass_ctx
def stats(ctx: Context):
    """Show record count, access method and page size."""
    from bdbinspect.bdb.stats import get_db_stats
    from bdbinspect.cache.store import get_cache_info
    from bdbinspect.config import STATS_TIMEOUT

    db = ctx.db
    info = get_db_stats(db, ctx.settings.stat_command, timeout=STATS_TIMEOUT)
    click.echo(f"Database:   {db} ({db.stat().st_size / 1024 / 1024:.1f} MB)")
    click.echo(f"Records:    {info.record_count:,}")
    click.echo(f"Type:       {info.db_type}")
    click.echo(f"Page size:  {info.page_size:,}")
    click.echo(f"Byte order: {info.byte_order}")

    cache = get_cache_info(db)
    if cache.exists:
        click.echo(f"Index:      {cache.total_records:,} records, built {cache.build_time}")
    else:
        click.echo("Index:      (none, run 'bdbi cache build')")


def _summaries_from_page(result):
    """Summary rows for a raw page, numbered by stream position."""
    from bdbinspect.cache.models import CachedRecordSummary
    from bdbinspect.fields.parser import parse_summary_hex

    start = result.page * result.page_size
    rows = []
    for i, rec in enumerate(result.records):
        summary = parse_summary_hex(rec.value_hex)
        rows.append(CachedRecordSummary(
            rownum=start + i,
            oid=rec.oid_hex,
            class_name=summary.class_name,
            field_count=summary.field_count,
            compressed_size=summary.compressed_size,
            decompressed_size=summary.decompressed_size,
        ))
    return rows


@cli.command()
@click.option("--page", "page_num", type=click.IntRange(min=0), default=0, help="Page number (0-based)")
@click.option("--format", "fmt", type=click.Choice(["text", "json", "csv"]), default="text")
@click.option("--output", "-o", type=click.Path(), default=None, help="Output file path")
@pass_ctx
def page(ctx: Context, page_num: int, fmt: str, output: Optional[str]):
    """List one page of records in dump order."""
    from bdbinspect.bdb.retrieval import fetch_page
    from bdbinspect.cache.store import CacheStore

    page_size = ctx.page_size
    if ctx.cache_exists():
        with CacheStore.for_database(ctx.db) as store:
            rows = store.record_page(page_num, page_size)
            total = store.info().total_records
        source = f"index, {total:,} records"
    else:
        result = fetch_page(ctx.stream(), page_num, page_size)
        _report_partial(result)
        rows = _summaries_from_page(result)
        source = "dump"

    if fmt == "json":
        from bdbinspect.export.json_export import export_summaries_json
        _write_output(export_summaries_json(rows), output)
        return
    if fmt == "csv":
        from bdbinspect.export.csv_export import export_summaries_csv
        _write_output(export_summaries_csv(rows), output)
        return

    click.echo(f"Page {page_num} ({source})\n")
    if not rows:
        click.echo("No records on this page.")
        return
    click.echo(f"{'#':>8}  {'OID':<18}  {'Class':<32}  {'Fields':>6}  {'Size':>8}  {'Raw':>8}")
    click.echo("-" * 90)
    for row in rows:
        click.echo(
            f"{row.rownum:>8}  {row.oid:<18}  {row.class_name:<32}  {row.field_count:>6}  "
            f"{row.decompressed_size:>8,}  {row.compressed_size:>8,}"
        )


def _echo_detail(detail) -> None:
    click.echo(f"Record {detail.oid_hex}")
    click.echo(f"  Class:  {detail.class_name}")
    click.echo(f"  Size:   {detail.decompressed_size:,} bytes decompressed")
    click.echo(f"  Fields: {len(detail.fields)}\n")
    for f in detail.fields:
        line = f"    {f.name:<40} = {f.decoded} ({f.type})"
        if f.annotation:
            line += f"  -> {f.annotation}"
        click.echo(line)


@cli.command()
@click.argument("index", type=click.IntRange(min=0))
@click.option("--page", "page_num", type=click.IntRange(min=0), default=0, help="Page number (0-based)")
@pass_ctx
def show(ctx: Context, index: int, page_num: int):
    """Decode record INDEX (0-based, within the page) with every field."""
    from bdbinspect.bdb.retrieval import fetch_page
    from bdbinspect.fields.parser import parse_detail_hex
    from bdbinspect.reference.annotate import annotate_record

    page_size = ctx.page_size
    if index >= page_size:
        raise click.UsageError(f"INDEX must be below the page size ({page_size})")

    result = fetch_page(ctx.stream(), page_num, page_size)
    if index >= len(result.records):
        _report_partial(result)
        click.echo(f"No record {index} on page {page_num} ({len(result.records)} records).")
        return

    rec = result.records[index]
    detail = parse_detail_hex(rec.value_hex, ctx.dictionary)
    detail.oid = rec.oid
    _echo_detail(annotate_record(detail, ctx.reference()))


@cli.command()
@click.argument("oid_str")
@pass_ctx
def find(ctx: Context, oid_str: str):
    """Decode the record with object ID OID_STR (hex or decimal)."""
    from bdbinspect.bdb.oid import format_oid, oid_to_dump_key, parse_oid
    from bdbinspect.bdb.retrieval import fetch_by_keys
    from bdbinspect.cache.store import CacheStore
    from bdbinspect.reference.annotate import annotate_record

    try:
        oid = parse_oid(oid_str)
    except ValueError:
        raise click.UsageError(f"Invalid OID: {oid_str}")

    if ctx.cache_exists():
        with CacheStore.for_database(ctx.db) as store:
            row = store.find_oid(format_oid(oid))
        if row is None:
            click.echo(f"Record {format_oid(oid)} is not in the index.")
            return
        click.echo(f"Indexed at #{row.rownum} ({row.class_name}); decoding...", err=True)

    result = fetch_by_keys(ctx.stream(), ctx.dictionary, [oid_to_dump_key(oid)], progress=_scan_progress)
    click.echo("", err=True)
    _report_partial(result, result.scanned)
    if not result.records:
        click.echo(f"Record {format_oid(oid)} not found.")
        return
    _echo_detail(annotate_record(result.records[0], ctx.reference()))


@cli.command()
@click.option("--scan", is_flag=True, help="Count by streaming the dump even if an index exists")
@pass_ctx
def classes(ctx: Context, scan: bool):
    """Show record counts per class."""
    from bdbinspect.bdb.retrieval import scan_class_index
    from bdbinspect.cache.store import CacheStore

    if ctx.cache_exists() and not scan:
        with CacheStore.for_database(ctx.db) as store:
            entries = store.class_index()
    else:
        result = scan_class_index(ctx.stream(), progress=_scan_progress)
        click.echo("", err=True)
        _report_partial(result, result.scanned)
        entries = result.entries

    if not entries:
        click.echo("No records found.")
        return
    click.echo(f"{'Class':<40}  {'Count':>10}  {'Avg size':>10}")
    click.echo("-" * 64)
    for e in entries:
        click.echo(f"{e.class_name:<40}  {e.count:>10,}  {e.avg_size:>10,}")


@cli.command("class")
@click.argument("class_name")
@click.option("--page", "page_num", type=click.IntRange(min=0), default=0, help="Page number (0-based)")
@click.option("--format", "fmt", type=click.Choice(["text", "json", "csv"]), default="text")
@click.option("--output", "-o", type=click.Path(), default=None, help="Output file path")
@pass_ctx
def class_records(ctx: Context, class_name: str, page_num: int, fmt: str, output: Optional[str]):
    """Decode one page of records of CLASS_NAME."""
    from bdbinspect.bdb.retrieval import fetch_by_keys, fetch_class_page
    from bdbinspect.cache.store import CacheStore
    from bdbinspect.reference.annotate import annotate_records

    page_size = ctx.page_size
    if ctx.cache_exists():
        with CacheStore.for_database(ctx.db) as store:
            keys, total = store.class_oid_keys(class_name, page_num, page_size)
        result = fetch_by_keys(
            ctx.stream(), ctx.dictionary, keys,
            class_name=class_name, page=page_num, page_size=page_size,
            known_total=total, progress=_scan_progress,
        )
    else:
        result = fetch_class_page(
            ctx.stream(), ctx.dictionary, class_name, page_num, page_size,
            progress=_scan_progress,
        )
    click.echo("", err=True)
    _report_partial(result, result.scanned)
    annotate_records(result.records, ctx.reference())

    if fmt == "json":
        from bdbinspect.export.json_export import export_class_json
        _write_output(export_class_json(result), output)
        return
    if fmt == "csv":
        from bdbinspect.export.csv_export import export_class_csv
        _write_output(export_class_csv(result), output)
        return

    approx = "" if result.total_exact else "at least "
    click.echo(f"{class_name}: page {page_num + 1}/{result.total_pages}, "
               f"{approx}{result.total_matching:,} records\n")
    if not result.records:
        click.echo("No records on this page.")
        return
    for detail in result.records:
        _echo_detail(detail)
        click.echo()


@cli.group("cache")
def cache_group():
    """Index cache operations."""


@cache_group.command("build")
@pass_ctx
def cache_build(ctx: Context):
    """Build the index cache (Ctrl-C cancels and removes it)."""
    from bdbinspect.cache.builder import CacheBuilder
    from bdbinspect.config import derive_cache_path

    db = ctx.db
    builder = CacheBuilder(ctx.settings.dump_command)
    click.echo(f"Indexing {db} -> {derive_cache_path(db).name}")

    build = builder.start(
        db, progress=lambda n: click.echo(f"\r  {n:,} records", nl=False, err=True),
    )
    try:
        while True:
            try:
                total = build.result(timeout=0.5)
                break
            except concurrent.futures.TimeoutError:
                continue
    except KeyboardInterrupt:
        build.cancel()
        concurrent.futures.wait([build.future])
        click.echo("\nCache build cancelled; partial index removed.", err=True)
        raise SystemExit(130)

    click.echo("", err=True)
    click.echo(f"Indexed {total:,} records.")


@cache_group.command("delete")
@pass_ctx
def cache_delete(ctx: Context):
    """Delete the index cache."""
    from bdbinspect.cache.lock import build_in_progress
    from bdbinspect.cache.store import delete_cache

    if build_in_progress(ctx.db):
        raise click.ClickException(f"A cache build is running for {ctx.db}. Cancel it first.")
    if delete_cache(ctx.db):
        click.echo("Index cache deleted.")
    else:
        click.echo("No index cache to delete.")


@cache_group.command("info")
@pass_ctx
def cache_info(ctx: Context):
    """Show index cache status."""
    from bdbinspect.cache.store import get_cache_info
    from bdbinspect.config import derive_cache_path

    info = get_cache_info(ctx.db)
    if not info.exists:
        click.echo("No index cache. Run 'bdbi cache build' to create one.")
        return
    click.echo(f"Cache:    {derive_cache_path(ctx.db)}")
    click.echo(f"Records:  {info.total_records:,}")
    click.echo(f"Built:    {info.build_time}")
    click.echo(f"Version:  {info.version}")
