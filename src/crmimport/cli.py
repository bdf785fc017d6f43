"""CLI for crmimport: run contact imports and inspect the results."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn

import asyncpg
import click
from pydantic import ValidationError

from crmimport import __version__
from crmimport.config import ConfigError, CrmImportConfig, load_config
from crmimport.core.logging import configure_logging
from crmimport.db import Database, DatabaseError
from crmimport.importer import (
    ContactImportEngine,
    ContactImportError,
    ContactType,
    DateFormat,
    ImportMode,
    ImportRequest,
    ImportResult,
    PostgresContactRepository,
)
from crmimport.importer.models import LOCATION_FIELDS, field_label, fields_for
from crmimport.migrations import run_migrations

logger = logging.getLogger(__name__)

EXIT_ROW_ERRORS = 1
EXIT_USAGE = 2

# Anything PostgreSQL can raise once a command reaches for the database.
_DATABASE_ERRORS = (DatabaseError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(EXIT_USAGE)


def _parsed(parser: Callable[[str], Any]) -> Callable[[click.Context, click.Parameter, Any], Any]:
    """Build a click callback that converts an option value with *parser*."""

    def _callback(ctx: click.Context, param: click.Parameter, value: Any) -> Any:
        if value is None:
            return None
        try:
            return parser(value)
        except ValueError as exc:
            raise click.BadParameter(str(exc)) from exc

    return _callback


def _parse_overrides(
    ctx: click.Context, param: click.Parameter, value: tuple[str, ...]
) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in value:
        column, sep, field = item.partition("=")
        if not sep or not column.strip() or not field.strip():
            raise click.BadParameter(f"Expected COLUMN=FIELD, got {item!r}")
        overrides[column.strip()] = field.strip()
    return overrides


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to crmimport.toml (default: $CRMIMPORT_CONFIG or ./crmimport.toml)",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """crmimport: import contacts from CSV files with duplicate matching."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        _fail(str(exc))
    log_file = Path(config.logging.file) if config.logging.file else None
    configure_logging(
        level=(log_level or config.logging.level).upper(),
        fmt=config.logging.format,
        log_file=log_file,
    )
    ctx.obj = config


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------


@cli.group()
def db() -> None:
    """Database management."""


@db.command()
@click.pass_obj
def migrate(config: CrmImportConfig) -> None:
    """Create the database if needed and upgrade it to the latest schema."""
    try:
        database = Database.from_env(config.db.name, schema=config.db.schema)
        asyncio.run(database.provision())
        run_migrations(database.sqlalchemy_url(), schema=config.db.schema)
    except _DATABASE_ERRORS as exc:
        _fail(f"Database error: {exc}")
    click.echo(f"Database {database.db_name} is up to date")


# ---------------------------------------------------------------------------
# import
# ---------------------------------------------------------------------------


@cli.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--type",
    "contact_type",
    required=True,
    callback=_parsed(ContactType.parse),
    help="Contact type: Individual, Organization or Household",
)
@click.option(
    "--mode",
    default=ImportMode.SKIP.value,
    show_default=True,
    callback=_parsed(ImportMode.parse),
    help="Skip, Update, Fill or 'No Duplicate Checking'",
)
@click.option("--mapping", "mapping_name", default=None, help="Use a saved field mapping")
@click.option(
    "--map",
    "overrides",
    multiple=True,
    callback=_parse_overrides,
    help="Map one column to a field, e.g. --map Email=email (column by header or 1-based index)",
)
@click.option("--save-mapping", default=None, help="Save the resolved mapping under this name")
@click.option("--group", default=None, help="Add imported contacts to this group")
@click.option("--create-group", is_flag=True, help="Create --group if it does not exist")
@click.option("--tag", default=None, help="Tag imported contacts")
@click.option("--create-tag", is_flag=True, help="Create --tag if it does not exist")
@click.option("--separator", default=None, help="Field separator (default from config: ',')")
@click.option("--encoding", default=None, help="Source encoding (default from config)")
@click.option("--no-header", is_flag=True, help="The first row is data, not column headers")
@click.option(
    "--date-format",
    default=None,
    callback=_parsed(DateFormat.parse),
    help="Date format of date columns, e.g. yyyy-mm-dd or mm/dd/yyyy",
)
@click.option(
    "--default-country",
    default=None,
    help="Country assumed when a row gives none; pass '' to assume none",
)
@click.option(
    "--errors-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write rows that failed to this CSV file",
)
@click.option(
    "--duplicates-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write rows skipped as duplicates to this CSV file",
)
@click.option("--dry-run", is_flag=True, help="Validate rows without writing anything")
@click.pass_obj
def import_cmd(
    config: CrmImportConfig,
    source: Path,
    contact_type: ContactType,
    mode: ImportMode,
    mapping_name: str | None,
    overrides: dict[str, str],
    save_mapping: str | None,
    group: str | None,
    create_group: bool,
    tag: str | None,
    create_tag: bool,
    separator: str | None,
    encoding: str | None,
    no_header: bool,
    date_format: DateFormat | None,
    default_country: str | None,
    errors_out: Path | None,
    duplicates_out: Path | None,
    dry_run: bool,
) -> None:
    """Import contacts from the CSV file SOURCE."""
    defaults = config.defaults
    try:
        request = ImportRequest(
            source=source,
            contact_type=contact_type,
            mode=mode,
            mapping_name=mapping_name,
            column_overrides=overrides,
            save_mapping=save_mapping,
            group=group,
            create_group=create_group,
            tag=tag,
            create_tag=create_tag,
            separator=separator if separator is not None else defaults.separator,
            encoding=encoding or defaults.encoding,
            has_header=defaults.has_header and not no_header,
            date_format=date_format or defaults.date_format,
            default_country=(
                default_country if default_country is not None else defaults.default_country
            ),
        )
    except ValidationError as exc:
        _fail(f"Invalid import options: {exc}")

    try:
        result = asyncio.run(_run_import(config, request, dry_run=dry_run))
    except ContactImportError as exc:
        _fail(str(exc))
    except _DATABASE_ERRORS as exc:
        _fail(f"Database error: {exc}")

    _print_result(result)
    if errors_out is not None:
        count = result.write_errors_csv(errors_out)
        click.echo(f"Wrote {count} error row(s) to {errors_out}")
    if duplicates_out is not None:
        count = result.write_duplicates_csv(duplicates_out)
        click.echo(f"Wrote {count} duplicate row(s) to {duplicates_out}")
    if result.errors:
        sys.exit(EXIT_ROW_ERRORS)


async def _run_import(
    config: CrmImportConfig, request: ImportRequest, *, dry_run: bool
) -> ImportResult:
    """Run or preview *request*; a preview without a saved mapping needs no database."""
    if dry_run and request.mapping_name is None:
        engine = ContactImportEngine(None, rules=config.dedupe_rules)
        return await engine.preview(request)

    async with Database.from_env(config.db.name, schema=config.db.schema) as pool:
        engine = ContactImportEngine(PostgresContactRepository(pool), rules=config.dedupe_rules)
        if dry_run:
            return await engine.preview(request)
        return await engine.run(request)


def _print_result(result: ImportResult) -> None:
    heading = "Preview" if result.dry_run else f"Import job {result.job_id}"
    click.echo(f"{heading}: {result.status}")
    click.echo(f"  {result.contact_type.value} contacts, {result.mode.value} mode")
    for status, count in result.counts().items():
        click.echo(f"  {status + ':':<11}{count}")
    for error in result.row_errors:
        click.echo(f"  line {error.line}: {error.message}")


# ---------------------------------------------------------------------------
# contact
# ---------------------------------------------------------------------------


@cli.group()
def contact() -> None:
    """Inspect stored contacts."""


@contact.command("show")
@click.argument("contact_id", type=int)
@click.pass_obj
def contact_show(config: CrmImportConfig, contact_id: int) -> None:
    """Print the contact with internal id CONTACT_ID."""

    async def _fetch():
        async with Database.from_env(config.db.name, schema=config.db.schema) as pool:
            return await PostgresContactRepository(pool).get(contact_id)

    try:
        found = asyncio.run(_fetch())
    except _DATABASE_ERRORS as exc:
        _fail(f"Database error: {exc}")
    if found is None:
        click.echo(f"No contact with id {contact_id}", err=True)
        sys.exit(1)

    click.echo(f"{found.display_name} ({found.contact_type.value}, id {found.id})")
    for spec in fields_for(found.contact_type):
        if spec.name == "contact_id" or spec.name in LOCATION_FIELDS:
            continue
        value = found.value(spec.name)
        if value is not None:
            click.echo(f"  {spec.label}: {value}")
    location = [name for name in LOCATION_FIELDS if found.value(name) is not None]
    if location:
        click.echo("  Location:")
        for name in location:
            click.echo(f"    {field_label(name)}: {found.value(name)}")
    if found.groups:
        click.echo(f"  Groups: {', '.join(found.groups)}")
    if found.tags:
        click.echo(f"  Tags: {', '.join(found.tags)}")


# ---------------------------------------------------------------------------
# mapping
# ---------------------------------------------------------------------------


@cli.group()
def mapping() -> None:
    """Saved field mappings."""


@mapping.command("list")
@click.option(
    "--type",
    "contact_type",
    default=None,
    callback=_parsed(ContactType.parse),
    help="Only list mappings for this contact type",
)
@click.pass_obj
def mapping_list(config: CrmImportConfig, contact_type: ContactType | None) -> None:
    """List saved field mappings."""

    async def _fetch():
        async with Database.from_env(config.db.name, schema=config.db.schema) as pool:
            return await PostgresContactRepository(pool).list_mappings(contact_type)

    try:
        mappings = asyncio.run(_fetch())
    except _DATABASE_ERRORS as exc:
        _fail(f"Database error: {exc}")
    if not mappings:
        click.echo("No saved mappings")
        return

    click.echo(f"{'Name':<24} {'Type':<14} {'Fields'}")
    click.echo("-" * 80)
    for name, saved in mappings:
        fields = ", ".join(field_label(f) for f in saved.field_names())
        click.echo(f"{name:<24} {saved.contact_type.value:<14} {fields}")
