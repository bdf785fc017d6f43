"""crmimport configuration loading and validation.

Reads ``crmimport.toml``, parses all sections, and returns a validated
CrmImportConfig dataclass. A missing default config file yields defaults.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from crmimport.importer.dedupe import DEFAULT_RULES, DedupeRule
from crmimport.importer.models import ContactType
from crmimport.importer.source import DEFAULT_ENCODING, DEFAULT_SEPARATOR
from crmimport.importer.validation import UNITED_STATES, DateFormat

DEFAULT_CONFIG_FILENAME = "crmimport.toml"
CONFIG_ENV_VAR = "CRMIMPORT_CONFIG"

# Matches ${VAR_NAME} references (letters, digits and underscores).
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DB_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LOG_FORMATS = ("text", "json")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [crmimport.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: str | None = None


@dataclass
class DbConfig:
    """Database configuration from [crmimport.db] section.

    Connection parameters (host, credentials, sslmode) come from the
    environment; see :class:`crmimport.db.ConnectionSettings`. When *name* is
    unset the database named by the environment is used.
    """

    name: str | None = None
    schema: str | None = None


@dataclass
class ImportDefaults:
    """Default source and parsing options from [crmimport.import]."""

    separator: str = DEFAULT_SEPARATOR
    encoding: str = DEFAULT_ENCODING
    has_header: bool = True
    date_format: DateFormat = DateFormat.ISO
    default_country: str | None = UNITED_STATES


@dataclass
class CrmImportConfig:
    """Parsed and validated configuration."""

    db: DbConfig = field(default_factory=DbConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    defaults: ImportDefaults = field(default_factory=ImportDefaults)
    dedupe_rules: dict[ContactType, DedupeRule] = field(
        default_factory=lambda: dict(DEFAULT_RULES)
    )
    source_path: Path | None = None


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)  # keep placeholder for error reporting
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _parse_db(section: dict) -> DbConfig:
    raw = section.get("db", {})
    if not isinstance(raw, dict):
        raise ConfigError("crmimport.db must be a TOML table")
    name = raw.get("name")
    if name is not None and (not isinstance(name, str) or not name.strip()):
        raise ConfigError("crmimport.db.name must be a non-empty string")
    schema = raw.get("schema")
    if schema is not None:
        if not isinstance(schema, str) or _DB_SCHEMA_PATTERN.fullmatch(schema.strip()) is None:
            raise ConfigError(
                f"Invalid crmimport.db.schema: {schema!r}. Expected a SQL identifier."
            )
        schema = schema.strip()
    return DbConfig(name=name.strip() if name is not None else None, schema=schema)


def _parse_logging(section: dict) -> LoggingConfig:
    raw = section.get("logging", {})
    if not isinstance(raw, dict):
        raise ConfigError("crmimport.logging must be a TOML table")
    level = str(raw.get("level", "INFO")).upper()
    fmt = str(raw.get("format", "text")).lower()
    if fmt not in _LOG_FORMATS:
        raise ConfigError(
            f"Invalid crmimport.logging.format: {fmt!r}. Expected 'text' or 'json'."
        )
    log_file = raw.get("file")
    if log_file is not None and not isinstance(log_file, str):
        raise ConfigError("crmimport.logging.file must be a string when set")
    return LoggingConfig(level=level, format=fmt, file=log_file or None)


def _parse_import_defaults(section: dict) -> ImportDefaults:
    raw = section.get("import", {})
    if not isinstance(raw, dict):
        raise ConfigError("crmimport.import must be a TOML table")

    separator = raw.get("separator", DEFAULT_SEPARATOR)
    if not isinstance(separator, str) or len(separator) != 1:
        raise ConfigError(
            f"Invalid crmimport.import.separator: {separator!r}. Must be one character."
        )

    encoding = raw.get("encoding", DEFAULT_ENCODING)
    if not isinstance(encoding, str) or not encoding.strip():
        raise ConfigError("crmimport.import.encoding must be a non-empty string")

    has_header = raw.get("has_header", True)
    if not isinstance(has_header, bool):
        raise ConfigError("crmimport.import.has_header must be a boolean")

    try:
        date_format = DateFormat.parse(raw.get("date_format", DateFormat.ISO.value))
    except ValueError as exc:
        raise ConfigError(f"Invalid crmimport.import.date_format: {exc}") from exc

    default_country = raw.get("default_country", UNITED_STATES)
    if default_country is not None and not isinstance(default_country, str):
        raise ConfigError("crmimport.import.default_country must be a string when set")

    return ImportDefaults(
        separator=separator,
        encoding=encoding.strip(),
        has_header=has_header,
        date_format=date_format,
        default_country=default_country or None,
    )


def _parse_dedupe_entry(entry: Any, index: int) -> DedupeRule:
    """Parse and validate one ``[[crmimport.dedupe]]`` entry."""
    entry_path = f"crmimport.dedupe[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{entry_path} must be a TOML table")

    try:
        contact_type = ContactType.parse(entry.get("contact_type", ""))
    except ValueError as exc:
        raise ConfigError(f"Invalid {entry_path}.contact_type: {exc}") from exc

    fields = entry.get("fields")
    if not isinstance(fields, dict) or not fields:
        raise ConfigError(f"{entry_path}.fields must be a non-empty table of field = weight")
    for name, weight in fields.items():
        if not isinstance(weight, int) or isinstance(weight, bool):
            raise ConfigError(f"{entry_path}.fields.{name} must be an integer weight")

    threshold = entry.get("threshold")
    if not isinstance(threshold, int) or isinstance(threshold, bool):
        raise ConfigError(f"{entry_path}.threshold must be an integer")

    try:
        return DedupeRule(contact_type, dict(fields), threshold)
    except ValueError as exc:
        raise ConfigError(f"Invalid {entry_path}: {exc}") from exc


def _default_config_path() -> Path | None:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    candidate = Path.cwd() / DEFAULT_CONFIG_FILENAME
    return candidate if candidate.is_file() else None


def load_config(path: Path | None = None) -> CrmImportConfig:
    """Load configuration from *path*, ``$CRMIMPORT_CONFIG`` or ``./crmimport.toml``.

    An explicitly given path (argument or environment variable) must exist.
    When no path is given and no ``crmimport.toml`` is present in the working
    directory, defaults are returned.
    """
    config_path = path if path is not None else _default_config_path()
    if config_path is None:
        return CrmImportConfig()
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "rb") as fh:
            raw = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    section = resolve_env_vars(raw.get("crmimport", {}))
    if not isinstance(section, dict):
        raise ConfigError("[crmimport] must be a TOML table")

    rules = dict(DEFAULT_RULES)
    entries = section.get("dedupe", [])
    if not isinstance(entries, list):
        raise ConfigError("crmimport.dedupe must be an array of tables")
    seen: set[ContactType] = set()
    for index, entry in enumerate(entries):
        rule = _parse_dedupe_entry(entry, index)
        if rule.contact_type in seen:
            raise ConfigError(
                f"Duplicate dedupe rule for contact_type {rule.contact_type.value!r}"
            )
        seen.add(rule.contact_type)
        rules[rule.contact_type] = rule

    return CrmImportConfig(
        db=_parse_db(section),
        logging=_parse_logging(section),
        defaults=_parse_import_defaults(section),
        dedupe_rules=rules,
        source_path=config_path,
    )
