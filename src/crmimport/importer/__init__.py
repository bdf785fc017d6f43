"""Contact import API: field catalogue, mapping, matching, reconciliation and jobs."""

from __future__ import annotations

from .dedupe import DEFAULT_RULES, DedupeRule, MatchResult
from .engine import ContactImportEngine, ImportRequest
from .errors import ContactImportError, MappingError, RepositoryError, SourceError
from .mapping import FieldMapping, guess_mapping
from .models import (
    DO_NOT_IMPORT,
    FIELDS,
    Contact,
    ContactType,
    FieldSpec,
    ImportMode,
    RowOutcome,
)
from .report import ImportResult
from .repository import (
    ContactRepository,
    DuplicateIdentifierError,
    PostgresContactRepository,
    RowRejectedError,
)
from .source import CsvSource, read_csv
from .validation import DateFormat

__all__ = [
    "DEFAULT_RULES",
    "DO_NOT_IMPORT",
    "FIELDS",
    "Contact",
    "ContactImportEngine",
    "ContactImportError",
    "ContactRepository",
    "ContactType",
    "CsvSource",
    "DateFormat",
    "DedupeRule",
    "DuplicateIdentifierError",
    "FieldMapping",
    "FieldSpec",
    "ImportMode",
    "ImportRequest",
    "ImportResult",
    "MappingError",
    "MatchResult",
    "PostgresContactRepository",
    "RepositoryError",
    "RowOutcome",
    "RowRejectedError",
    "SourceError",
    "guess_mapping",
    "read_csv",
]
