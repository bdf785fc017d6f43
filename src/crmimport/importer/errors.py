"""Exception hierarchy for contact import.

Row-level problems never raise; they are reported as ``error`` row outcomes
(see ``ImportResult.row_errors``).
These exceptions abort a whole import job.
"""

from __future__ import annotations


class ContactImportError(RuntimeError):
    """Base contact import error."""


class SourceError(ContactImportError):
    """Raised when the CSV source cannot be read at all."""


class MappingError(ContactImportError):
    """Raised when a column mapping is invalid for the contact type."""


class RepositoryError(ContactImportError):
    """Raised when persistence fails in a way the import cannot recover from."""
