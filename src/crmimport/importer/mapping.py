"""Column → field mapping for contact import."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .errors import MappingError
from .models import DO_NOT_IMPORT, FIELDS_BY_NAME, ContactType, FieldSpec, fields_for

logger = logging.getLogger(__name__)

_NORMALIZE_RE = re.compile(r"[\s_\-.]+")


def _normalize_header(value: str) -> str:
    return _NORMALIZE_RE.sub(" ", value.strip().lower()).strip()


def _candidate_keys(spec: FieldSpec) -> set[str]:
    keys = {_normalize_header(spec.name), _normalize_header(spec.label)}
    keys.update(_normalize_header(alias) for alias in spec.aliases)
    return keys


class FieldMapping(BaseModel):
    """Ordered column mapping. ``fields[i]`` is the target of column ``i``."""

    model_config = ConfigDict(extra="forbid")

    contact_type: ContactType
    fields: list[str] = Field(default_factory=list)

    def mapped(self) -> list[tuple[int, str]]:
        """Return ``(column index, field name)`` pairs, skipping unmapped columns."""
        return [(idx, name) for idx, name in enumerate(self.fields) if name != DO_NOT_IMPORT]

    def field_names(self) -> list[str]:
        return [name for _, name in self.mapped()]

    def validate_for(self, column_count: int) -> None:
        """Raise :class:`MappingError` unless the mapping fits the source and contact type."""
        if len(self.fields) != column_count:
            raise MappingError(
                f"Mapping has {len(self.fields)} column(s) but the source has {column_count}"
            )
        allowed = {spec.name for spec in fields_for(self.contact_type)}
        seen: set[str] = set()
        for name in self.field_names():
            if name not in FIELDS_BY_NAME:
                raise MappingError(f"Unknown import field: {name!r}")
            if name not in allowed:
                raise MappingError(
                    f"Field {name!r} cannot be imported for {self.contact_type.value} contacts"
                )
            if name in seen:
                raise MappingError(f"Field {name!r} is mapped to more than one column")
            seen.add(name)
        if not seen:
            raise MappingError("Mapping does not import any field")


def resolve_field_name(value: str, contact_type: ContactType) -> str:
    """Resolve a user-supplied field reference (name, label, or alias)."""
    key = _normalize_header(value)
    if key in ("", _normalize_header(DO_NOT_IMPORT), "do not import", "skip"):
        return DO_NOT_IMPORT
    for spec in fields_for(contact_type):
        if key in _candidate_keys(spec):
            return spec.name
    raise MappingError(f"Unknown import field {value!r} for {contact_type.value} contacts")


def guess_mapping(headers: Sequence[str], contact_type: ContactType) -> FieldMapping:
    """Map each header to a field by name, label, or alias.

    Matching is case-insensitive and ignores spaces, underscores and dashes.
    A field is only assigned to the first column that matches it; later
    columns with the same target fall back to ``do_not_import``.
    """
    lookup: dict[str, str] = {}
    for spec in fields_for(contact_type):
        for key in _candidate_keys(spec):
            lookup.setdefault(key, spec.name)

    used: set[str] = set()
    fields: list[str] = []
    for header in headers:
        name = lookup.get(_normalize_header(header))
        if name is None or name in used:
            fields.append(DO_NOT_IMPORT)
            continue
        used.add(name)
        fields.append(name)

    unmatched = [h for h, f in zip(headers, fields, strict=True) if f == DO_NOT_IMPORT]
    if unmatched:
        logger.info("Columns not mapped to any field: %s", ", ".join(unmatched))
    return FieldMapping(contact_type=contact_type, fields=fields)


def apply_overrides(
    mapping: FieldMapping,
    headers: Sequence[str],
    overrides: Mapping[str, str],
) -> FieldMapping:
    """Return a copy of *mapping* with ``{column header: field}`` overrides applied.

    A column may be referenced by its header text or its 1-based position.
    """
    fields = list(mapping.fields)
    normalized_headers = [_normalize_header(h) for h in headers]
    for column, target in overrides.items():
        key = column.strip()
        if key.isdigit() and 1 <= int(key) <= len(headers):
            idx = int(key) - 1
        else:
            try:
                idx = normalized_headers.index(_normalize_header(key))
            except ValueError as exc:
                raise MappingError(f"No column named {column!r} in the import file") from exc
        fields[idx] = resolve_field_name(target, mapping.contact_type)
    return FieldMapping(contact_type=mapping.contact_type, fields=fields)
