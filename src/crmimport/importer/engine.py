"""Contact import job orchestration.

One job: read the CSV source, resolve the column mapping, then validate,
match and reconcile each row under the requested import mode. Rows are
independent: a bad row becomes an ``error`` outcome and the job carries on.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crmimport.core.logging import reset_job_context, set_job_context
from crmimport.core.telemetry import IMPORT_SPAN, get_tracer

from .dedupe import DEFAULT_RULES, DedupeRule, MatchResult, match_identity, match_rule
from .errors import ContactImportError, MappingError
from .mapping import FieldMapping, apply_overrides, guess_mapping
from .models import ContactType, ImportMode, RowOutcome
from .reconcile import Decision, decide
from .report import ImportResult
from .repository import ContactRepository, RowRejectedError
from .source import DEFAULT_ENCODING, DEFAULT_SEPARATOR, CsvSource, SourceRow, read_csv
from .validation import UNITED_STATES, DateFormat, missing_required, normalize_row

logger = logging.getLogger(__name__)


class ImportRequest(BaseModel):
    """Everything needed to run one import job."""

    model_config = ConfigDict(extra="forbid")

    source: Path
    contact_type: ContactType
    mode: ImportMode = ImportMode.SKIP
    mapping: FieldMapping | None = None
    mapping_name: str | None = None
    column_overrides: dict[str, str] = Field(default_factory=dict)
    save_mapping: str | None = None
    group: str | None = None
    create_group: bool = False
    tag: str | None = None
    create_tag: bool = False
    separator: str = DEFAULT_SEPARATOR
    has_header: bool = True
    encoding: str = DEFAULT_ENCODING
    date_format: DateFormat = DateFormat.ISO
    default_country: str | None = UNITED_STATES

    @field_validator("contact_type", mode="before")
    @classmethod
    def _parse_contact_type(cls, value: Any) -> ContactType:
        return ContactType.parse(value)

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> ImportMode:
        return ImportMode.parse(value)

    @field_validator("date_format", mode="before")
    @classmethod
    def _parse_date_format(cls, value: Any) -> DateFormat:
        return DateFormat.parse(value)

    @field_validator("mapping_name", "save_mapping", "group", "tag", "default_country")
    @classmethod
    def _normalize_names(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class ContactImportEngine:
    """Runs import jobs against a :class:`ContactRepository`."""

    def __init__(
        self,
        repository: ContactRepository | None,
        *,
        rules: Mapping[ContactType, DedupeRule] | None = None,
    ) -> None:
        self._repository = repository
        self._rules: dict[ContactType, DedupeRule] = dict(DEFAULT_RULES)
        if rules:
            self._rules.update(rules)

    @property
    def repository(self) -> ContactRepository:
        if self._repository is None:
            raise ContactImportError("This operation needs a contact repository")
        return self._repository

    def rule_for(self, contact_type: ContactType) -> DedupeRule:
        return self._rules[contact_type]

    # -- Mapping -----------------------------------------------------------

    async def resolve_mapping(self, request: ImportRequest, source: CsvSource) -> FieldMapping:
        """Pick the mapping: explicit, then saved, then guessed; overrides apply last."""
        if request.mapping is not None:
            mapping = request.mapping
        elif request.mapping_name is not None:
            loaded = await self.repository.load_mapping(request.mapping_name, request.contact_type)
            if loaded is None:
                raise MappingError(
                    f"No saved {request.contact_type.value} mapping named {request.mapping_name!r}"
                )
            mapping = loaded
        else:
            mapping = guess_mapping(source.headers, request.contact_type)

        if mapping.contact_type is not request.contact_type:
            raise MappingError(
                f"Mapping is for {mapping.contact_type.value} contacts, "
                f"not {request.contact_type.value}"
            )
        if request.column_overrides:
            mapping = apply_overrides(mapping, source.headers, request.column_overrides)
        mapping.validate_for(len(source.headers))
        return mapping

    # -- Preview -----------------------------------------------------------

    async def preview(self, request: ImportRequest) -> ImportResult:
        """Validate every row without matching or writing anything.

        Valid rows are reported as ``unchanged``; invalid rows as ``error``.
        """
        started_at = datetime.now(UTC)
        source = self._read(request)
        mapping = await self.resolve_mapping(request, source)
        result = ImportResult(
            contact_type=request.contact_type,
            mode=request.mode,
            source_name=request.source.name,
            mapping_name=request.mapping_name or request.save_mapping,
            headers=source.headers,
            started_at=started_at,
            dry_run=True,
        )
        for row in source:
            problem = self._row_problem(row, mapping, request)
            if problem is not None:
                result.outcomes.append(
                    RowOutcome(line=row.line, status="error", message=problem, raw=row.cells)
                )
            else:
                result.outcomes.append(RowOutcome(line=row.line, status="unchanged", raw=row.cells))
        result.completed_at = datetime.now(UTC)
        logger.info("Preview of %s: %s", request.source.name, result.summary())
        return result

    # -- Run ---------------------------------------------------------------

    async def run(self, request: ImportRequest) -> ImportResult:
        """Run one import job and return its result."""
        repository = self.repository
        started_at = datetime.now(UTC)
        source = self._read(request)
        mapping = await self.resolve_mapping(request, source)

        result = ImportResult(
            contact_type=request.contact_type,
            mode=request.mode,
            source_name=request.source.name,
            mapping_name=request.mapping_name or request.save_mapping,
            headers=source.headers,
            started_at=started_at,
        )
        token = set_job_context(str(result.job_id))
        try:
            with get_tracer().start_as_current_span(IMPORT_SPAN) as span:
                span.set_attribute("crmimport.contact_type", request.contact_type.value)
                span.set_attribute("crmimport.mode", request.mode.value)
                span.set_attribute("crmimport.rows", len(source))

                group_id, tag_id = await self._resolve_group_and_tag(request)
                if request.save_mapping is not None:
                    await repository.save_mapping(request.save_mapping, mapping)

                logger.info(
                    "Importing %d %s row(s) from %s in %s mode",
                    len(source),
                    request.contact_type.value,
                    request.source.name,
                    request.mode.value,
                )
                for row in source:
                    result.outcomes.append(await self._import_row(row, mapping, request))

                imported = result.imported_ids
                if group_id is not None:
                    await repository.add_to_group(group_id, imported)
                    result.group_id = group_id
                if tag_id is not None:
                    await repository.add_tag(tag_id, imported)
                    result.tag_id = tag_id

                result.completed_at = datetime.now(UTC)
                for status, count in result.counts().items():
                    span.set_attribute(f"crmimport.rows.{status}", count)
                await repository.record_job(result)
        finally:
            reset_job_context(token)

        logger.info("Import of %s finished: %s", request.source.name, result.summary())
        return result

    # -- Internals ---------------------------------------------------------

    def _read(self, request: ImportRequest) -> CsvSource:
        return read_csv(
            request.source,
            separator=request.separator,
            has_header=request.has_header,
            encoding=request.encoding,
        )

    def _row_problem(
        self, row: SourceRow, mapping: FieldMapping, request: ImportRequest
    ) -> str | None:
        if row.error is not None:
            return row.error
        values = normalize_row(
            row.line,
            row.cells,
            mapping,
            date_format=request.date_format,
            default_country=request.default_country,
        )
        if values.errors:
            return "; ".join(values.errors)
        if request.mode is ImportMode.NO_DUPLICATE_CHECKING:
            decision = decide(request.mode, request.contact_type, values.values, None)
            return decision.message if decision.action == "error" else None
        # Rows that cannot match anyone will be created, so they need the required fields.
        rule = self._rules[request.contact_type]
        if not values.has_identity and not rule.can_match(values.values):
            return missing_required(values.values, request.contact_type)
        return None

    async def _resolve_group_and_tag(
        self, request: ImportRequest
    ) -> tuple[int | None, int | None]:
        repository = self.repository
        group_id: int | None = None
        tag_id: int | None = None
        if request.group is not None:
            group_id = await repository.find_group(request.group)
            if group_id is None:
                if not request.create_group:
                    raise ContactImportError(f"Group {request.group!r} does not exist")
                group_id = await repository.create_group(request.group)
                logger.info("Created group %r", request.group)
        if request.tag is not None:
            tag_id = await repository.find_tag(request.tag)
            if tag_id is None:
                if not request.create_tag:
                    raise ContactImportError(f"Tag {request.tag!r} does not exist")
                tag_id = await repository.create_tag(request.tag)
                logger.info("Created tag %r", request.tag)
        return group_id, tag_id

    async def _match(self, contact_type: ContactType, values: dict[str, Any]) -> MatchResult:
        repository = self.repository
        contact_id = values.get("contact_id")
        external = values.get("external_identifier")
        found = None
        if contact_id is not None:
            found = await repository.get(contact_id)
        elif external is not None:
            found = await repository.find_by_external_identifier(external)
        if contact_id is not None or found is not None:
            return match_identity(values, contact_type, found)

        rule = self._rules[contact_type]
        if not rule.can_match(values):
            return MatchResult(kind="none")
        candidates = await repository.find_candidates(contact_type, values, rule.fields)
        return match_rule(rule, values, candidates)

    async def _import_row(
        self, row: SourceRow, mapping: FieldMapping, request: ImportRequest
    ) -> RowOutcome:
        if row.error is not None:
            return RowOutcome(line=row.line, status="error", message=row.error, raw=row.cells)

        normalized = normalize_row(
            row.line,
            row.cells,
            mapping,
            date_format=request.date_format,
            default_country=request.default_country,
        )
        if normalized.errors:
            return RowOutcome(
                line=row.line,
                status="error",
                message="; ".join(normalized.errors),
                raw=row.cells,
            )

        match = None
        if request.mode.checks_duplicates:
            match = await self._match(request.contact_type, normalized.values)
        decision = decide(request.mode, request.contact_type, normalized.values, match)

        try:
            return await self._apply(decision, row, request)
        except RowRejectedError as exc:
            return RowOutcome(
                line=row.line,
                status="error",
                message=str(exc),
                matched_ids=decision.matched_ids,
                raw=row.cells,
            )

    async def _apply(
        self, decision: Decision, row: SourceRow, request: ImportRequest
    ) -> RowOutcome:
        repository = self.repository
        if decision.action == "create":
            contact = await repository.create(request.contact_type, decision.changes)
            return RowOutcome(
                line=row.line,
                status="created",
                contact_id=contact.id,
                changed_fields=sorted(decision.changes),
                raw=row.cells,
            )
        if decision.action == "update":
            if decision.target is None:
                raise ContactImportError(
                    f"Line {row.line}: update planned without a matched contact"
                )
            contact = await repository.update(decision.target.id, decision.changes)
            status = "filled" if request.mode is ImportMode.FILL else "updated"
            return RowOutcome(
                line=row.line,
                status=status,
                contact_id=contact.id,
                matched_ids=decision.matched_ids,
                changed_fields=sorted(decision.changes),
                raw=row.cells,
            )
        if decision.action == "unchanged":
            if decision.target is None:
                raise ContactImportError(f"Line {row.line}: no matched contact to leave unchanged")
            return RowOutcome(
                line=row.line,
                status="unchanged",
                contact_id=decision.target.id,
                matched_ids=decision.matched_ids,
                raw=row.cells,
            )
        return RowOutcome(
            line=row.line,
            status=decision.action,
            matched_ids=decision.matched_ids,
            message=decision.message,
            raw=row.cells,
        )
