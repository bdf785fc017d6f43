"""Import results and the error / duplicate CSV reports."""

from __future__ import annotations

import csv
import uuid
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .models import ContactType, ImportMode, RowError, RowOutcome, RowStatus

JobStatus = Literal["completed", "completed_with_errors", "preview"]

_STATUSES: tuple[RowStatus, ...] = (
    "created",
    "updated",
    "filled",
    "unchanged",
    "duplicate",
    "error",
)
_PROCESSED: tuple[RowStatus, ...] = ("created", "updated", "filled", "unchanged")


class ImportResult(BaseModel):
    """Summary of one import job, with one outcome per source row."""

    model_config = ConfigDict(extra="forbid")

    job_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    contact_type: ContactType
    mode: ImportMode
    source_name: str | None = None
    mapping_name: str | None = None
    headers: list[str] = Field(default_factory=list)
    outcomes: list[RowOutcome] = Field(default_factory=list)
    group_id: int | None = None
    tag_id: int | None = None
    started_at: datetime
    completed_at: datetime | None = None
    dry_run: bool = False

    @property
    def total_rows(self) -> int:
        return len(self.outcomes)

    @property
    def status(self) -> JobStatus:
        if self.dry_run:
            return "preview"
        return "completed_with_errors" if self.errors else "completed"

    def counts(self) -> dict[str, int]:
        tally = Counter(outcome.status for outcome in self.outcomes)
        return {status: tally.get(status, 0) for status in _STATUSES}

    @property
    def errors(self) -> list[RowOutcome]:
        return [o for o in self.outcomes if o.status == "error"]

    @property
    def row_errors(self) -> list[RowError]:
        return [RowError(line=o.line, message=o.message or "") for o in self.errors]

    @property
    def duplicates(self) -> list[RowOutcome]:
        return [o for o in self.outcomes if o.status == "duplicate"]

    @property
    def imported_ids(self) -> list[int]:
        """Contacts this job created or matched and processed, in row order, without repeats."""
        seen: dict[int, None] = {}
        for outcome in self.outcomes:
            if outcome.status in _PROCESSED and outcome.contact_id:
                seen.setdefault(outcome.contact_id, None)
        return list(seen)

    def summary(self) -> str:
        counts = self.counts()
        parts = [f"{self.total_rows} row(s)"]
        parts.extend(f"{counts[s]} {s}" for s in _STATUSES if counts[s])
        return ", ".join(parts)

    def write_errors_csv(self, path: str | Path) -> int:
        """Write rows that failed, prefixed with line number and reason. Returns row count."""
        return _write_report(path, self.headers, self.errors, reason_header="Reason")

    def write_duplicates_csv(self, path: str | Path) -> int:
        """Write rows skipped as duplicates, with the matching contact ids."""
        return _write_report(path, self.headers, self.duplicates, reason_header="Duplicate Of")


def _write_report(
    path: str | Path,
    headers: list[str],
    outcomes: list[RowOutcome],
    *,
    reason_header: str,
) -> int:
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(["Line Number", reason_header, *headers])
        for outcome in outcomes:
            if reason_header == "Duplicate Of":
                reason = ", ".join(str(i) for i in outcome.matched_ids)
            else:
                reason = outcome.message or ""
            writer.writerow([outcome.line, reason, *outcome.raw])
    return len(outcomes)
