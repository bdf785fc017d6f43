"""CSV data source for contact import."""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from .errors import SourceError

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = ","
DEFAULT_ENCODING = "utf-8-sig"


@dataclass
class SourceRow:
    """One data row. ``line`` is the 1-based physical line number in the file."""

    line: int
    cells: list[str]
    error: str | None = None


@dataclass
class CsvSource:
    """Parsed CSV contents: column headers plus data rows."""

    headers: list[str]
    rows: list[SourceRow] = field(default_factory=list)

    def __iter__(self) -> Iterator[SourceRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


def read_csv(
    source: str | Path | TextIO,
    *,
    separator: str = DEFAULT_SEPARATOR,
    has_header: bool = True,
    encoding: str = DEFAULT_ENCODING,
) -> CsvSource:
    """Read a CSV file or stream into a :class:`CsvSource`.

    Blank lines are ignored. Rows shorter than the header are padded with
    empty cells; rows longer than the header are kept but flagged with an
    error so the import reports them instead of guessing.
    """
    if len(separator) != 1:
        raise SourceError(f"Field separator must be a single character, got {separator!r}")

    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            text = path.read_text(encoding=encoding)
        except FileNotFoundError as exc:
            raise SourceError(f"Import file not found: {path}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceError(f"Could not read import file {path}: {exc}") from exc
        stream: TextIO = io.StringIO(text, newline="")
    else:
        stream = source

    reader = csv.reader(stream, delimiter=separator)
    records: list[tuple[int, list[str]]] = []
    try:
        for cells in reader:
            if not any(cell.strip() for cell in cells):
                continue
            records.append((reader.line_num, cells))
    except csv.Error as exc:
        raise SourceError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc

    if not records:
        raise SourceError("Import file contains no rows")

    if has_header:
        _, header_cells = records[0]
        headers = [cell.strip() for cell in header_cells]
        data = records[1:]
    else:
        width = max(len(cells) for _, cells in records)
        headers = [f"column {idx}" for idx in range(1, width + 1)]
        data = records

    rows: list[SourceRow] = []
    for line, cells in data:
        if len(cells) > len(headers):
            rows.append(
                SourceRow(
                    line=line,
                    cells=cells,
                    error=f"Row has {len(cells)} columns but the header has {len(headers)}",
                )
            )
            continue
        padded = cells + [""] * (len(headers) - len(cells))
        rows.append(SourceRow(line=line, cells=padded))

    logger.debug("Read %d data row(s) with %d column(s)", len(rows), len(headers))
    return CsvSource(headers=headers, rows=rows)
