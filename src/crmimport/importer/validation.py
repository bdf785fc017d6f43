"""Row normalisation: turn mapped CSV cells into typed contact values."""

from __future__ import annotations

import enum
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .mapping import FieldMapping
from .models import ContactType

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

GENDER_OPTIONS: tuple[str, ...] = ("Female", "Male", "Transgender")

UNITED_STATES = "United States"

_COUNTRY_ALIASES: dict[str, str] = {
    "us": UNITED_STATES,
    "usa": UNITED_STATES,
    "u.s.": UNITED_STATES,
    "u.s.a.": UNITED_STATES,
    "united states": UNITED_STATES,
    "united states of america": UNITED_STATES,
    "ca": "Canada",
    "canada": "Canada",
    "gb": "United Kingdom",
    "uk": "United Kingdom",
    "great britain": "United Kingdom",
    "united kingdom": "United Kingdom",
    "mx": "Mexico",
    "mexico": "Mexico",
}

US_STATES: dict[str, str] = {
    "AL": "Alabama",
    "AK": "Alaska",
    "AZ": "Arizona",
    "AR": "Arkansas",
    "CA": "California",
    "CO": "Colorado",
    "CT": "Connecticut",
    "DE": "Delaware",
    "DC": "District of Columbia",
    "FL": "Florida",
    "GA": "Georgia",
    "HI": "Hawaii",
    "ID": "Idaho",
    "IL": "Illinois",
    "IN": "Indiana",
    "IA": "Iowa",
    "KS": "Kansas",
    "KY": "Kentucky",
    "LA": "Louisiana",
    "ME": "Maine",
    "MD": "Maryland",
    "MA": "Massachusetts",
    "MI": "Michigan",
    "MN": "Minnesota",
    "MS": "Mississippi",
    "MO": "Missouri",
    "MT": "Montana",
    "NE": "Nebraska",
    "NV": "Nevada",
    "NH": "New Hampshire",
    "NJ": "New Jersey",
    "NM": "New Mexico",
    "NY": "New York",
    "NC": "North Carolina",
    "ND": "North Dakota",
    "OH": "Ohio",
    "OK": "Oklahoma",
    "OR": "Oregon",
    "PA": "Pennsylvania",
    "PR": "Puerto Rico",
    "RI": "Rhode Island",
    "SC": "South Carolina",
    "SD": "South Dakota",
    "TN": "Tennessee",
    "TX": "Texas",
    "UT": "Utah",
    "VT": "Vermont",
    "VA": "Virginia",
    "WA": "Washington",
    "WV": "West Virginia",
    "WI": "Wisconsin",
    "WY": "Wyoming",
}
_US_STATE_BY_NAME = {name.lower(): code for code, name in US_STATES.items()}


class DateFormat(enum.StrEnum):
    """Accepted birth date layouts. The value is the user-facing pattern."""

    ISO = "yyyy-mm-dd"
    COMPACT = "yyyymmdd"
    US = "mm/dd/yyyy"
    US_SHORT = "mm/dd/yy"
    EUROPEAN = "dd/mm/yyyy"
    LONG = "Month dd, yyyy"
    DAY_MONTH_ABBR = "dd-mon-yy"

    @classmethod
    def parse(cls, value: str | DateFormat) -> DateFormat:
        if isinstance(value, DateFormat):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if key in (member.value.lower(), member.name.lower()):
                return member
        choices = ", ".join(repr(m.value) for m in cls)
        raise ValueError(f"Unknown date format {value!r}. Expected one of: {choices}")

    @property
    def strptime_patterns(self) -> tuple[str, ...]:
        return _STRPTIME[self]


_STRPTIME: dict[DateFormat, tuple[str, ...]] = {
    DateFormat.ISO: ("%Y-%m-%d",),
    DateFormat.COMPACT: ("%Y%m%d",),
    DateFormat.US: ("%m/%d/%Y",),
    DateFormat.US_SHORT: ("%m/%d/%y",),
    DateFormat.EUROPEAN: ("%d/%m/%Y",),
    DateFormat.LONG: ("%B %d, %Y", "%b %d, %Y"),
    DateFormat.DAY_MONTH_ABBR: ("%d-%b-%y",),
}


def parse_date(value: str, fmt: DateFormat) -> date:
    for pattern in fmt.strptime_patterns:
        try:
            return datetime.strptime(value, pattern).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date {value!r}; expected format {fmt.value}")


def normalize_country(value: str) -> str:
    return _COUNTRY_ALIASES.get(value.strip().lower(), value.strip())


def normalize_us_state(value: str) -> str | None:
    """Return the USPS code for a state code or name, or None if unknown."""
    stripped = value.strip()
    if stripped.upper() in US_STATES:
        return stripped.upper()
    return _US_STATE_BY_NAME.get(stripped.lower())


@dataclass
class RowValues:
    """Normalised values for one row plus the problems found while normalising."""

    line: int
    values: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def contact_id(self) -> int | None:
        return self.values.get("contact_id")

    @property
    def external_identifier(self) -> str | None:
        return self.values.get("external_identifier")

    @property
    def has_identity(self) -> bool:
        return self.contact_id is not None or self.external_identifier is not None

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _normalize_value(name: str, raw: str, date_format: DateFormat) -> Any:
    if name == "contact_id":
        if not raw.isdigit() or int(raw) <= 0:
            raise ValueError(f"Internal Contact ID must be a positive integer, got {raw!r}")
        return int(raw)
    if name == "email":
        if not _EMAIL_RE.match(raw):
            raise ValueError(f"Invalid email address {raw!r}")
        return raw
    if name == "gender":
        for option in GENDER_OPTIONS:
            if raw.lower() == option.lower():
                return option
        raise ValueError(f"Invalid gender {raw!r}; expected one of: {', '.join(GENDER_OPTIONS)}")
    if name == "birth_date":
        return parse_date(raw, date_format)
    if name == "country":
        return normalize_country(raw)
    return raw


def normalize_row(
    line: int,
    cells: Sequence[str],
    mapping: FieldMapping,
    *,
    date_format: DateFormat = DateFormat.ISO,
    default_country: str | None = UNITED_STATES,
) -> RowValues:
    """Normalise mapped cells into typed values.

    Blank cells are dropped. Each invalid cell adds one error; the remaining
    cells are still normalised so that every problem on the row is reported.
    US state codes are only checked when the row (or *default_country*) is the
    United States.
    """
    row = RowValues(line=line)
    for idx, name in mapping.mapped():
        raw = cells[idx].strip() if idx < len(cells) else ""
        if not raw:
            continue
        try:
            row.values[name] = _normalize_value(name, raw, date_format)
        except ValueError as exc:
            row.errors.append(str(exc))

    state = row.values.get("state_province")
    if state is not None and row.values.get("country", default_country) == UNITED_STATES:
        code = normalize_us_state(state)
        if code is None:
            row.errors.append(f"Invalid state {state!r} for {UNITED_STATES}")
        else:
            row.values["state_province"] = code
    return row


def missing_required(values: dict[str, Any], contact_type: ContactType) -> str | None:
    """Return an error message if *values* cannot create a new contact of this type."""
    if contact_type is ContactType.INDIVIDUAL:
        has_names = values.get("first_name") and values.get("last_name")
        if not has_names and not values.get("email"):
            return "Missing required fields: First Name and Last Name, or Email"
        return None
    if contact_type is ContactType.ORGANIZATION:
        if not values.get("organization_name"):
            return "Missing required field: Organization Name"
        return None
    if not values.get("household_name"):
        return "Missing required field: Household Name"
    return None
