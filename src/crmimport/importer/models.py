"""Contact domain types shared by the import pipeline.

The field catalogue is the single source of truth for what a CSV column may
be mapped to. Each entry carries the machine name used in storage, the human
label shown to users (and matched against CSV headers), the contact types it
applies to, and its kind:

- ``identity``: locates an existing contact directly (never written by Update/Fill)
- ``core``: a column on the contact record itself
- ``location``: part of the contact's primary email/phone/address block
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContactType(enum.StrEnum):
    """Top-level contact type. A contact's type never changes through import."""

    INDIVIDUAL = "Individual"
    ORGANIZATION = "Organization"
    HOUSEHOLD = "Household"

    @classmethod
    def parse(cls, value: str | ContactType) -> ContactType:
        if isinstance(value, ContactType):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if normalized in (member.value.lower(), member.name.lower()):
                return member
        choices = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown contact type {value!r}. Expected one of: {choices}")


class ImportMode(enum.StrEnum):
    """How incoming rows reconcile against existing contacts."""

    SKIP = "Skip"
    UPDATE = "Update"
    FILL = "Fill"
    NO_DUPLICATE_CHECKING = "No Duplicate Checking"

    @classmethod
    def parse(cls, value: str | ImportMode) -> ImportMode:
        if isinstance(value, ImportMode):
            return value
        key = str(value).strip().lower().replace("-", " ").replace("_", " ")
        aliases = {"nodupe": cls.NO_DUPLICATE_CHECKING, "no dupe": cls.NO_DUPLICATE_CHECKING}
        if key in aliases:
            return aliases[key]
        for member in cls:
            if key in (member.value.lower(), member.name.lower().replace("_", " ")):
                return member
        choices = ", ".join(repr(m.value) for m in cls)
        raise ValueError(f"Unknown import mode {value!r}. Expected one of: {choices}")

    @property
    def checks_duplicates(self) -> bool:
        return self is not ImportMode.NO_DUPLICATE_CHECKING


FieldKind = Literal["identity", "core", "location"]

DO_NOT_IMPORT = "do_not_import"

_ALL_TYPES = frozenset(ContactType)


@dataclass(frozen=True)
class FieldSpec:
    """One importable field."""

    name: str
    label: str
    kind: FieldKind = "core"
    contact_types: frozenset[ContactType] = _ALL_TYPES
    aliases: tuple[str, ...] = ()


FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("contact_id", "Internal Contact ID", kind="identity", aliases=("id", "cid")),
    FieldSpec("external_identifier", "External Identifier", kind="identity"),
    FieldSpec(
        "first_name", "First Name", contact_types=frozenset({ContactType.INDIVIDUAL})
    ),
    FieldSpec(
        "middle_name", "Middle Name", contact_types=frozenset({ContactType.INDIVIDUAL})
    ),
    FieldSpec("last_name", "Last Name", contact_types=frozenset({ContactType.INDIVIDUAL})),
    FieldSpec(
        "prefix",
        "Individual Prefix",
        contact_types=frozenset({ContactType.INDIVIDUAL}),
        aliases=("prefix",),
    ),
    FieldSpec(
        "suffix",
        "Individual Suffix",
        contact_types=frozenset({ContactType.INDIVIDUAL}),
        aliases=("suffix",),
    ),
    FieldSpec("gender", "Gender", contact_types=frozenset({ContactType.INDIVIDUAL})),
    FieldSpec(
        "birth_date",
        "Birth Date",
        contact_types=frozenset({ContactType.INDIVIDUAL}),
        aliases=("dob", "date of birth", "birthday"),
    ),
    FieldSpec("job_title", "Job Title", contact_types=frozenset({ContactType.INDIVIDUAL})),
    FieldSpec(
        "organization_name",
        "Organization Name",
        contact_types=frozenset({ContactType.ORGANIZATION}),
    ),
    FieldSpec(
        "legal_name", "Legal Name", contact_types=frozenset({ContactType.ORGANIZATION})
    ),
    FieldSpec("sic_code", "SIC Code", contact_types=frozenset({ContactType.ORGANIZATION})),
    FieldSpec(
        "household_name",
        "Household Name",
        contact_types=frozenset({ContactType.HOUSEHOLD}),
    ),
    FieldSpec("nick_name", "Nick Name", aliases=("nickname",)),
    FieldSpec("note", "Note", aliases=("notes",)),
    FieldSpec("email", "Email", kind="location", aliases=("email address", "e-mail")),
    FieldSpec("phone", "Phone", kind="location", aliases=("phone number", "telephone")),
    FieldSpec("street_address", "Street Address", kind="location", aliases=("address",)),
    FieldSpec(
        "supplemental_address_1",
        "Additional Address 1",
        kind="location",
        aliases=("address_1", "supplemental address 1"),
    ),
    FieldSpec(
        "supplemental_address_2",
        "Additional Address 2",
        kind="location",
        aliases=("address_2", "supplemental address 2"),
    ),
    FieldSpec("city", "City", kind="location"),
    FieldSpec(
        "postal_code", "Postal Code", kind="location", aliases=("zip", "zip code", "postcode")
    ),
    FieldSpec(
        "state_province", "State", kind="location", aliases=("state/province", "province")
    ),
    FieldSpec("country", "Country", kind="location"),
)

FIELDS_BY_NAME: dict[str, FieldSpec] = {spec.name: spec for spec in FIELDS}

# Fields persisted on the contact record or its location block (everything but contact_id).
WRITABLE_FIELDS: tuple[str, ...] = tuple(f.name for f in FIELDS if f.name != "contact_id")
LOCATION_FIELDS: tuple[str, ...] = tuple(f.name for f in FIELDS if f.kind == "location")


def fields_for(contact_type: ContactType) -> tuple[FieldSpec, ...]:
    """Return the field catalogue entries that apply to *contact_type*."""
    return tuple(spec for spec in FIELDS if contact_type in spec.contact_types)


def field_label(name: str) -> str:
    if name == DO_NOT_IMPORT:
        return "Do not import"
    spec = FIELDS_BY_NAME.get(name)
    return spec.label if spec is not None else name


class Contact(BaseModel):
    """A stored contact with its primary location block flattened in."""

    model_config = ConfigDict(extra="forbid")

    id: int
    contact_type: ContactType
    external_identifier: str | None = None

    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    prefix: str | None = None
    suffix: str | None = None
    gender: str | None = None
    birth_date: date | None = None
    job_title: str | None = None

    organization_name: str | None = None
    legal_name: str | None = None
    sic_code: str | None = None

    household_name: str | None = None

    nick_name: str | None = None
    note: str | None = None

    email: str | None = None
    phone: str | None = None
    street_address: str | None = None
    supplemental_address_1: str | None = None
    supplemental_address_2: str | None = None
    city: str | None = None
    postal_code: str | None = None
    state_province: str | None = None
    country: str | None = None

    groups: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def display_name(self) -> str:
        if self.contact_type is ContactType.ORGANIZATION:
            return self.organization_name or self.email or f"Contact {self.id}"
        if self.contact_type is ContactType.HOUSEHOLD:
            return self.household_name or self.email or f"Contact {self.id}"
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email or f"Contact {self.id}"

    @property
    def sort_name(self) -> str:
        if self.contact_type is ContactType.INDIVIDUAL and self.last_name and self.first_name:
            return f"{self.last_name}, {self.first_name}"
        return self.display_name

    def value(self, field: str) -> Any:
        if field == "contact_id":
            return self.id
        return getattr(self, field)


class RowError(BaseModel):
    """A problem that prevents one source row from being imported."""

    model_config = ConfigDict(extra="forbid")

    line: int
    message: str


RowStatus = Literal["created", "updated", "filled", "unchanged", "duplicate", "error"]


class RowOutcome(BaseModel):
    """What happened to one source row."""

    model_config = ConfigDict(extra="forbid")

    line: int
    status: RowStatus
    contact_id: int | None = None
    matched_ids: list[int] = Field(default_factory=list)
    changed_fields: list[str] = Field(default_factory=list)
    message: str | None = None
    raw: list[str] = Field(default_factory=list)
