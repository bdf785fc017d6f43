"""Duplicate matching for contact import.

A dedupe rule is a set of weighted fields plus a threshold. A candidate
contact matches an incoming row when the summed weight of the rule fields
whose values compare equal reaches the threshold. Comparison is trimmed and
case-insensitive, and a blank value never matches anything.

Identity fields take precedence over the rule: ``contact_id`` names exactly
one contact, and ``external_identifier`` is unique per contact.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from .models import FIELDS_BY_NAME, Contact, ContactType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DedupeRule:
    """Weighted field rule used to find duplicates of one contact type."""

    contact_type: ContactType
    fields: Mapping[str, int]
    threshold: int

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("A dedupe rule needs at least one field")
        for name, weight in self.fields.items():
            spec = FIELDS_BY_NAME.get(name)
            if spec is None or spec.kind == "identity":
                raise ValueError(f"Field {name!r} cannot be used in a dedupe rule")
            if self.contact_type not in spec.contact_types:
                raise ValueError(
                    f"Field {name!r} does not apply to {self.contact_type.value} contacts"
                )
            if weight <= 0:
                raise ValueError(f"Weight for {name!r} must be positive, got {weight}")
        if self.threshold <= 0:
            raise ValueError(f"Threshold must be positive, got {self.threshold}")
        if self.threshold > sum(self.fields.values()):
            raise ValueError(
                f"Threshold {self.threshold} can never be reached by the rule's field weights"
            )

    def score(self, values: Mapping[str, Any], contact: Contact) -> int:
        total = 0
        for name, weight in self.fields.items():
            if _same(values.get(name), contact.value(name)):
                total += weight
        return total

    def matches(self, values: Mapping[str, Any], contact: Contact) -> bool:
        if contact.contact_type is not self.contact_type:
            return False
        return self.score(values, contact) >= self.threshold

    def can_match(self, values: Mapping[str, Any]) -> bool:
        """True when the row carries enough rule fields to ever reach the threshold."""
        reachable = sum(w for name, w in self.fields.items() if _clean(values.get(name)))
        return reachable >= self.threshold


DEFAULT_RULES: dict[ContactType, DedupeRule] = {
    ContactType.INDIVIDUAL: DedupeRule(ContactType.INDIVIDUAL, {"email": 10}, 10),
    ContactType.ORGANIZATION: DedupeRule(
        ContactType.ORGANIZATION, {"organization_name": 10, "email": 10}, 10
    ),
    ContactType.HOUSEHOLD: DedupeRule(
        ContactType.HOUSEHOLD, {"household_name": 10, "email": 10}, 10
    ),
}


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def _same(left: Any, right: Any) -> bool:
    a = _clean(left)
    return a is not None and a == _clean(right)


@dataclass
class MatchResult:
    """Outcome of duplicate matching for one row."""

    kind: Literal["none", "identity", "rule"]
    contacts: list[Contact] = field(default_factory=list)
    error: str | None = None

    @property
    def ids(self) -> list[int]:
        return [c.id for c in self.contacts]


def match_identity(
    values: Mapping[str, Any],
    contact_type: ContactType,
    found: Contact | None,
) -> MatchResult:
    """Resolve a row carrying ``contact_id`` or ``external_identifier``.

    *found* is the contact the repository returned for that identity, if any.
    """
    contact_id = values.get("contact_id")
    if found is None:
        if contact_id is not None:
            return MatchResult(
                kind="identity",
                error=f"No contact found with Internal Contact ID {contact_id}",
            )
        return MatchResult(kind="none")
    if found.contact_type is not contact_type:
        return MatchResult(
            kind="identity",
            error=(
                f"Mismatched contact type: contact {found.id} is a "
                f"{found.contact_type.value}, not a {contact_type.value}"
            ),
        )
    external = values.get("external_identifier")
    if (
        contact_id is not None
        and external is not None
        and found.external_identifier is not None
        and not _same(external, found.external_identifier)
    ):
        return MatchResult(
            kind="identity",
            error=(
                f"External Identifier {external!r} does not belong to contact {found.id}"
            ),
        )
    return MatchResult(kind="identity", contacts=[found])


def match_rule(
    rule: DedupeRule,
    values: Mapping[str, Any],
    candidates: Iterable[Contact],
) -> MatchResult:
    """Apply *rule* to *candidates*; result contacts are ordered by id."""
    if not rule.can_match(values):
        return MatchResult(kind="none")
    matched = sorted(
        (c for c in candidates if rule.matches(values, c)),
        key=lambda c: c.id,
    )
    if not matched:
        return MatchResult(kind="none")
    if len(matched) > 1:
        logger.debug("Row matched %d contacts: %s", len(matched), [c.id for c in matched])
    return MatchResult(kind="rule", contacts=matched)
