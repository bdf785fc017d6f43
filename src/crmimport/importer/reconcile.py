"""Import-mode reconciliation: decide what one row does to the contact store.

==========================  ==========  ==================  ==============
mode                        no match    one match           many matches
==========================  ==========  ==================  ==============
Skip                        create      duplicate           duplicate
Update                      create      overwrite non-blank error
Fill                        create      write blanks only   error
No Duplicate Checking       create      (not matched)       (not matched)
==========================  ==========  ==================  ==============

Blank incoming cells never clear a stored value in any mode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .dedupe import MatchResult
from .models import WRITABLE_FIELDS, Contact, ContactType, ImportMode
from .validation import missing_required

Action = Literal["create", "update", "duplicate", "unchanged", "error"]


@dataclass
class Decision:
    """The planned effect of one row."""

    action: Action
    target: Contact | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    matched_ids: list[int] = field(default_factory=list)
    message: str | None = None


def plan_changes(mode: ImportMode, values: dict[str, Any], contact: Contact) -> dict[str, Any]:
    """Return the ``{field: new value}`` changes *mode* applies to *contact*.

    Update overwrites every field the row supplies; Fill only writes fields
    that are currently blank on the contact. Values equal to what is stored
    are not reported as changes.
    """
    if mode not in (ImportMode.UPDATE, ImportMode.FILL):
        raise ValueError(f"{mode.value} mode does not modify existing contacts")

    changes: dict[str, Any] = {}
    for name in WRITABLE_FIELDS:
        incoming = values.get(name)
        if incoming is None:
            continue
        current = contact.value(name)
        if mode is ImportMode.FILL and current is not None:
            continue
        if current == incoming:
            continue
        changes[name] = incoming
    return changes


def creation_values(values: dict[str, Any]) -> dict[str, Any]:
    return {name: values[name] for name in WRITABLE_FIELDS if values.get(name) is not None}


def decide(
    mode: ImportMode,
    contact_type: ContactType,
    values: dict[str, Any],
    match: MatchResult | None,
) -> Decision:
    """Decide the action for one validated row.

    *match* is ``None`` when duplicate checking was not performed, which is
    only valid for No Duplicate Checking mode.
    """
    if mode is ImportMode.NO_DUPLICATE_CHECKING:
        if values.get("contact_id") is not None:
            return Decision(
                action="error",
                message="Internal Contact ID cannot be used with No Duplicate Checking",
            )
        return _create(contact_type, values)

    if match is None:
        raise ValueError(f"{mode.value} mode requires a duplicate match result")
    if match.error is not None:
        return Decision(action="error", message=match.error)
    if not match.contacts:
        return _create(contact_type, values)

    if mode is ImportMode.SKIP:
        return Decision(
            action="duplicate",
            matched_ids=match.ids,
            message=f"Duplicate of contact(s) {', '.join(str(i) for i in match.ids)}",
        )

    if len(match.contacts) > 1:
        return Decision(
            action="error",
            matched_ids=match.ids,
            message=(
                "Record matches multiple contacts: "
                f"{', '.join(str(i) for i in match.ids)}"
            ),
        )

    target = match.contacts[0]
    changes = plan_changes(mode, values, target)
    if not changes:
        return Decision(action="unchanged", target=target, matched_ids=match.ids)
    return Decision(action="update", target=target, changes=changes, matched_ids=match.ids)


def _create(contact_type: ContactType, values: dict[str, Any]) -> Decision:
    problem = missing_required(values, contact_type)
    if problem is not None:
        return Decision(action="error", message=problem)
    return Decision(action="create", changes=creation_values(values))
