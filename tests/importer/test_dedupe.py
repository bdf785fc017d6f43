"""Tests for dedupe rules and identity matching."""

from __future__ import annotations

import pytest

from crmimport.importer.dedupe import DEFAULT_RULES, DedupeRule, match_identity, match_rule
from crmimport.importer.models import Contact, ContactType

pytestmark = pytest.mark.unit

INDIVIDUAL = ContactType.INDIVIDUAL


def _person(contact_id: int, **values) -> Contact:
    return Contact(id=contact_id, contact_type=INDIVIDUAL, **values)


class TestDedupeRule:
    def test_default_individual_rule_matches_on_email(self):
        rule = DEFAULT_RULES[INDIVIDUAL]
        contact = _person(1, email="Ada@Example.org")
        assert rule.matches({"email": " ada@example.org "}, contact)
        assert not rule.matches({"email": "bob@example.org"}, contact)

    def test_blank_values_never_match(self):
        rule = DEFAULT_RULES[INDIVIDUAL]
        assert not rule.matches({}, _person(1))
        assert not rule.can_match({"email": "  "})

    def test_weighted_threshold(self):
        rule = DedupeRule(INDIVIDUAL, {"first_name": 5, "last_name": 5, "email": 10}, 10)
        contact = _person(1, first_name="Ada", last_name="Lovelace", email="ada@example.org")

        assert rule.score({"first_name": "ada", "last_name": "lovelace"}, contact) == 10
        assert rule.matches({"first_name": "Ada", "last_name": "Lovelace"}, contact)
        assert not rule.matches({"first_name": "Ada", "last_name": "Byron"}, contact)
        assert not rule.can_match({"first_name": "Ada"})

    def test_other_contact_types_never_match(self):
        rule = DEFAULT_RULES[ContactType.ORGANIZATION]
        person = _person(1, email="info@acme.test")
        assert not rule.matches({"email": "info@acme.test"}, person)

    @pytest.mark.parametrize(
        ("fields", "threshold", "message"),
        [
            ({}, 1, "at least one field"),
            ({"contact_id": 10}, 10, "cannot be used"),
            ({"organization_name": 10}, 10, "does not apply to Individual"),
            ({"email": 0}, 1, "must be positive"),
            ({"email": 10}, 0, "Threshold must be positive"),
            ({"email": 10}, 11, "can never be reached"),
        ],
    )
    def test_invalid_rules(self, fields, threshold, message):
        with pytest.raises(ValueError, match=message):
            DedupeRule(INDIVIDUAL, fields, threshold)


class TestMatchRule:
    def test_matches_are_sorted_by_id(self):
        rule = DEFAULT_RULES[INDIVIDUAL]
        candidates = [
            _person(7, email="ada@example.org"),
            _person(3, email="ADA@example.org"),
            _person(5, email="other@example.org"),
        ]
        result = match_rule(rule, {"email": "ada@example.org"}, candidates)
        assert result.kind == "rule"
        assert result.ids == [3, 7]

    def test_no_match(self):
        result = match_rule(DEFAULT_RULES[INDIVIDUAL], {"email": "x@example.org"}, [])
        assert result.kind == "none"
        assert result.contacts == []
        assert result.error is None


class TestMatchIdentity:
    def test_found_contact(self):
        contact = _person(4, external_identifier="EXT-4")
        result = match_identity({"contact_id": 4}, INDIVIDUAL, contact)
        assert result.kind == "identity"
        assert result.ids == [4]

    def test_missing_contact_id(self):
        result = match_identity({"contact_id": 99}, INDIVIDUAL, None)
        assert result.error == "No contact found with Internal Contact ID 99"

    def test_unknown_external_identifier_is_not_an_error(self):
        result = match_identity({"external_identifier": "NEW"}, INDIVIDUAL, None)
        assert result.kind == "none"
        assert result.error is None

    def test_mismatched_type(self):
        org = Contact(id=2, contact_type=ContactType.ORGANIZATION, organization_name="Acme")
        result = match_identity({"contact_id": 2}, INDIVIDUAL, org)
        assert result.error == (
            "Mismatched contact type: contact 2 is a Organization, not a Individual"
        )

    def test_conflicting_external_identifier(self):
        contact = _person(4, external_identifier="EXT-4")
        result = match_identity(
            {"contact_id": 4, "external_identifier": "EXT-5"}, INDIVIDUAL, contact
        )
        assert result.error == "External Identifier 'EXT-5' does not belong to contact 4"

    def test_external_identifier_comparison_ignores_case(self):
        contact = _person(4, external_identifier="EXT-4")
        result = match_identity(
            {"contact_id": 4, "external_identifier": "ext-4"}, INDIVIDUAL, contact
        )
        assert result.error is None
        assert result.ids == [4]
