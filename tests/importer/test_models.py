"""Tests for the field catalogue and contact model."""

from __future__ import annotations

from datetime import date

import pytest

from crmimport.importer.models import (
    DO_NOT_IMPORT,
    FIELDS_BY_NAME,
    LOCATION_FIELDS,
    WRITABLE_FIELDS,
    Contact,
    ContactType,
    ImportMode,
    field_label,
    fields_for,
)

pytestmark = pytest.mark.unit


class TestContactType:
    @pytest.mark.parametrize("raw", ["Individual", "individual", " INDIVIDUAL "])
    def test_parse_is_case_insensitive(self, raw):
        assert ContactType.parse(raw) is ContactType.INDIVIDUAL

    def test_parse_passes_members_through(self):
        assert ContactType.parse(ContactType.HOUSEHOLD) is ContactType.HOUSEHOLD

    def test_parse_unknown_lists_choices(self):
        with pytest.raises(ValueError, match="Individual, Organization, Household"):
            ContactType.parse("Person")


class TestImportMode:
    @pytest.mark.parametrize(
        "raw",
        ["No Duplicate Checking", "no_duplicate_checking", "no-duplicate-checking", "nodupe"],
    )
    def test_parse_no_duplicate_checking_spellings(self, raw):
        assert ImportMode.parse(raw) is ImportMode.NO_DUPLICATE_CHECKING

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("skip", ImportMode.SKIP), ("Update", ImportMode.UPDATE), ("FILL", ImportMode.FILL)],
    )
    def test_parse_named_modes(self, raw, expected):
        assert ImportMode.parse(raw) is expected

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown import mode"):
            ImportMode.parse("merge")

    def test_only_no_duplicate_checking_skips_matching(self):
        assert ImportMode.SKIP.checks_duplicates
        assert ImportMode.UPDATE.checks_duplicates
        assert ImportMode.FILL.checks_duplicates
        assert not ImportMode.NO_DUPLICATE_CHECKING.checks_duplicates


class TestFieldCatalogue:
    def test_identity_fields_apply_to_every_type(self):
        for contact_type in ContactType:
            names = {spec.name for spec in fields_for(contact_type)}
            assert {"contact_id", "external_identifier", "email", "note"} <= names

    def test_type_specific_fields(self):
        individual = {spec.name for spec in fields_for(ContactType.INDIVIDUAL)}
        organization = {spec.name for spec in fields_for(ContactType.ORGANIZATION)}
        household = {spec.name for spec in fields_for(ContactType.HOUSEHOLD)}

        assert "first_name" in individual and "first_name" not in organization
        assert "legal_name" in organization and "legal_name" not in household
        assert "household_name" in household and "household_name" not in individual

    def test_contact_id_is_not_writable(self):
        assert "contact_id" not in WRITABLE_FIELDS
        assert "external_identifier" in WRITABLE_FIELDS

    def test_location_fields(self):
        assert "email" in LOCATION_FIELDS
        assert "state_province" in LOCATION_FIELDS
        assert "first_name" not in LOCATION_FIELDS

    def test_field_label(self):
        assert field_label("supplemental_address_1") == "Additional Address 1"
        assert field_label(DO_NOT_IMPORT) == "Do not import"
        assert field_label("not_a_field") == "not_a_field"

    def test_catalogue_is_keyed_by_name(self):
        assert FIELDS_BY_NAME["contact_id"].kind == "identity"
        assert FIELDS_BY_NAME["phone"].kind == "location"


class TestContact:
    def test_blank_strings_become_none(self):
        contact = Contact(id=1, contact_type=ContactType.INDIVIDUAL, first_name="  ", email="")
        assert contact.first_name is None
        assert contact.email is None

    def test_individual_names(self):
        contact = Contact(
            id=3, contact_type=ContactType.INDIVIDUAL, first_name="Ada", last_name="Lovelace"
        )
        assert contact.display_name == "Ada Lovelace"
        assert contact.sort_name == "Lovelace, Ada"

    def test_individual_falls_back_to_email(self):
        contact = Contact(id=3, contact_type=ContactType.INDIVIDUAL, email="ada@example.org")
        assert contact.display_name == "ada@example.org"
        assert contact.sort_name == "ada@example.org"

    def test_organization_and_household_names(self):
        org = Contact(id=1, contact_type=ContactType.ORGANIZATION, organization_name="Acme")
        home = Contact(id=2, contact_type=ContactType.HOUSEHOLD)
        assert org.display_name == "Acme"
        assert home.display_name == "Contact 2"

    def test_value_reads_fields_and_id(self):
        contact = Contact(
            id=9, contact_type=ContactType.INDIVIDUAL, birth_date=date(1990, 5, 17)
        )
        assert contact.value("contact_id") == 9
        assert contact.value("birth_date") == date(1990, 5, 17)
        assert contact.value("city") is None
