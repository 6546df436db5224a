import pytest

from flightdesk.services.traveler_rules import (
    TravelerValidationError,
    applicable_fields,
    apply_details,
    build_roster,
    rules_for,
    validate_traveler,
)

PAX_RULES = {
    "leadPax": {
        "firstName": {"isMandatoryIfVisible": True, "isVisible": True},
        "email": {"isMandatoryIfVisible": True, "isVisible": True},
        "passportNumber": {"isMandatoryIfVisible": True, "isVisible": False},
        "isPassportIssueDateRequired": {"isMandatoryIfVisible": True, "isVisible": True},
    },
    "adult": {
        "firstName": {"isMandatoryIfVisible": True, "isVisible": True},
        "email": {"isMandatoryIfVisible": True, "isVisible": True},
    },
    "child": {
        "dateOfBirth": {"isMandatoryIfVisible": True, "isVisible": True},
    },
}


def test_build_roster_orders_types_and_marks_lead():
    roster = build_roster(2, 1, 1)
    assert [t.id for t in roster] == ["1", "2", "3", "4"]
    assert [t.pax_type for t in roster] == ["adult", "adult", "child", "infant"]
    assert [t.is_lead for t in roster] == [True, False, False, False]
    assert [t.details["paxType"] for t in roster] == [1, 1, 2, 3]
    assert not roster[3].seat_eligible


def test_build_roster_never_empty():
    roster = build_roster(0, 0, 0)
    assert len(roster) == 1 and roster[0].is_lead


def test_rules_lookup_by_capability():
    lead, second, child = build_roster(2, 1)
    assert "isPassportIssueDateRequired" in rules_for(lead, PAX_RULES)
    assert "isPassportIssueDateRequired" not in rules_for(second, PAX_RULES)
    assert set(rules_for(child, PAX_RULES)) == {"dateOfBirth"}
    assert rules_for(child, {}) == {}


def test_contact_and_gst_only_for_lead():
    lead, second = build_roster(2)
    assert "email" in applicable_fields(lead)
    assert "gstNumber" in applicable_fields(lead)
    assert "email" not in applicable_fields(second)


def test_validate_traveler_reports_required_visible_fields():
    lead, second = build_roster(2)

    errors = validate_traveler(lead, {}, PAX_RULES)
    assert "First Name is required for adult traveler 1" in errors
    assert "Email is required for adult traveler 1" in errors
    assert "Passport Issue Date is required for adult traveler 1" in errors
    # Invisible fields are never required
    assert not any("Passport Number" in e for e in errors)

    # Non-lead adults never fill contact details even if the rule asks
    assert validate_traveler(second, {"firstName": "Grace"}, PAX_RULES) == []


def test_apply_details_collects_every_problem():
    travelers = build_roster(1, 1)
    with pytest.raises(TravelerValidationError) as exc:
        apply_details(travelers, {"1": {"firstName": "Ada"}, "7": {}}, PAX_RULES)

    errors = exc.value.errors
    assert "Unknown traveler 7" in errors
    assert "Email is required for adult traveler 1" in errors
    assert "Date Of Birth is required for child traveler 2" in errors


def test_apply_details_attaches_details():
    travelers = build_roster(1)
    updated = apply_details(travelers, {"1": {"firstName": "Ada", "lastName": "Lovelace"}}, {})
    assert updated[0].display_name == "Ada Lovelace"
    assert updated[0].details["paxType"] == 1
    assert travelers[0].display_name == "Traveler 1"
