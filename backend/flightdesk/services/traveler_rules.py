"""Traveler roster and per-traveler field rules.

Which fields a traveler must provide depends on a capability, not on position
in a form: the lead adult follows the provider's ``leadPax`` rule set and is the
only traveler who carries contact and GST details.
"""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

PAX_TYPE_CODES = {"adult": 1, "child": 2, "infant": 3}

FIELD_GROUPS: dict[str, list[str]] = {
    "personal": ["title", "firstName", "lastName", "dateOfBirth", "nationality"],
    "passport": ["passportNumber", "passportExpiry", "passportIssueDate"],
    "contact": ["email", "contactNumber", "cellCountryCode"],
    "gst": ["gstNumber", "gstCompanyName", "gstCompanyAddress", "gstCompanyEmail", "gstCompanyContactNumber"],
}

# Groups only collected from the lead traveler
LEAD_ONLY_GROUPS = ("contact", "gst")

# Pseudo-field in the provider rules controlling passportIssueDate
PASSPORT_ISSUE_RULE = "isPassportIssueDateRequired"


class TravelerValidationError(ValueError):
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


@dataclass(frozen=True)
class Traveler:
    id: str
    pax_type: str = "adult"
    is_lead: bool = False
    details: dict = field(default_factory=dict, compare=False)

    @property
    def pax_type_code(self) -> int:
        return PAX_TYPE_CODES.get(self.pax_type, 1)

    @property
    def seat_eligible(self) -> bool:
        return self.pax_type != "infant"

    @property
    def display_name(self) -> str:
        name = " ".join(
            part for part in (self.details.get("firstName"), self.details.get("lastName")) if part
        )
        return name or f"Traveler {self.id}"

    def with_details(self, details: dict) -> "Traveler":
        merged = {**self.details, **details, "paxType": self.pax_type_code}
        return Traveler(id=self.id, pax_type=self.pax_type, is_lead=self.is_lead, details=merged)


def build_roster(adult_count: int, child_count: int = 0, infant_count: int = 0) -> list[Traveler]:
    """Create travelers '1'..'n' ordered adults, children, infants. The first is lead."""
    adult_count = max(adult_count, 0)
    if adult_count + child_count + infant_count == 0:
        adult_count = 1

    pax_types = ["adult"] * adult_count + ["child"] * child_count + ["infant"] * infant_count
    return [
        Traveler(
            id=str(index + 1),
            pax_type=pax_type,
            is_lead=index == 0,
            details={"paxType": PAX_TYPE_CODES[pax_type]},
        )
        for index, pax_type in enumerate(pax_types)
    ]


def rules_for(traveler: Traveler, pax_rules: dict) -> dict[str, dict]:
    """Map the provider's rule set for this traveler to {field: {required, visible}}."""
    if traveler.is_lead and traveler.pax_type == "adult":
        source = pax_rules.get("leadPax")
    else:
        source = pax_rules.get(traveler.pax_type)
    if not source:
        return {}

    rules = {}
    for field_name, rule in source.items():
        if not isinstance(rule, dict):
            continue
        rules[field_name] = {
            "required": bool(rule.get("isMandatoryIfVisible")),
            "visible": bool(rule.get("isVisible")),
        }
    return rules


def applicable_fields(traveler: Traveler) -> list[str]:
    fields = []
    for group, names in FIELD_GROUPS.items():
        if group in LEAD_ONLY_GROUPS and not traveler.is_lead:
            continue
        fields.extend(names)
    return fields


def validate_traveler(traveler: Traveler, details: dict, pax_rules: dict) -> list[str]:
    """Return human-readable errors for missing required fields."""
    rules = rules_for(traveler, pax_rules)
    allowed = set(applicable_fields(traveler))
    errors = []
    label = f"{traveler.pax_type} traveler {traveler.id}"

    for field_name, rule in rules.items():
        if field_name == PASSPORT_ISSUE_RULE:
            if rule["visible"] and rule["required"] and not details.get("passportIssueDate"):
                errors.append(f"Passport Issue Date is required for {label}")
            continue
        # Rules can mention lead-only fields for every pax type; only the lead fills them
        if field_name in FIELD_GROUPS["contact"] + FIELD_GROUPS["gst"] and field_name not in allowed:
            continue
        if rule["required"] and rule["visible"] and not details.get(field_name):
            errors.append(f"{_field_label(field_name)} is required for {label}")
    return errors


def apply_details(
    travelers: list[Traveler],
    details_by_id: dict[str, dict],
    pax_rules: dict,
) -> list[Traveler]:
    """Validate and attach collected details. Raises TravelerValidationError listing every problem."""
    errors = []
    known_ids = {t.id for t in travelers}
    for traveler_id in details_by_id:
        if traveler_id not in known_ids:
            errors.append(f"Unknown traveler {traveler_id}")

    updated = []
    for traveler in travelers:
        details = details_by_id.get(traveler.id) or {}
        errors.extend(validate_traveler(traveler, details, pax_rules))
        updated.append(traveler.with_details(details))

    if errors:
        logger.info(f"Traveler details rejected: {len(errors)} problem(s)")
        raise TravelerValidationError(errors)
    return updated


def _field_label(field_name: str) -> str:
    spaced = "".join(f" {c}" if c.isupper() else c for c in field_name)
    return spaced[:1].upper() + spaced[1:]
