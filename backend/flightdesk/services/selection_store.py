"""Selection store — per-traveler seat, baggage and meal choices.

Scoping rules:

* seats and meals are held per traveler per physical leg
* baggage is held per traveler per direction
* a seat code on a leg belongs to at most one traveler

State lives in one immutable ``SelectionSet``; the module-level ``toggle_*``
functions are pure transitions that either return a new set or raise a
``SelectionError``. ``SelectionStore`` wraps the current set for a booking
session and turns those errors into ``ToggleOutcome`` values.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal

from flightdesk.data.currency import quantize_amount
from flightdesk.services.itinerary_model import AncillaryOption, ScopeKey, SeatOption
from flightdesk.services.traveler_rules import Traveler

logger = logging.getLogger(__name__)

SEAT = "seat"
BAGGAGE = "baggage"
MEAL = "meal"


class SelectionError(ValueError):
    code = "selection_error"


class SeatUnavailable(SelectionError):
    code = "seat_unavailable"


class SeatLimitReached(SelectionError):
    code = "seat_limit_reached"


class SeatNotPermitted(SelectionError):
    code = "seat_not_permitted"


class UnknownTraveler(SelectionError):
    code = "unknown_traveler"


class OptionUnavailable(SelectionError):
    code = "option_unavailable"


@dataclass(frozen=True)
class SelectionEntry:
    traveler_id: str
    kind: str  # seat | baggage | meal
    scope: ScopeKey
    code: str
    price: Decimal
    description: str | None = None
    seat_no: str | None = None


@dataclass(frozen=True)
class TravelerSelections:
    seats: tuple[SelectionEntry, ...] = ()
    baggage: tuple[SelectionEntry, ...] = ()
    meals: tuple[SelectionEntry, ...] = ()

    def entries(self) -> tuple[SelectionEntry, ...]:
        return self.seats + self.baggage + self.meals

    def find(self, kind: str, scope: ScopeKey) -> SelectionEntry | None:
        for entry in getattr(self, _FIELD_FOR_KIND[kind]):
            if entry.scope == scope:
                return entry
        return None


_FIELD_FOR_KIND = {SEAT: "seats", BAGGAGE: "baggage", MEAL: "meals"}


@dataclass(frozen=True)
class SelectionSet:
    by_traveler: dict[str, TravelerSelections] = field(default_factory=dict)

    @classmethod
    def empty(cls, travelers: list[Traveler]) -> "SelectionSet":
        return cls(by_traveler={t.id: TravelerSelections() for t in travelers})

    def for_traveler(self, traveler_id: str) -> TravelerSelections:
        return self.by_traveler.get(traveler_id, TravelerSelections())

    def entries(self) -> list[SelectionEntry]:
        return [entry for sel in self.by_traveler.values() for entry in sel.entries()]

    def seat_holder(self, scope: ScopeKey, code: str) -> str | None:
        for traveler_id, sel in self.by_traveler.items():
            for entry in sel.seats:
                if entry.scope == scope and entry.code == code:
                    return traveler_id
        return None

    def seat_holders(self, scope: ScopeKey) -> set[str]:
        return {
            traveler_id
            for traveler_id, sel in self.by_traveler.items()
            if any(entry.scope == scope for entry in sel.seats)
        }

    def is_empty(self) -> bool:
        return not self.entries()

    def _with_entry(self, traveler_id: str, kind: str, scope: ScopeKey, entry: SelectionEntry | None) -> "SelectionSet":
        """Replace (or clear, when entry is None) the traveler's entry for kind/scope."""
        current = self.for_traveler(traveler_id)
        field_name = _FIELD_FOR_KIND[kind]
        kept = tuple(e for e in getattr(current, field_name) if e.scope != scope)
        if entry is not None:
            # One entry per scope, so ordering by scope keeps equal sets equal
            kept = tuple(sorted(kept + (entry,), key=lambda e: e.scope))
        updated = dict(self.by_traveler)
        updated[traveler_id] = replace(current, **{field_name: kept})
        return SelectionSet(by_traveler=updated)


# --- Pure transitions ---


def toggle_seat(
    selection_set: SelectionSet,
    traveler_id: str,
    leg_key: ScopeKey | None,
    seat: SeatOption,
    seat_capacity: int,
    seat_eligible: bool = True,
) -> SelectionSet:
    """Select, switch or clear a traveler's seat on a physical leg.

    Travelers without a seat of their own (infants on a lap) are rejected so
    they never use up the per-leg seat limit.
    """
    _require_traveler(selection_set, traveler_id)
    if not seat_eligible:
        raise SeatNotPermitted(f"Traveler {traveler_id} travels without a seat and cannot select one")
    if leg_key is None:
        raise OptionUnavailable("Seat selection is not available for this flight segment")

    current = selection_set.for_traveler(traveler_id).find(SEAT, leg_key)
    if current is not None and current.code == seat.code:
        return selection_set._with_entry(traveler_id, SEAT, leg_key, None)

    holder = selection_set.seat_holder(leg_key, seat.code)
    if seat.is_booked or (holder is not None and holder != traveler_id):
        raise SeatUnavailable(f"Seat {seat.code} is not available on {leg_key[0]}-{leg_key[1]}")

    if current is None and len(selection_set.seat_holders(leg_key)) >= seat_capacity:
        plural = "s" if seat_capacity > 1 else ""
        raise SeatLimitReached(f"You can only select {seat_capacity} seat{plural} per flight segment")

    entry = SelectionEntry(
        traveler_id=traveler_id,
        kind=SEAT,
        scope=leg_key,
        code=seat.code,
        price=seat.price,
        seat_no=seat.seat_no,
    )
    return selection_set._with_entry(traveler_id, SEAT, leg_key, entry)


def toggle_baggage(
    selection_set: SelectionSet,
    traveler_id: str,
    direction_key: ScopeKey | None,
    option: AncillaryOption,
) -> SelectionSet:
    return _toggle_option(selection_set, traveler_id, BAGGAGE, direction_key, option)


def toggle_meal(
    selection_set: SelectionSet,
    traveler_id: str,
    leg_key: ScopeKey | None,
    option: AncillaryOption,
) -> SelectionSet:
    return _toggle_option(selection_set, traveler_id, MEAL, leg_key, option)


def _toggle_option(selection_set, traveler_id, kind, scope, option) -> SelectionSet:
    _require_traveler(selection_set, traveler_id)
    if scope is None:
        raise OptionUnavailable(f"No {kind} options are available for this flight segment")

    current = selection_set.for_traveler(traveler_id).find(kind, scope)
    if current is not None and current.code == option.code:
        return selection_set._with_entry(traveler_id, kind, scope, None)

    entry = SelectionEntry(
        traveler_id=traveler_id,
        kind=kind,
        scope=scope,
        code=option.code,
        price=option.price,
        description=option.description,
    )
    return selection_set._with_entry(traveler_id, kind, scope, entry)


def _require_traveler(selection_set: SelectionSet, traveler_id: str) -> None:
    if traveler_id not in selection_set.by_traveler:
        raise UnknownTraveler(f"Unknown traveler {traveler_id}")


def total_cost(selection_set: SelectionSet, currency: str) -> Decimal:
    return quantize_amount(sum((e.price for e in selection_set.entries()), Decimal("0")), currency)


def to_ssr(selections: TravelerSelections) -> dict:
    """Denormalize one traveler's selections into the provider ssr payload."""
    return {
        "seat": [
            {
                "origin": e.scope[0],
                "destination": e.scope[1],
                "code": e.code,
                "amt": float(e.price),
                "seat": e.seat_no,
            }
            for e in selections.seats
        ],
        "baggage": [
            {
                "origin": e.scope[0],
                "destination": e.scope[1],
                "code": e.code,
                "amt": float(e.price),
                "dsc": e.description,
            }
            for e in selections.baggage
        ],
        "meal": [
            {
                "origin": e.scope[0],
                "destination": e.scope[1],
                "code": e.code,
                "amt": float(e.price),
                "dsc": e.description,
            }
            for e in selections.meals
        ],
    }


# --- Store ---


@dataclass
class ToggleOutcome:
    accepted: bool
    selected: bool = False  # True when the option is held after the call
    error: SelectionError | None = None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error else None


class SelectionStore:
    """Mutable holder of the current SelectionSet for one booking session."""

    def __init__(self, travelers: list[Traveler], seat_capacity: int | None = None, currency: str = "INR"):
        self.travelers = list(travelers)
        self.seat_capacity = seat_capacity if seat_capacity is not None else (
            sum(1 for t in travelers if t.seat_eligible) or 1
        )
        self.currency = currency
        self._seat_eligible = {t.id: t.seat_eligible for t in self.travelers}
        self._selection_set = SelectionSet.empty(self.travelers)
        self.revision = 0

    @property
    def selection_set(self) -> SelectionSet:
        return self._selection_set

    def toggle_seat(self, traveler_id: str, leg_key: ScopeKey | None, seat: SeatOption) -> ToggleOutcome:
        return self._apply(
            lambda s: toggle_seat(
                s, traveler_id, leg_key, seat, self.seat_capacity, self._seat_eligible.get(traveler_id, True)
            ),
            traveler_id, SEAT, leg_key, seat.code,
        )

    def toggle_baggage(self, traveler_id: str, direction_key: ScopeKey | None, option: AncillaryOption) -> ToggleOutcome:
        return self._apply(
            lambda s: toggle_baggage(s, traveler_id, direction_key, option),
            traveler_id, BAGGAGE, direction_key, option.code,
        )

    def toggle_meal(self, traveler_id: str, leg_key: ScopeKey | None, option: AncillaryOption) -> ToggleOutcome:
        return self._apply(
            lambda s: toggle_meal(s, traveler_id, leg_key, option),
            traveler_id, MEAL, leg_key, option.code,
        )

    def _apply(self, transition, traveler_id, kind, scope, code) -> ToggleOutcome:
        try:
            updated = transition(self._selection_set)
        except SelectionError as e:
            logger.info(f"Rejected {kind} {code} for traveler {traveler_id}: {e}")
            return ToggleOutcome(accepted=False, error=e)

        self._selection_set = updated
        self.revision += 1
        held = updated.for_traveler(traveler_id).find(kind, scope)
        return ToggleOutcome(accepted=True, selected=held is not None and held.code == code)

    def total_cost(self) -> Decimal:
        return total_cost(self._selection_set, self.currency)

    def snapshot(self) -> SelectionSet:
        # SelectionSet is immutable; handing out the current value freezes it
        return self._selection_set

    def to_ssr(self, traveler_id: str) -> dict:
        return to_ssr(self._selection_set.for_traveler(traveler_id))

    def clear(self) -> None:
        if not self._selection_set.is_empty():
            self.revision += 1
        self._selection_set = SelectionSet.empty(self.travelers)
