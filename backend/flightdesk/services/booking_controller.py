"""Booking controller — the workflow that gates when a flight booking may be committed.

    COLLECTING_TRAVELERS -> ANCILLARY_SELECTION -> RECONCILING -> READY_TO_BOOK
        -> BOOKING -> BOOKED | BOOKING_FAILED

The ancillary step is skipped (confirmed empty) when the itinerary offers no
seat, baggage or meal options at all. Booking requires a settled
reconciliation result that belongs to the current selection session and
revision; any accepted toggle after confirmation throws that result away.
"""

import asyncio
import logging
from decimal import Decimal
from enum import Enum

from flightdesk.config import settings
from flightdesk.services.itinerary_model import Itinerary, ScopeKey
from flightdesk.services.provider_client import FlightProviderClient, ProviderError, provider_client
from flightdesk.services.reconciliation import ReconciliationPipeline, ReconciliationResult, ReconciliationState
from flightdesk.services.selection_store import OptionUnavailable, SelectionStore, ToggleOutcome
from flightdesk.services.traveler_rules import Traveler, apply_details, build_roster

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    COLLECTING_TRAVELERS = "collecting_travelers"
    ANCILLARY_SELECTION = "ancillary_selection"
    RECONCILING = "reconciling"
    READY_TO_BOOK = "ready_to_book"
    BOOKING = "booking"
    BOOKED = "booked"
    BOOKING_FAILED = "booking_failed"


# States in which an ancillary toggle is accepted
TOGGLE_STATES = (
    BookingState.ANCILLARY_SELECTION,
    BookingState.RECONCILING,
    BookingState.READY_TO_BOOK,
    BookingState.BOOKING_FAILED,
)


class BookingStateError(ValueError):
    pass


class BookingController:
    def __init__(
        self,
        itinerary: Itinerary,
        provider: str | None = None,
        client: FlightProviderClient | None = None,
        pipeline: ReconciliationPipeline | None = None,
    ):
        self.itinerary = itinerary
        self.provider = provider or settings.default_provider
        self._client = client or provider_client
        self.pipeline = pipeline or ReconciliationPipeline(self.provider, self._client)
        self.travelers: list[Traveler] = build_roster(
            itinerary.adult_count, itinerary.child_count, itinerary.infant_count
        )
        self.state = BookingState.COLLECTING_TRAVELERS
        self.travelers_submitted = False
        self.session_id = 0
        self.store = self._new_store()
        self.ancillaries_confirmed = False
        self.result: ReconciliationResult | None = None
        # Latest provider-confirmed fare and ids; outlive result invalidation
        self.last_known_total: Decimal = itinerary.total_amount
        self.last_trace_id: str | None = itinerary.trace_id
        self.last_itinerary_code: str | None = itinerary.itinerary_code
        self.confirmation: dict | None = None
        self.booking_error: str | None = None
        self.ancillaries_skipped = False

    # --- Traveler step ---

    async def submit_travelers(self, details_by_id: dict[str, dict]) -> BookingState:
        """Validate traveler details, then open (or skip) the ancillary step."""
        self._require(BookingState.COLLECTING_TRAVELERS)
        self.travelers = apply_details(self.travelers, details_by_id, self.itinerary.pax_rules)
        self.travelers_submitted = True
        logger.info(f"{len(self.travelers)} traveler(s) accepted for itinerary {self.itinerary.itinerary_code}")
        return await self._open_ancillaries()

    async def _open_ancillaries(self) -> BookingState:
        self._new_session()
        self.store = self._new_store()
        if self.itinerary.has_any_ancillaries():
            self.ancillaries_skipped = False
            self._set_state(BookingState.ANCILLARY_SELECTION)
            return self.state

        logger.info(f"Itinerary {self.itinerary.itinerary_code} has no ancillaries; skipping selection")
        self.ancillaries_skipped = True
        self._set_state(BookingState.ANCILLARY_SELECTION)
        return await self.confirm_ancillaries()

    # --- Ancillary step ---

    def toggle_seat(self, traveler_id: str, leg_key: ScopeKey, seat_code: str) -> ToggleOutcome:
        self._require(*TOGGLE_STATES)
        located = self.itinerary.locate_leg(tuple(leg_key)) if leg_key else None
        if located is None:
            return _rejected(OptionUnavailable("Seat selection is not available for this flight segment"))
        direction, leg = located
        seat_map = self.itinerary.seat_map_for(direction, leg)
        seat = seat_map.find(seat_code) if seat_map else None
        if seat is None:
            return _rejected(OptionUnavailable(f"Seat {seat_code} is not offered on this flight segment"))
        return self._after_toggle(self.store.toggle_seat(traveler_id, leg.key, seat))

    def toggle_baggage(self, traveler_id: str, direction_index: int, code: str) -> ToggleOutcome:
        self._require(*TOGGLE_STATES)
        direction = self.itinerary.direction(direction_index)
        if direction is None:
            return _rejected(OptionUnavailable(f"Unknown direction {direction_index}"))
        option = _find_option(self.itinerary.baggage_options(direction), code)
        if option is None:
            return _rejected(OptionUnavailable(f"Baggage option {code} is not offered for the {direction.label} flight"))
        return self._after_toggle(self.store.toggle_baggage(traveler_id, direction.key, option))

    def toggle_meal(self, traveler_id: str, leg_key: ScopeKey, code: str) -> ToggleOutcome:
        self._require(*TOGGLE_STATES)
        located = self.itinerary.locate_leg(tuple(leg_key)) if leg_key else None
        if located is None:
            return _rejected(OptionUnavailable("Meal selection is not available for this flight segment"))
        _, leg = located
        option = _find_option(self.itinerary.meal_options(leg), code)
        if option is None:
            return _rejected(OptionUnavailable(f"Meal option {code} is not offered on this flight segment"))
        return self._after_toggle(self.store.toggle_meal(traveler_id, leg.key, option))

    def _after_toggle(self, outcome: ToggleOutcome) -> ToggleOutcome:
        if outcome.accepted and self.state != BookingState.ANCILLARY_SELECTION:
            logger.info(f"Selections changed in state {self.state.value}; reconciliation result invalidated")
            self.ancillaries_confirmed = False
            self.result = None
            self.pipeline.invalidate(self.session_id)
            self._set_state(BookingState.ANCILLARY_SELECTION)
        return outcome

    async def confirm_ancillaries(self) -> BookingState:
        """Freeze the current selections and run allocate -> recheck."""
        self._require(BookingState.ANCILLARY_SELECTION)
        self.ancillaries_confirmed = True
        self._set_state(BookingState.RECONCILING)

        session_id = self.session_id
        revision = self.store.revision
        trace_id, itinerary_code = self.booking_ids()
        result = await self.pipeline.run(
            session_id=session_id,
            travelers=self.allocation_payload(),
            trace_id=trace_id,
            itinerary_code=itinerary_code,
            previous_total=self._fare_total(),
            selection_revision=revision,
        )
        self._apply_result(result)
        return self.state

    def _apply_result(self, result: ReconciliationResult) -> None:
        if result.discarded or result.session_id != self.session_id or result.selection_revision != self.store.revision:
            logger.warning(
                f"Ignoring reconciliation result for session {result.session_id} rev {result.selection_revision}; "
                f"current session {self.session_id} rev {self.store.revision}"
            )
            return
        if self.state != BookingState.RECONCILING:
            return

        self.result = result
        if result.is_settled:
            self.last_trace_id = result.trace_id or self.last_trace_id
            self.last_itinerary_code = result.itinerary_code or self.last_itinerary_code
        if result.status == ReconciliationState.SETTLED_OK and result.total_amount is not None:
            self.last_known_total = result.total_amount
        if result.permits_booking:
            if result.status == ReconciliationState.SETTLED_DEGRADED:
                logger.warning(f"Booking permitted on degraded reconciliation: {result.warning}")
            self._set_state(BookingState.READY_TO_BOOK)
        else:
            # Allocation failed: the ancillary step must be confirmed again
            self.ancillaries_confirmed = False
            self._set_state(BookingState.ANCILLARY_SELECTION)

    def close_ancillaries(self) -> BookingState:
        """Leave the ancillary step, discarding selections and any reconciliation."""
        self._require(*TOGGLE_STATES)
        self._new_session()
        self.store.clear()
        self.ancillaries_confirmed = False
        self.result = None
        self._set_state(BookingState.COLLECTING_TRAVELERS)
        return self.state

    async def reopen_ancillaries(self) -> BookingState:
        self._require(BookingState.COLLECTING_TRAVELERS)
        if not self.travelers_submitted:
            raise BookingStateError("Traveler details must be submitted before selecting ancillaries")
        return await self._open_ancillaries()

    # --- Booking step ---

    @property
    def can_book(self) -> bool:
        if self.state not in (BookingState.READY_TO_BOOK, BookingState.BOOKING_FAILED):
            return False
        if not self.ancillaries_confirmed or self.result is None:
            return False
        return (
            self.result.permits_booking
            and self.result.session_id == self.session_id
            and self.result.selection_revision == self.store.revision
        )

    async def book(self) -> dict | None:
        """Commit the booking. Returns the confirmation, or None when the provider call failed."""
        if not self.can_book:
            raise BookingStateError(f"Booking is not permitted in state {self.state.value}")

        trace_id, itinerary_code = self.booking_ids()
        self._set_state(BookingState.BOOKING)
        self.booking_error = None
        try:
            confirmation = await asyncio.wait_for(
                self._client.book_flight(self.provider, trace_id, itinerary_code),
                timeout=settings.provider_step_timeout_seconds,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            self.booking_error = "Booking timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.error(f"Booking failed for itinerary {itinerary_code}: {self.booking_error}")
            self._set_state(BookingState.BOOKING_FAILED)
            return None

        if not booking_codes(confirmation):
            self.booking_error = "Provider returned no booking reference"
            logger.error(f"Booking for itinerary {itinerary_code} returned no booking codes")
            self._set_state(BookingState.BOOKING_FAILED)
            return None

        self.confirmation = confirmation
        self._set_state(BookingState.BOOKED)
        logger.info(f"Itinerary {itinerary_code} booked: {', '.join(booking_codes(confirmation))}")
        return confirmation

    # --- Single entry point ---

    async def advance(self, action: str, **payload):
        """Dispatch one user action."""
        if action == "submit_travelers":
            return await self.submit_travelers(payload.get("travelers") or {})
        elif action == "toggle_seat":
            return self.toggle_seat(payload["traveler_id"], payload.get("leg_key"), payload["code"])
        elif action == "toggle_baggage":
            return self.toggle_baggage(payload["traveler_id"], int(payload.get("direction_index", 0)), payload["code"])
        elif action == "toggle_meal":
            return self.toggle_meal(payload["traveler_id"], payload.get("leg_key"), payload["code"])
        elif action == "confirm_ancillaries":
            return await self.confirm_ancillaries()
        elif action == "close_ancillaries":
            return self.close_ancillaries()
        elif action == "reopen_ancillaries":
            return await self.reopen_ancillaries()
        elif action == "book":
            return await self.book()
        raise BookingStateError(f"Unknown action: {action}")

    # --- Derived data ---

    def allocation_payload(self) -> list[dict]:
        """Traveler records for allocatePassengers, each with its reconstructed ssr."""
        return [
            {**traveler.details, "isLeadPax": traveler.is_lead, "ssr": self.store.to_ssr(traveler.id)}
            for traveler in self.travelers
        ]

    def price_summary(self) -> dict:
        fare = self._fare_total()
        ancillaries = self.store.total_cost()
        summary = {
            "currency": self.itinerary.currency,
            "fare_total": fare,
            "ancillaries_total": ancillaries,
            "final_total": fare + ancillaries,
            "previous_fare_total": None,
            "price_delta": Decimal("0"),
            "price_change_direction": None,
        }
        if self.result is not None and self.result.is_price_changed:
            summary["previous_fare_total"] = self.result.previous_total_amount
            summary["price_delta"] = self.result.price_delta
            summary["price_change_direction"] = self.result.price_change_direction
        return summary

    def _fare_total(self) -> Decimal:
        if self.result is not None and self.result.total_amount is not None:
            return self.result.total_amount
        return self.last_known_total

    def booking_ids(self) -> tuple[str | None, str | None]:
        if self.result is not None:
            return (
                self.result.trace_id or self.last_trace_id,
                self.result.itinerary_code or self.last_itinerary_code,
            )
        return self.last_trace_id, self.last_itinerary_code

    # --- Internals ---

    def _new_store(self) -> SelectionStore:
        return SelectionStore(self.travelers, self.itinerary.seat_capacity, self.itinerary.currency)

    def _new_session(self) -> None:
        self.session_id += 1
        self.pipeline.invalidate(self.session_id)

    def _require(self, *states: BookingState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise BookingStateError(f"Action not allowed in state {self.state.value} (expected {allowed})")

    def _set_state(self, new_state: BookingState) -> None:
        if new_state != self.state:
            logger.info(f"Booking {self.itinerary.itinerary_code}: {self.state.value} -> {new_state.value}")
        self.state = new_state


def booking_codes(confirmation: dict | None) -> list[str]:
    """All bmsBookingCode values from a bookFlight response, in order."""
    data = (confirmation or {}).get("data") or {}
    details = (data.get("results") or {}).get("details") or []
    return [d["bmsBookingCode"] for d in details if isinstance(d, dict) and d.get("bmsBookingCode")]


def _find_option(options, code: str):
    for option in options:
        if option.code == code:
            return option
    return None


def _rejected(error) -> ToggleOutcome:
    logger.info(f"Rejected toggle: {error}")
    return ToggleOutcome(accepted=False, error=error)
