"""Reconciliation pipeline — allocate travelers with their ancillaries, then recheck the fare.

State machine (strict forward sequence):

    IDLE -> ALLOCATING -> RECHECKING -> SETTLED_OK | SETTLED_DEGRADED
                  \\-> FAILED

An allocate failure stops the run at FAILED. A recheck failure still settles
(SETTLED_DEGRADED) with the last known price so booking stays possible.
Remote failures and timeouts come back as ReconciliationResult values.

Each run is tagged with the caller's selection session id. If the session is
invalidated while a call is in flight, whatever that run produces afterwards
is discarded instead of being applied.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from flightdesk.config import settings
from flightdesk.data.currency import parse_amount
from flightdesk.services.provider_client import FlightProviderClient, ProviderError, provider_client

logger = logging.getLogger(__name__)


class ReconciliationState(str, Enum):
    IDLE = "idle"
    ALLOCATING = "allocating"
    RECHECKING = "rechecking"
    SETTLED_OK = "settled_ok"
    SETTLED_DEGRADED = "settled_degraded"
    FAILED = "failed"


SETTLED_STATES = (ReconciliationState.SETTLED_OK, ReconciliationState.SETTLED_DEGRADED)
RUNNING_STATES = (ReconciliationState.ALLOCATING, ReconciliationState.RECHECKING)

_TRANSITIONS = {
    ReconciliationState.IDLE: {ReconciliationState.ALLOCATING},
    ReconciliationState.ALLOCATING: {ReconciliationState.RECHECKING, ReconciliationState.FAILED},
    ReconciliationState.RECHECKING: set(SETTLED_STATES),
    ReconciliationState.SETTLED_OK: set(),
    ReconciliationState.SETTLED_DEGRADED: set(),
    ReconciliationState.FAILED: set(),
}


class ReconciliationStateError(ValueError):
    pass


@dataclass(frozen=True)
class ReconciliationResult:
    status: ReconciliationState
    session_id: int
    selection_revision: int
    trace_id: str | None = None
    itinerary_code: str | None = None
    total_amount: Decimal | None = None
    previous_total_amount: Decimal | None = None
    is_price_changed: bool = False
    is_baggage_changed: bool = False
    warning: str | None = None
    error: str | None = None
    # Produced by a run whose session was invalidated before it finished
    discarded: bool = False

    @property
    def price_delta(self) -> Decimal:
        if self.total_amount is None or self.previous_total_amount is None:
            return Decimal("0")
        return self.total_amount - self.previous_total_amount

    @property
    def price_change_direction(self) -> str | None:
        delta = self.price_delta
        if delta > 0:
            return "increase"
        if delta < 0:
            return "decrease"
        return None

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATES

    @property
    def permits_booking(self) -> bool:
        return self.is_settled and not self.discarded

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "session_id": self.session_id,
            "selection_revision": self.selection_revision,
            "trace_id": self.trace_id,
            "itinerary_code": self.itinerary_code,
            "total_amount": self.total_amount,
            "previous_total_amount": self.previous_total_amount,
            "price_delta": self.price_delta,
            "price_change_direction": self.price_change_direction,
            "is_price_changed": self.is_price_changed,
            "is_baggage_changed": self.is_baggage_changed,
            "warning": self.warning,
            "error": self.error,
        }


class ReconciliationPipeline:
    """Runs allocate -> recheck for one booking session."""

    def __init__(
        self,
        provider: str | None = None,
        client: FlightProviderClient | None = None,
        step_timeout: float | None = None,
    ):
        self.provider = provider or settings.default_provider
        self._client = client or provider_client
        self._step_timeout = step_timeout or settings.provider_step_timeout_seconds
        self.state = ReconciliationState.IDLE
        self.active_session_id: int | None = None
        self.result: ReconciliationResult | None = None
        # Bumped on every invalidate; a run whose generation is behind is stale
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_STATES

    def invalidate(self, session_id: int | None = None) -> None:
        """Forget the current result and return to IDLE. In-flight runs become stale."""
        if self.state != ReconciliationState.IDLE:
            logger.info(f"Reconciliation {self.state.value} -> idle (invalidated)")
        self.state = ReconciliationState.IDLE
        self.result = None
        self.active_session_id = session_id
        self._generation += 1

    def _transition(self, new_state: ReconciliationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ReconciliationStateError(
                f"Illegal reconciliation transition {self.state.value} -> {new_state.value}"
            )
        logger.info(f"Reconciliation {self.state.value} -> {new_state.value} (session {self.active_session_id})")
        self.state = new_state

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    async def run(
        self,
        session_id: int,
        travelers: list[dict],
        trace_id: str | None,
        itinerary_code: str | None,
        previous_total: Decimal | None,
        selection_revision: int = 0,
    ) -> ReconciliationResult:
        """Allocate ``travelers`` (each carrying its ``ssr``) and recheck the rate."""
        if self.is_running:
            raise ReconciliationStateError(
                f"Reconciliation already {self.state.value} for session {self.active_session_id}"
            )
        # Settled and failed runs are re-entered from IDLE
        self.invalidate(session_id)
        generation = self._generation
        self._transition(ReconciliationState.ALLOCATING)

        base = {"session_id": session_id, "selection_revision": selection_revision}

        try:
            allocated = await asyncio.wait_for(
                self._client.allocate_passengers(self.provider, trace_id, itinerary_code, travelers),
                timeout=self._step_timeout,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            message = _failure_message("Passenger allocation", e)
            result = ReconciliationResult(
                status=ReconciliationState.FAILED,
                trace_id=trace_id,
                itinerary_code=itinerary_code,
                previous_total_amount=previous_total,
                error=message,
                **base,
            )
            if self._is_stale(generation):
                return self._discard(result)
            logger.error(f"Allocation failed for session {session_id}: {message}")
            self._transition(ReconciliationState.FAILED)
            self.result = result
            return result

        if self._is_stale(generation):
            return self._discard(
                ReconciliationResult(status=ReconciliationState.ALLOCATING, trace_id=trace_id,
                                     itinerary_code=itinerary_code, **base)
            )

        trace_id = allocated.get("traceId") or trace_id
        itinerary_code = allocated.get("itineraryCode") or itinerary_code
        self._transition(ReconciliationState.RECHECKING)

        try:
            rechecked = await asyncio.wait_for(
                self._client.recheck_rate(self.provider, trace_id, itinerary_code),
                timeout=self._step_timeout,
            )
            result = self._settled_result(rechecked, trace_id, itinerary_code, previous_total, base)
        except (ProviderError, asyncio.TimeoutError) as e:
            message = _failure_message("Fare recheck", e)
            result = ReconciliationResult(
                status=ReconciliationState.SETTLED_DEGRADED,
                trace_id=trace_id,
                itinerary_code=itinerary_code,
                total_amount=previous_total,
                previous_total_amount=previous_total,
                warning=f"{message}. Proceeding with the last known price.",
                **base,
            )
            if self._is_stale(generation):
                return self._discard(result)
            logger.warning(f"Recheck failed for session {session_id}, settling degraded: {message}")
            self._transition(ReconciliationState.SETTLED_DEGRADED)
            self.result = result
            return result

        if self._is_stale(generation):
            return self._discard(result)
        self._transition(ReconciliationState.SETTLED_OK)
        self.result = result
        if result.is_price_changed or result.is_baggage_changed:
            logger.info(
                f"Recheck for session {session_id}: price changed={result.is_price_changed} "
                f"(delta {result.price_delta}), baggage changed={result.is_baggage_changed}"
            )
        return result

    @staticmethod
    def _settled_result(rechecked: dict, trace_id, itinerary_code, previous_total, base) -> ReconciliationResult:
        reported_total = rechecked.get("totalAmount")
        if reported_total is None:
            total = previous_total
        else:
            try:
                total = parse_amount(reported_total)
            except ValueError:
                raise ProviderError("recheckRate", f"unusable totalAmount {reported_total!r}")

        previous = previous_total
        reported_previous = rechecked.get("previousTotalAmount")
        if reported_previous is not None:
            try:
                previous = parse_amount(reported_previous)
            except ValueError:
                logger.warning(f"Ignoring unusable previousTotalAmount {reported_previous!r} from recheck")

        price_changed = bool(rechecked.get("isPriceChanged"))
        if total is not None and previous is not None and total != previous:
            price_changed = True

        return ReconciliationResult(
            status=ReconciliationState.SETTLED_OK,
            trace_id=rechecked.get("traceId") or trace_id,
            itinerary_code=rechecked.get("itineraryCode") or itinerary_code,
            total_amount=total,
            previous_total_amount=previous,
            is_price_changed=price_changed,
            is_baggage_changed=bool(rechecked.get("isBaggageChanged")),
            **base,
        )

    def _discard(self, result: ReconciliationResult) -> ReconciliationResult:
        logger.warning(
            f"Discarding {result.status.value} reconciliation result for session {result.session_id}; "
            f"active session is {self.active_session_id}"
        )
        return replace(result, discarded=True)


def _failure_message(step: str, error: Exception) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"{step} timed out"
    return f"{step} failed: {getattr(error, 'message', None) or error}"
