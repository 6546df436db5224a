"""Flight booking router — booking sessions, ancillary selection, reconciliation and booking."""

import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from flightdesk.config import settings
from flightdesk.database import get_db
from flightdesk.schemas.booking import (
    BaggageToggleRequest,
    CreateSessionRequest,
    FlightBookingResponse,
    MealToggleRequest,
    SeatToggleRequest,
    SessionResponse,
    SubmitTravelersRequest,
    ToggleResponse,
)
from flightdesk.services.booking_controller import BookingController, BookingState, BookingStateError, booking_codes
from flightdesk.services.booking_record_service import booking_record_service
from flightdesk.services.booking_session_service import (
    BookingSession,
    BookingSessionService,
    booking_session_service,
)
from flightdesk.services.itinerary_model import build_itinerary
from flightdesk.services.provider_client import FlightProviderClient, ProviderError, provider_client
from flightdesk.services.selection_store import ToggleOutcome
from flightdesk.services.traveler_rules import TravelerValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_session_service() -> BookingSessionService:
    return booking_session_service


def get_provider_client() -> FlightProviderClient:
    return provider_client


def _load_session(session_id: str, sessions: BookingSessionService) -> BookingSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Booking session not found")
    return session


def _session_response(session: BookingSession) -> SessionResponse:
    controller = session.controller
    itinerary = controller.itinerary
    trace_id, itinerary_code = controller.booking_ids()
    result = controller.result
    return SessionResponse(
        session_id=session.id,
        state=controller.state.value,
        trip_kind=itinerary.trip_kind.value,
        trace_id=trace_id,
        itinerary_code=itinerary_code,
        ancillaries_skipped=controller.ancillaries_skipped,
        ancillaries_confirmed=controller.ancillaries_confirmed,
        can_book=controller.can_book,
        travelers=[
            {"id": t.id, "pax_type": t.pax_type, "is_lead": t.is_lead, "display_name": t.display_name}
            for t in controller.travelers
        ],
        catalog=itinerary.catalog_view(),
        selections={t.id: controller.store.to_ssr(t.id) for t in controller.travelers},
        price_summary=_floats(controller.price_summary()),
        reconciliation=_floats(result.to_dict()) if result else None,
        booking_error=controller.booking_error,
        booking_codes=booking_codes(controller.confirmation),
        record_id=session.record_id,
        record_error=session.record_error,
    )


def _floats(values: dict) -> dict:
    return {k: float(v) if isinstance(v, Decimal) else v for k, v in values.items()}


def _toggle_response(controller: BookingController, outcome: ToggleOutcome) -> ToggleResponse:
    return ToggleResponse(
        accepted=outcome.accepted,
        selected=outcome.selected,
        error_code=outcome.error_code,
        message=outcome.message,
        state=controller.state.value,
        ancillaries_total=float(controller.store.total_cost()),
    )


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    req: CreateSessionRequest,
    sessions: BookingSessionService = Depends(get_session_service),
    client: FlightProviderClient = Depends(get_provider_client),
):
    """Open a booking session from a new or already fetched itinerary."""
    provider = req.provider or settings.default_provider
    raw = req.itinerary
    if raw is None:
        if not req.trace_id or not req.flight_type or not req.items:
            raise HTTPException(status_code=422, detail="trace_id, flight_type and items are required")
        try:
            raw = await client.create_itinerary(provider, req.items, req.trace_id, req.flight_type)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ProviderError as e:
            raise HTTPException(status_code=502, detail=e.message)

    itinerary = build_itinerary(raw)
    if not itinerary.directions:
        raise HTTPException(status_code=422, detail="Itinerary has no flights")

    controller = BookingController(itinerary, provider=provider, client=client)
    session = sessions.create(controller)
    return _session_response(session)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, sessions: BookingSessionService = Depends(get_session_service)):
    return _session_response(_load_session(session_id, sessions))


@router.delete("/sessions/{session_id}", status_code=204)
async def discard_session(session_id: str, sessions: BookingSessionService = Depends(get_session_service)):
    if not sessions.discard(session_id):
        raise HTTPException(status_code=404, detail="Booking session not found")


@router.post("/sessions/{session_id}/travelers", response_model=SessionResponse)
async def submit_travelers(
    session_id: str,
    req: SubmitTravelersRequest,
    sessions: BookingSessionService = Depends(get_session_service),
):
    session = _load_session(session_id, sessions)
    try:
        await session.controller.submit_travelers(req.travelers)
    except TravelerValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors)
    except BookingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _session_response(session)


@router.post("/sessions/{session_id}/seats", response_model=ToggleResponse)
async def toggle_seat(
    session_id: str,
    req: SeatToggleRequest,
    sessions: BookingSessionService = Depends(get_session_service),
):
    controller = _load_session(session_id, sessions).controller
    try:
        outcome = controller.toggle_seat(req.traveler_id, (req.origin, req.destination), req.code)
    except BookingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _toggle_response(controller, outcome)


@router.post("/sessions/{session_id}/baggage", response_model=ToggleResponse)
async def toggle_baggage(
    session_id: str,
    req: BaggageToggleRequest,
    sessions: BookingSessionService = Depends(get_session_service),
):
    controller = _load_session(session_id, sessions).controller
    try:
        outcome = controller.toggle_baggage(req.traveler_id, req.direction_index, req.code)
    except BookingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _toggle_response(controller, outcome)


@router.post("/sessions/{session_id}/meals", response_model=ToggleResponse)
async def toggle_meal(
    session_id: str,
    req: MealToggleRequest,
    sessions: BookingSessionService = Depends(get_session_service),
):
    controller = _load_session(session_id, sessions).controller
    try:
        outcome = controller.toggle_meal(req.traveler_id, (req.origin, req.destination), req.code)
    except BookingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _toggle_response(controller, outcome)


@router.post("/sessions/{session_id}/ancillaries/{action}", response_model=SessionResponse)
async def ancillary_action(
    session_id: str,
    action: str,
    sessions: BookingSessionService = Depends(get_session_service),
):
    """confirm | close | reopen the ancillary step."""
    if action not in ("confirm", "close", "reopen"):
        raise HTTPException(status_code=404, detail=f"Unknown ancillary action '{action}'")

    session = _load_session(session_id, sessions)
    try:
        await session.controller.advance(f"{action}_ancillaries")
    except BookingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _session_response(session)


@router.post("/sessions/{session_id}/book", response_model=SessionResponse)
async def book(
    session_id: str,
    sessions: BookingSessionService = Depends(get_session_service),
    db: AsyncSession = Depends(get_db),
):
    """Commit the booking and save the record.

    A provider failure leaves the session retryable. A booked session whose
    record could not be saved only retries the save on the next call.
    """
    session = _load_session(session_id, sessions)
    controller = session.controller
    if controller.state == BookingState.BOOKED and session.record_id is None:
        await _save_record(db, session)
        return _session_response(session)

    try:
        confirmation = await controller.book()
    except BookingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if confirmation is not None:
        await _save_record(db, session)
    return _session_response(session)


async def _save_record(db: AsyncSession, session: BookingSession) -> None:
    try:
        record = await booking_record_service.save(db, session.controller)
    except SQLAlchemyError as e:
        await db.rollback()
        codes = ", ".join(booking_codes(session.controller.confirmation))
        logger.error(f"Booking {codes} confirmed but record save failed: {e}")
        session.record_error = "Booking confirmed but the record could not be saved; retry to save it"
        return
    session.record_id = record.id
    session.record_error = None


@router.get("/records/{booking_id}", response_model=FlightBookingResponse)
async def get_booking_record(booking_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    record = await booking_record_service.get(db, booking_id)
    if not record:
        raise HTTPException(status_code=404, detail="Booking not found")
    return record


@router.get("/{provider}/booking-details/{booking_code}")
async def booking_details(
    provider: str,
    booking_code: str,
    client: FlightProviderClient = Depends(get_provider_client),
):
    try:
        return await client.get_booking_details(provider, booking_code)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.get("/{provider}/fare-rules/{trace_id}")
async def fare_rules(
    provider: str,
    trace_id: str,
    client: FlightProviderClient = Depends(get_provider_client),
):
    try:
        return await client.get_fare_rules(provider, trace_id)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=e.message)
