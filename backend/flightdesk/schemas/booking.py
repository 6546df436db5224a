import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    provider: str | None = None
    trace_id: str | None = None
    flight_type: str | None = None
    items: list[dict] = []
    # An already fetched createItinerary response; skips the provider call
    itinerary: dict | None = None


class SubmitTravelersRequest(BaseModel):
    travelers: dict[str, dict] = Field(default_factory=dict)


class SeatToggleRequest(BaseModel):
    traveler_id: str
    origin: str
    destination: str
    code: str


class MealToggleRequest(BaseModel):
    traveler_id: str
    origin: str
    destination: str
    code: str


class BaggageToggleRequest(BaseModel):
    traveler_id: str
    direction_index: int = 0
    code: str


class ToggleResponse(BaseModel):
    accepted: bool
    selected: bool
    error_code: str | None = None
    message: str | None = None
    state: str
    ancillaries_total: float


class TravelerResponse(BaseModel):
    id: str
    pax_type: str
    is_lead: bool
    display_name: str


class PriceSummaryResponse(BaseModel):
    currency: str
    fare_total: float
    ancillaries_total: float
    final_total: float
    previous_fare_total: float | None = None
    price_delta: float = 0
    price_change_direction: str | None = None


class ReconciliationResponse(BaseModel):
    status: str
    trace_id: str | None
    itinerary_code: str | None
    total_amount: float | None
    previous_total_amount: float | None
    is_price_changed: bool
    is_baggage_changed: bool
    warning: str | None = None
    error: str | None = None


class SessionResponse(BaseModel):
    session_id: str
    state: str
    trip_kind: str
    trace_id: str | None
    itinerary_code: str | None
    ancillaries_skipped: bool
    ancillaries_confirmed: bool
    can_book: bool
    travelers: list[TravelerResponse]
    catalog: list[dict]
    selections: dict[str, dict]
    price_summary: PriceSummaryResponse
    reconciliation: ReconciliationResponse | None = None
    booking_error: str | None = None
    booking_codes: list[str] = []
    record_id: uuid.UUID | None = None
    record_error: str | None = None


class FlightBookingResponse(BaseModel):
    id: uuid.UUID
    booking_ref_id: str
    booking_codes: list
    pnr: str | None
    provider: str
    flight_type: str
    booking_status: str
    origin_code: str | None
    origin_city: str | None
    destination_code: str | None
    destination_city: str | None
    stops: int
    passenger_details: list
    currency: str
    total_flight_amount: float
    total_ancillaries_amount: float
    final_total_amount: float
    payment_method: str
    payment_status: str
    created_at: datetime

    model_config = {"from_attributes": True}
