import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flightdesk.database import Base

# JSONB on Postgres, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class FlightBooking(Base):
    __tablename__ = "flight_bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_ref_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    booking_codes: Mapped[list] = mapped_column(JSONType, default=list)
    pnr: Mapped[str | None] = mapped_column(String(20))
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    trace_id: Mapped[str | None] = mapped_column(String(100), index=True)
    itinerary_code: Mapped[str | None] = mapped_column(String(100))
    flight_type: Mapped[str] = mapped_column(String(30), nullable=False)
    booking_status: Mapped[str] = mapped_column(String(20), default="Confirmed")

    origin_code: Mapped[str | None] = mapped_column(String(10))
    origin_city: Mapped[str | None] = mapped_column(String(100))
    destination_code: Mapped[str | None] = mapped_column(String(10))
    destination_city: Mapped[str | None] = mapped_column(String(100))
    stops: Mapped[int] = mapped_column(Integer, default=0)

    passenger_details: Mapped[list] = mapped_column(JSONType, default=list)
    provider_response: Mapped[dict | None] = mapped_column(JSONType)

    currency: Mapped[str] = mapped_column(String(3), default="INR")
    total_flight_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_ancillaries_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    final_total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), default="Pending")
    payment_status: Mapped[str] = mapped_column(String(20), default="Pending")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
