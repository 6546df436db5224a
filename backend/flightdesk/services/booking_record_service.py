"""Booking record service — persists confirmed bookings."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flightdesk.data.currency import quantize_amount
from flightdesk.models.flight_booking import FlightBooking
from flightdesk.services.booking_controller import BookingController, BookingState, BookingStateError, booking_codes

logger = logging.getLogger(__name__)

PAX_TYPE_LABELS = {"adult": "Adult", "child": "Child", "infant": "Infant"}


class BookingRecordService:
    """Builds and stores the record of a booked itinerary."""

    def build_record(self, controller: BookingController) -> FlightBooking:
        if controller.state != BookingState.BOOKED or controller.confirmation is None:
            raise BookingStateError("Only a booked itinerary can be recorded")

        itinerary = controller.itinerary
        confirmation = controller.confirmation
        codes = booking_codes(confirmation)
        details = ((confirmation.get("data") or {}).get("results") or {}).get("details") or []
        trace_id, itinerary_code = controller.booking_ids()

        outbound = itinerary.direction(0)
        first_leg = outbound.legs[0] if outbound and outbound.legs else None
        last_leg = outbound.legs[-1] if outbound and outbound.legs else None

        summary = controller.price_summary()
        currency = summary["currency"]

        return FlightBooking(
            booking_ref_id=codes[0],
            booking_codes=codes,
            pnr=(details[0].get("pnr") if details else None) or None,
            provider=controller.provider,
            trace_id=trace_id,
            itinerary_code=itinerary_code,
            flight_type=itinerary.trip_kind.value,
            booking_status="Confirmed",
            origin_code=first_leg.origin if first_leg else None,
            origin_city=first_leg.origin_city if first_leg else None,
            destination_code=last_leg.destination if last_leg else None,
            destination_city=last_leg.destination_city if last_leg else None,
            stops=outbound.stops if outbound else 0,
            passenger_details=self._passenger_details(controller),
            provider_response=confirmation,
            currency=currency,
            total_flight_amount=quantize_amount(summary["fare_total"], currency),
            total_ancillaries_amount=summary["ancillaries_total"],
            final_total_amount=quantize_amount(summary["final_total"], currency),
            payment_method="Pending",
            payment_status="Pending",
        )

    @staticmethod
    def _passenger_details(controller: BookingController) -> list[dict]:
        passengers = []
        for traveler in controller.travelers:
            d = traveler.details
            passengers.append({
                "travelerId": traveler.id,
                "title": d.get("title"),
                "firstName": d.get("firstName"),
                "lastName": d.get("lastName"),
                "email": d.get("email") or "",
                "phoneNumber": d.get("contactNumber") or d.get("phoneNumber") or "",
                "dateOfBirth": d.get("dateOfBirth"),
                "gender": d.get("gender") or "",
                "nationality": d.get("nationality") or "",
                "passportNumber": d.get("passportNumber") or "",
                "passportExpiry": d.get("passportExpiry"),
                "isLeadPassenger": traveler.is_lead,
                "type": PAX_TYPE_LABELS[traveler.pax_type],
                "ssr": controller.store.to_ssr(traveler.id),
            })
        return passengers

    async def save(self, db: AsyncSession, controller: BookingController) -> FlightBooking:
        record = self.build_record(controller)
        db.add(record)
        await db.commit()
        await db.refresh(record)
        logger.info(
            f"Saved booking {record.booking_ref_id} ({record.flight_type}, "
            f"{record.origin_code}->{record.destination_code}) total {record.final_total_amount} {record.currency}"
        )
        return record

    async def get(self, db: AsyncSession, booking_id: uuid.UUID) -> FlightBooking | None:
        result = await db.execute(select(FlightBooking).where(FlightBooking.id == booking_id))
        return result.scalar_one_or_none()

    async def get_by_reference(self, db: AsyncSession, booking_ref_id: str) -> FlightBooking | None:
        result = await db.execute(
            select(FlightBooking).where(FlightBooking.booking_ref_id == booking_ref_id)
        )
        return result.scalar_one_or_none()


booking_record_service = BookingRecordService()
