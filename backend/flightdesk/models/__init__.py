from flightdesk.models.flight_booking import FlightBooking

__all__ = ["FlightBooking"]
