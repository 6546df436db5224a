"""Shared fixtures: provider-shaped itineraries and a scriptable fake provider."""

import asyncio

import pytest

from flightdesk.services.provider_client import ProviderError


def leg(origin, destination, origin_city=None, destination_city=None, duration=120):
    return {
        "or": {"aC": origin, "cN": origin_city or origin, "aN": f"{origin} Airport", "dT": "2026-12-01T06:00:00"},
        "ds": {"aC": destination, "cN": destination_city or destination, "aN": f"{destination} Airport",
               "aT": "2026-12-01T08:00:00"},
        "dr": duration,
    }


def seat_map(origin, destination, seats):
    """seats: list of (code, amt, is_booked)."""
    return {
        "origin": origin,
        "destination": destination,
        "rowSeats": [{"seats": [
            {"code": code, "seatNo": code, "amt": amt, "isBooked": booked, "isAisle": code.endswith("C")}
            for code, amt, booked in seats
        ]}],
    }


def menu(origin, destination, options):
    return {
        "origin": origin,
        "destination": destination,
        "options": [{"code": code, "dsc": dsc, "amt": amt} for code, dsc, amt in options],
    }


def envelope(results):
    return {"success": True, "message": "ok", "data": {"results": results}}


@pytest.fixture
def one_way_raw():
    """NYC -> LAX, two adults, seats 12A/12B/12C (12C booked), one baggage and one meal menu."""
    return envelope({
        "traceId": "TR-1",
        "itineraryCode": "IT-1",
        "flightType": "ONE_WAY",
        "adultCount": 2,
        "childCount": 0,
        "infantCount": 0,
        "totalAmount": 500,
        "baseFare": 400,
        "taxAndSurcharge": 100,
        "paxRules": {},
        "itineraryItems": [{
            "itemCode": "ITEM-1",
            "itemFlight": {
                "airlineName": "Test Air",
                "flightNumber": "TA100",
                "fareQuote": {"currency": "USD"},
                "segments": [[leg("NYC", "LAX", "New York", "Los Angeles")]],
                "ssr": {
                    "seat": [seat_map("NYC", "LAX", [("12A", 10, False), ("12B", 15.5, False), ("12C", 5, True)])],
                    "baggage": [menu("NYC", "LAX", [("BAG15", "15 kg", 30), ("BAG20", "20 kg", 45)])],
                    "meal": [menu("NYC", "LAX", [("VGML", "Vegetarian", 12.25), ("NVML", "Chicken", 14)])],
                },
            },
        }],
    })


@pytest.fixture
def international_raw():
    """DEL -> DXB -> LHR outbound, LHR -> DEL return, in one item.

    The outbound seat map is only published for the whole direction (DEL-LHR).
    """
    return envelope({
        "traceId": "TR-INT",
        "itineraryCode": "IT-INT",
        "flightType": "INTERNATIONAL_ROUND_TRIP",
        "adultCount": 1,
        "childCount": 1,
        "infantCount": 1,
        "totalAmount": 90000,
        "paxRules": {},
        "itineraryItems": [{
            "itemCode": "ITEM-INT",
            "itemFlight": {
                "airlineName": "Test Air",
                "fareQuote": {"currency": "INR"},
                "segments": [
                    [leg("DEL", "DXB", "Delhi", "Dubai"), leg("DXB", "LHR", "Dubai", "London")],
                    [leg("LHR", "DEL", "London", "Delhi")],
                ],
                "ssr": {
                    "seat": [
                        seat_map("DEL", "LHR", [("1A", 500, False), ("1B", 500, False)]),
                        seat_map("LHR", "DEL", [("2A", 700, False)]),
                    ],
                    "baggage": [
                        menu("DEL", "LHR", [("XB5", "Extra 5 kg", 2000)]),
                        menu("LHR", "DEL", [("XB5", "Extra 5 kg", 2500)]),
                    ],
                    "meal": [
                        menu("DEL", "DXB", [("VGML", "Veg", 300)]),
                        menu("DXB", "LHR", [("VGML", "Veg", 350)]),
                    ],
                },
            },
        }],
    })


@pytest.fixture
def domestic_round_trip_raw():
    return envelope({
        "traceId": "TR-DOM",
        "itineraryCode": "IT-DOM",
        "flightType": "DOMESTIC_ROUND_TRIP",
        "adultCount": 1,
        "totalAmount": 12000,
        "itineraryItems": [
            {
                "itemCode": "OUT",
                "itemFlight": {
                    "segments": [[leg("DEL", "BOM")]],
                    "ssr": {"meal": [menu("DEL", "BOM", [("VGML", "Veg", 250)])]},
                },
            },
            {
                "itemCode": "RET",
                "itemFlight": {
                    "segments": [[leg("BOM", "DEL")]],
                    "ssr": {"meal": [menu("BOM", "DEL", [("VGML", "Veg", 275)])]},
                },
            },
        ],
    })


@pytest.fixture
def bare_raw():
    """An itinerary with no ancillary catalogs anywhere."""
    return envelope({
        "traceId": "TR-BARE",
        "itineraryCode": "IT-BARE",
        "flightType": "ONE_WAY",
        "adultCount": 1,
        "totalAmount": 3000,
        "itineraryItems": [{"itemCode": "B", "itemFlight": {"segments": [[leg("BLR", "GOI")]], "ssr": {}}}],
    })


class FakeProvider:
    """Stands in for FlightProviderClient. Each step can succeed, fail, hang or wait on an event."""

    def __init__(self):
        self.calls = []
        self.allocate_response = {"traceId": "TR-ALLOC", "itineraryCode": "IT-ALLOC"}
        self.recheck_response = {
            "totalAmount": None,
            "previousTotalAmount": None,
            "isPriceChanged": False,
            "isBaggageChanged": False,
        }
        self.book_response = {
            "success": True,
            "data": {"results": {"details": [
                {"bmsBookingCode": "BMS-1", "pnr": "PNR123"},
                {"bmsBookingCode": "BMS-2", "pnr": "PNR456"},
            ]}},
        }
        self.fail = set()
        self.hang = set()
        self.gates: dict[str, asyncio.Event] = {}

    async def _step(self, name):
        if name in self.gates:
            await self.gates[name].wait()
        if name in self.hang:
            await asyncio.sleep(3600)
        if name in self.fail:
            raise ProviderError(name, f"{name} exploded", 500)

    async def allocate_passengers(self, provider, trace_id, itinerary_code, travelers):
        self.calls.append(("allocate", trace_id, itinerary_code, travelers))
        await self._step("allocate")
        return dict(self.allocate_response)

    async def recheck_rate(self, provider, trace_id, itinerary_code):
        self.calls.append(("recheck", trace_id, itinerary_code))
        await self._step("recheck")
        response = dict(self.recheck_response)
        response.setdefault("traceId", trace_id)
        response.setdefault("itineraryCode", itinerary_code)
        return response

    async def book_flight(self, provider, trace_id, itinerary_code):
        self.calls.append(("book", trace_id, itinerary_code))
        await self._step("book")
        return self.book_response

    def names(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def traveler_details():
    return {
        "1": {"title": "Mr", "firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com",
              "contactNumber": "5550001"},
        "2": {"title": "Ms", "firstName": "Grace", "lastName": "Hopper"},
        "3": {"title": "Mstr", "firstName": "Alan", "lastName": "Turing"},
    }
