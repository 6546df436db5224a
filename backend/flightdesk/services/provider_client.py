"""Flight provider client — adapter for the upstream booking API with bearer auth and retries."""

import asyncio
import hashlib
import logging
import random
import uuid
from datetime import datetime, timedelta, timezone

import httpx

from flightdesk.config import settings

logger = logging.getLogger(__name__)

FLIGHT_TYPES = ("ONE_WAY", "DOMESTIC_ROUND_TRIP", "INTERNATIONAL_ROUND_TRIP")

# Failures where the request never reached the provider, safe to resend
_RETRYABLE_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class ProviderError(RuntimeError):
    """A provider call failed or returned an unusable payload."""

    def __init__(self, operation: str, message: str, status_code: int | None = None):
        self.operation = operation
        self.status_code = status_code
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class FlightProviderClient:
    """Adapter for the provider's flight booking endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int | None = None,
        backoff_base: float = 1.0,
    ):
        self._base_url = settings.provider_base_url if base_url is None else base_url
        self._api_token = settings.provider_api_token if api_token is None else api_token
        self._transport = transport
        self._max_attempts = max_attempts or settings.provider_max_attempts
        self._backoff_base = backoff_base
        self._client: httpx.AsyncClient | None = None
        self._use_mock = not self._base_url

    @property
    def is_mock(self) -> bool:
        return self._use_mock

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {}
            if self._api_token:
                headers["Authorization"] = f"Bearer {self._api_token}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=settings.provider_timeout_seconds,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> dict:
        """Send a request and unwrap the ``{success, message, data}`` envelope."""
        client = await self._get_client()
        for attempt in range(self._max_attempts):
            last_attempt = attempt == self._max_attempts - 1
            try:
                resp = await client.request(method, path, **kwargs)
            except _RETRYABLE_TRANSPORT_ERRORS as e:
                logger.warning(f"Provider {operation} connect error (attempt {attempt + 1}): {e}")
                if not last_attempt:
                    await asyncio.sleep(self._backoff_base * 2 ** attempt)
                    continue
                raise ProviderError(operation, f"provider unreachable: {e}") from e
            except httpx.HTTPError as e:
                logger.error(f"Provider {operation} request error: {e}")
                raise ProviderError(operation, str(e) or e.__class__.__name__) from e

            if resp.status_code == 429 and not last_attempt:
                logger.warning(f"Provider {operation} rate limited, backing off")
                await asyncio.sleep(self._backoff_base * 2 ** attempt)
                continue

            body = self._json_body(resp)
            if resp.status_code >= 400:
                message = body.get("message") if isinstance(body, dict) else None
                logger.error(f"Provider {operation} error: {resp.status_code} {message or ''}".rstrip())
                raise ProviderError(operation, message or f"HTTP {resp.status_code}", resp.status_code)

            if not isinstance(body, dict):
                raise ProviderError(operation, "response is not a JSON object", resp.status_code)
            if body.get("success") is False:
                raise ProviderError(operation, body.get("message") or "provider reported failure", resp.status_code)
            return body

        raise ProviderError(operation, "rate limited", 429)

    @staticmethod
    def _json_body(resp: httpx.Response):
        try:
            return resp.json()
        except ValueError:
            return None

    # --- Logical operations ---

    async def search_flights(self, provider: str, search: dict) -> dict:
        """Search flights. The search form and result filtering live in the UI."""
        if self._use_mock:
            return {"success": True, "data": {"traceId": f"MOCK-{uuid.uuid4().hex[:12]}", "flights": []}}
        return await self._request("searchFlights", "POST", f"/bookings/flight/{provider}/search", json=search)

    async def create_itinerary(self, provider: str, items: list[dict], trace_id: str, flight_type: str) -> dict:
        """Create an itinerary for the selected result indexes. Returns the raw response."""
        if flight_type not in FLIGHT_TYPES:
            raise ValueError(f"Invalid flight type: {flight_type}")
        logger.info(f"Creating {flight_type} itinerary with {len(items)} item(s), trace {trace_id}")
        if self._use_mock:
            return _mock_itinerary(items, trace_id, flight_type)
        return await self._request(
            "createItinerary",
            "POST",
            f"/bookings/flight/{provider}/itinerary",
            json={"items": items, "traceId": trace_id, "flightType": flight_type},
        )

    async def allocate_passengers(
        self,
        provider: str,
        trace_id: str | None,
        itinerary_code: str | None,
        travelers: list[dict],
    ) -> dict:
        """Allocate travelers (with their ssr) to the itinerary. Returns refreshed ids."""
        if self._use_mock:
            return {"traceId": trace_id, "itineraryCode": itinerary_code}

        body = await self._request(
            "allocatePassengers",
            "POST",
            f"/bookings/flight/{provider}/allocate-passengers",
            json={"traceId": trace_id, "itineraryCode": itinerary_code, "passengers": travelers},
        )
        results = _first_result(body.get("data"))
        return {
            "traceId": results.get("traceId"),
            "itineraryCode": results.get("itineraryCode"),
        }

    async def recheck_rate(self, provider: str, trace_id: str | None, itinerary_code: str | None) -> dict:
        """Re-price the allocated itinerary."""
        if self._use_mock:
            return {
                "totalAmount": None,
                "previousTotalAmount": None,
                "isPriceChanged": False,
                "isBaggageChanged": False,
                "traceId": trace_id,
                "itineraryCode": itinerary_code,
            }

        body = await self._request(
            "recheckRate",
            "POST",
            f"/bookings/flight/{provider}/recheck-rate",
            json={"traceId": trace_id, "itineraryCode": itinerary_code},
        )
        results = _first_result(body.get("data"))
        if "totalAmount" not in results:
            raise ProviderError("recheckRate", "response has no totalAmount")
        trace_details = results.get("traceIdDetails") or {}
        return {
            "totalAmount": results.get("totalAmount"),
            "previousTotalAmount": results.get("previousTotalAmount"),
            "isPriceChanged": bool(results.get("isPriceChanged")),
            "isBaggageChanged": bool(results.get("isBaggageChanged")),
            "baseFare": results.get("baseFare"),
            "taxAndSurcharge": results.get("taxAndSurcharge"),
            "traceId": trace_details.get("traceId") or results.get("traceId"),
            "itineraryCode": results.get("itineraryCode"),
        }

    async def book_flight(self, provider: str, trace_id: str | None, itinerary_code: str | None) -> dict:
        """Commit the booking. Returns the provider confirmation envelope."""
        if self._use_mock:
            return _mock_booking(trace_id, itinerary_code)
        return await self._request(
            "bookFlight",
            "POST",
            f"/bookings/flight/{provider}/book",
            json={"provider": provider, "traceId": trace_id, "itineraryCode": itinerary_code},
        )

    async def get_fare_rules(self, provider: str, trace_id: str, params: dict | None = None) -> dict:
        if self._use_mock:
            return {"success": True, "data": {"fareRules": []}}
        return await self._request(
            "getFareRules", "GET", f"/bookings/flight/{provider}/fare-rules/{trace_id}", params=params or {}
        )

    async def get_booking_details(self, provider: str, booking_code: str) -> dict:
        if self._use_mock:
            return {"success": True, "data": {"results": {"bmsBookingCode": booking_code, "status": "Confirmed"}}}
        return await self._request(
            "getBookingDetails", "GET", f"/bookings/flight/{provider}/booking-details/{booking_code}"
        )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None


def _first_result(data) -> dict:
    """Provider payloads nest the interesting object as results[0], results, details[0] or data itself."""
    if not isinstance(data, dict):
        return {}
    for key in ("results", "details"):
        value = data.get(key)
        if isinstance(value, list) and value and isinstance(value[0], dict):
            return value[0]
        if isinstance(value, dict):
            return value
    return data


# --- Mock data generation for demo mode ---

_MOCK_ROUTES = {
    "ONE_WAY": [[("DEL", "Delhi", "BOM", "Mumbai")]],
    "DOMESTIC_ROUND_TRIP": [
        [("DEL", "Delhi", "BOM", "Mumbai")],
        [("BOM", "Mumbai", "DEL", "Delhi")],
    ],
    "INTERNATIONAL_ROUND_TRIP": [
        [("DEL", "Delhi", "DXB", "Dubai"), ("DXB", "Dubai", "LHR", "London")],
        [("LHR", "London", "DEL", "Delhi")],
    ],
}


def _mock_itinerary(items: list[dict], trace_id: str, flight_type: str) -> dict:
    """Deterministic demo itinerary with seat maps, baggage and meals."""
    seed_str = f"{trace_id}{flight_type}{[i.get('resultIndex') for i in items]}"
    rng = random.Random(int(hashlib.md5(seed_str.encode()).hexdigest()[:8], 16))
    departure = datetime(2026, 12, 1, 6, 0, tzinfo=timezone.utc) + timedelta(days=rng.randint(0, 30))

    directions = []
    for legs in _MOCK_ROUTES[flight_type]:
        built = []
        for origin, origin_city, destination, destination_city in legs:
            duration = rng.randint(90, 420)
            arrival = departure + timedelta(minutes=duration)
            built.append({
                "or": {"aC": origin, "cN": origin_city, "aN": f"{origin_city} Airport", "dT": departure.isoformat()},
                "ds": {"aC": destination, "cN": destination_city, "aN": f"{destination_city} Airport", "aT": arrival.isoformat()},
                "dr": duration,
            })
            departure = arrival + timedelta(minutes=rng.randint(60, 180))
        directions.append(built)
        departure += timedelta(days=5)

    def ssr_for(direction_groups: list[list[dict]]) -> dict:
        seat, baggage, meal = [], [], []
        for legs in direction_groups:
            for leg in legs:
                o, d = leg["or"]["aC"], leg["ds"]["aC"]
                rows = []
                for row in range(1, 7):
                    seats = []
                    for col_index, col in enumerate("ABCDEF"):
                        seats.append({
                            "code": f"{row}{col}",
                            "seatNo": f"{row}{col}",
                            "amt": rng.choice([0, 250, 400, 650]),
                            "isBooked": rng.random() < 0.25,
                            "isAisle": col_index == 3,
                        })
                    rows.append({"seats": seats})
                seat.append({"origin": o, "destination": d, "rowSeats": rows})
                meal.append({"origin": o, "destination": d, "options": [
                    {"code": "VGML", "dsc": "Vegetarian meal", "amt": 350},
                    {"code": "NVML", "dsc": "Non-vegetarian meal", "amt": 400},
                ]})
            baggage.append({"origin": legs[0]["or"]["aC"], "destination": legs[-1]["ds"]["aC"], "options": [
                {"code": "XBAG5", "dsc": "Extra 5 kg", "amt": 1800},
                {"code": "XBAG10", "dsc": "Extra 10 kg", "amt": 3400},
            ]})
        return {"seat": seat, "baggage": baggage, "meal": meal}

    if flight_type == "INTERNATIONAL_ROUND_TRIP":
        itinerary_items = [{
            "itemCode": f"ITM-{rng.randint(1000, 9999)}",
            "itemFlight": {"airlineName": "Demo Air", "flightNumber": f"DA{rng.randint(100, 999)}",
                           "segments": directions, "ssr": ssr_for(directions),
                           "fareQuote": {"currency": "INR"}},
        }]
    else:
        itinerary_items = [
            {
                "itemCode": f"ITM-{rng.randint(1000, 9999)}",
                "itemFlight": {"airlineName": "Demo Air", "flightNumber": f"DA{rng.randint(100, 999)}",
                               "segments": [legs], "ssr": ssr_for([legs]),
                               "fareQuote": {"currency": "INR"}},
            }
            for legs in directions
        ]

    base_fare = rng.randint(4000, 40000)
    tax = round(base_fare * 0.18)
    return {
        "success": True,
        "data": {
            "results": {
                "traceId": trace_id,
                "itineraryCode": f"MOCK-{uuid.uuid4().hex[:10].upper()}",
                "flightType": flight_type,
                "adultCount": 1,
                "childCount": 0,
                "infantCount": 0,
                "baseFare": base_fare,
                "taxAndSurcharge": tax,
                "totalAmount": base_fare + tax,
                "currency": "INR",
                "paxRules": {},
                "itineraryItems": itinerary_items,
            }
        },
    }


def _mock_booking(trace_id: str | None, itinerary_code: str | None) -> dict:
    code = hashlib.md5(f"{trace_id}{itinerary_code}".encode()).hexdigest()[:8].upper()
    return {
        "success": True,
        "data": {
            "results": {
                "details": [{"bmsBookingCode": f"BMS{code}", "pnr": code[:6], "status": "Confirmed"}],
            }
        },
    }


provider_client = FlightProviderClient()
