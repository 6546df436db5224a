"""Itinerary model — normalizes a provider itinerary into directions, legs and ancillary catalogs.

The provider publishes three response shapes:

* ONE_WAY: one item, ``segments`` is ``[[legs]]`` (or occasionally ``[legs]``).
* DOMESTIC_ROUND_TRIP: two items, one per direction, each with its own ``ssr``.
* INTERNATIONAL_ROUND_TRIP: one item whose ``segments`` is ``[[outbound], [return]]``
  and whose ``ssr`` covers both directions.

Everything downstream (selection, reconciliation) works on the canonical
``Itinerary`` built here and never looks at the raw shape again.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from flightdesk.config import settings
from flightdesk.data.currency import to_decimal

logger = logging.getLogger(__name__)

ScopeKey = tuple[str, str]


class TripKind(str, Enum):
    ONE_WAY = "ONE_WAY"
    DOMESTIC_ROUND_TRIP = "DOMESTIC_ROUND_TRIP"
    INTERNATIONAL_ROUND_TRIP = "INTERNATIONAL_ROUND_TRIP"


@dataclass(frozen=True)
class PhysicalLeg:
    origin: str | None
    destination: str | None
    origin_name: str | None = None
    destination_name: str | None = None
    origin_city: str | None = None
    destination_city: str | None = None
    departure_at: str | None = None
    arrival_at: str | None = None
    duration_minutes: int = 0

    @property
    def key(self) -> ScopeKey | None:
        if not self.origin or not self.destination:
            return None
        return (self.origin, self.destination)


@dataclass(frozen=True)
class Direction:
    index: int
    trip_kind: TripKind
    item_code: str | None
    legs: tuple[PhysicalLeg, ...]
    airline_name: str | None = None
    flight_number: str | None = None

    @property
    def label(self) -> str:
        return "outbound" if self.index == 0 else "return"

    @property
    def key(self) -> ScopeKey | None:
        if not self.legs:
            return None
        origin = self.legs[0].origin
        destination = self.legs[-1].destination
        if not origin or not destination:
            return None
        return (origin, destination)

    @property
    def stops(self) -> int:
        return max(len(self.legs) - 1, 0)


@dataclass(frozen=True)
class SeatOption:
    code: str
    price: Decimal
    is_booked: bool = False
    is_aisle: bool = False
    seat_no: str | None = None


@dataclass(frozen=True)
class SeatMap:
    scope: ScopeKey
    rows: tuple[tuple[SeatOption, ...], ...]

    def find(self, code: str) -> SeatOption | None:
        for row in self.rows:
            for seat in row:
                if seat.code == code:
                    return seat
        return None


@dataclass(frozen=True)
class AncillaryOption:
    """A baggage or meal option."""
    code: str
    description: str
    price: Decimal


@dataclass
class Itinerary:
    trip_kind: TripKind
    directions: list[Direction]
    trace_id: str | None = None
    itinerary_code: str | None = None
    adult_count: int = 1
    child_count: int = 0
    infant_count: int = 0
    total_amount: Decimal = Decimal("0")
    base_fare: Decimal = Decimal("0")
    tax_and_surcharge: Decimal = Decimal("0")
    currency: str = "INR"
    pax_rules: dict = field(default_factory=dict)
    legs_by_key: dict[ScopeKey, PhysicalLeg] = field(default_factory=dict)
    seat_map_by_leg_key: dict[ScopeKey, SeatMap] = field(default_factory=dict)
    baggage_by_direction_key: dict[ScopeKey, list[AncillaryOption]] = field(default_factory=dict)
    meal_by_leg_key: dict[ScopeKey, list[AncillaryOption]] = field(default_factory=dict)
    # Leg keys whose seat map was served from the direction-level entry
    seat_map_fallbacks: set[ScopeKey] = field(default_factory=set)

    @property
    def traveler_count(self) -> int:
        return self.adult_count + self.child_count + self.infant_count

    @property
    def seat_capacity(self) -> int:
        """Seats that may be held per leg. Infants travel on a lap."""
        return (self.adult_count + self.child_count) or 1

    def direction(self, index: int) -> Direction | None:
        if 0 <= index < len(self.directions):
            return self.directions[index]
        return None

    def seat_map_for(self, direction: Direction, leg: PhysicalLeg) -> SeatMap | None:
        """Seat map for a leg, falling back to the direction-level map."""
        leg_key = leg.key
        if leg_key is not None:
            seat_map = self.seat_map_by_leg_key.get(leg_key)
            if seat_map is not None:
                return seat_map

        direction_key = direction.key
        if direction_key is not None and direction_key != leg_key:
            seat_map = self.seat_map_by_leg_key.get(direction_key)
            if seat_map is not None:
                if leg_key is not None and leg_key not in self.seat_map_fallbacks:
                    self.seat_map_fallbacks.add(leg_key)
                    logger.info(
                        f"Seat map for leg {leg_key[0]}->{leg_key[1]} served from "
                        f"direction map {direction_key[0]}->{direction_key[1]}"
                    )
                return seat_map
        return None

    def baggage_options(self, direction: Direction) -> list[AncillaryOption]:
        if direction.key is None:
            return []
        return self.baggage_by_direction_key.get(direction.key, [])

    def meal_options(self, leg: PhysicalLeg) -> list[AncillaryOption]:
        if leg.key is None:
            return []
        return self.meal_by_leg_key.get(leg.key, [])

    def has_any_ancillaries(self) -> bool:
        if any(seat_map.rows for seat_map in self.seat_map_by_leg_key.values()):
            return True
        if any(self.baggage_by_direction_key.values()):
            return True
        return any(self.meal_by_leg_key.values())

    def locate_leg(self, leg_key: ScopeKey) -> tuple[Direction, PhysicalLeg] | None:
        for direction in self.directions:
            for leg in direction.legs:
                if leg.key == leg_key:
                    return direction, leg
        return None

    def catalog_view(self) -> list[dict]:
        """Per-direction view of what can be selected, for the selection UI."""
        view = []
        for direction in self.directions:
            baggage = self.baggage_options(direction)
            legs = []
            for leg in direction.legs:
                seat_map = self.seat_map_for(direction, leg)
                meals = self.meal_options(leg)
                legs.append({
                    "origin": leg.origin,
                    "destination": leg.destination,
                    "available": leg.key is not None,
                    "seat_map": [
                        [
                            {
                                "code": s.code,
                                "seat_no": s.seat_no,
                                "price": float(s.price),
                                "is_booked": s.is_booked,
                                "is_aisle": s.is_aisle,
                            }
                            for s in row
                        ]
                        for row in seat_map.rows
                    ] if seat_map else [],
                    "seat_map_is_fallback": leg.key in self.seat_map_fallbacks,
                    "meals": [_option_view(o) for o in meals],
                })
            view.append({
                "index": direction.index,
                "label": direction.label,
                "origin": direction.key[0] if direction.key else None,
                "destination": direction.key[1] if direction.key else None,
                "available": direction.key is not None,
                "baggage": [_option_view(o) for o in baggage],
                "legs": legs,
            })
        return view


def _option_view(option: AncillaryOption) -> dict:
    return {"code": option.code, "description": option.description, "price": float(option.price)}


# --- Normalization ---


def build_itinerary(raw: dict) -> Itinerary:
    """Normalize a createItinerary response into an ``Itinerary``."""
    results = _extract_results(raw)
    items = results.get("itineraryItems") or []
    trip_kind = classify_trip(results)

    directions: list[Direction] = []
    item_for_direction: list[dict] = []

    for item in items:
        item_flight = item.get("itemFlight") or {}
        leg_groups = _leg_groups(item_flight.get("segments"), trip_kind)
        for legs_raw in leg_groups:
            direction = Direction(
                index=len(directions),
                trip_kind=trip_kind,
                item_code=item.get("itemCode"),
                legs=tuple(_parse_leg(leg) for leg in legs_raw if isinstance(leg, dict)),
                airline_name=item_flight.get("airlineName"),
                flight_number=item_flight.get("flightNumber"),
            )
            if direction.key is None:
                logger.warning(
                    f"Direction {direction.index} of item {direction.item_code} has no "
                    f"resolvable origin/destination; ancillaries unavailable for it"
                )
            directions.append(direction)
            item_for_direction.append(item_flight)

    itinerary = Itinerary(
        trip_kind=trip_kind,
        directions=directions,
        trace_id=results.get("traceId"),
        itinerary_code=results.get("itineraryCode"),
        adult_count=int(results.get("adultCount") or 0),
        child_count=int(results.get("childCount") or 0),
        infant_count=int(results.get("infantCount") or 0),
        total_amount=to_decimal(results.get("totalAmount")),
        base_fare=to_decimal(results.get("baseFare")),
        tax_and_surcharge=to_decimal(results.get("taxAndSurcharge")),
        currency=results.get("currency") or _first_fare_currency(items) or settings.default_currency,
        pax_rules=results.get("paxRules") or {},
    )

    for direction in directions:
        for leg in direction.legs:
            if leg.key is None:
                logger.warning(
                    f"Leg in direction {direction.index} is missing origin/destination; "
                    f"seat and meal options unavailable for it"
                )
                continue
            itinerary.legs_by_key.setdefault(leg.key, leg)

    # Each item's ssr is indexed once even when it covers two directions
    seen_items: set[int] = set()
    for item_flight in item_for_direction:
        if id(item_flight) in seen_items:
            continue
        seen_items.add(id(item_flight))
        _index_catalogs(itinerary, item_flight.get("ssr") or {})

    logger.info(
        f"Itinerary {itinerary.itinerary_code} normalized: {trip_kind.value}, "
        f"{len(directions)} direction(s), {len(itinerary.legs_by_key)} leg(s), "
        f"{len(itinerary.seat_map_by_leg_key)} seat map(s)"
    )
    return itinerary


def classify_trip(results: dict) -> TripKind:
    """Trip kind from the declared flightType, or inferred from the item shape."""
    declared = results.get("flightType")
    if declared in TripKind._value2member_map_:
        return TripKind(declared)

    items = results.get("itineraryItems") or []
    if len(items) >= 2:
        return TripKind.DOMESTIC_ROUND_TRIP
    if len(items) == 1:
        segments = (items[0].get("itemFlight") or {}).get("segments") or []
        if len(segments) == 2 and all(isinstance(s, list) for s in segments):
            return TripKind.INTERNATIONAL_ROUND_TRIP
    return TripKind.ONE_WAY


def _extract_results(raw: dict) -> dict:
    if not isinstance(raw, dict):
        return {}
    data = raw.get("data")
    if isinstance(data, dict) and isinstance(data.get("results"), dict):
        return data["results"]
    if isinstance(raw.get("results"), dict):
        return raw["results"]
    return raw


def _leg_groups(segments, trip_kind: TripKind) -> list[list]:
    """Split an item's segments into one leg list per direction."""
    if not isinstance(segments, list) or not segments:
        return [[]]
    nested = all(isinstance(s, list) for s in segments)
    if trip_kind == TripKind.INTERNATIONAL_ROUND_TRIP and nested:
        return [list(s) for s in segments[:2]]
    if nested:
        return [list(segments[0])]
    return [list(segments)]


def _parse_leg(raw: dict) -> PhysicalLeg:
    origin = raw.get("or") or {}
    destination = raw.get("ds") or {}
    try:
        duration = int(raw.get("dr") or 0)
    except (TypeError, ValueError):
        duration = 0
    return PhysicalLeg(
        origin=origin.get("aC") or None,
        destination=destination.get("aC") or None,
        origin_name=origin.get("aN"),
        destination_name=destination.get("aN"),
        origin_city=origin.get("cN"),
        destination_city=destination.get("cN"),
        departure_at=origin.get("dT"),
        arrival_at=destination.get("aT"),
        duration_minutes=duration,
    )


def _scope_of(entry: dict) -> ScopeKey | None:
    origin = entry.get("origin")
    destination = entry.get("destination")
    if not origin or not destination:
        return None
    return (origin, destination)


def _index_catalogs(itinerary: Itinerary, ssr: dict) -> None:
    for entry in ssr.get("seat") or []:
        scope = _scope_of(entry)
        if scope is None:
            logger.warning("Seat map entry without origin/destination skipped")
            continue
        if scope in itinerary.seat_map_by_leg_key:
            logger.warning(f"Duplicate seat map for {scope[0]}->{scope[1]} ignored")
            continue
        rows = tuple(
            tuple(_parse_seat(seat) for seat in (row.get("seats") or []))
            for row in (entry.get("rowSeats") or [])
        )
        itinerary.seat_map_by_leg_key[scope] = SeatMap(scope=scope, rows=rows)

    for catalog_name, target in (
        ("baggage", itinerary.baggage_by_direction_key),
        ("meal", itinerary.meal_by_leg_key),
    ):
        for entry in ssr.get(catalog_name) or []:
            scope = _scope_of(entry)
            if scope is None:
                logger.warning(f"{catalog_name} entry without origin/destination skipped")
                continue
            if scope in target:
                logger.warning(f"Duplicate {catalog_name} menu for {scope[0]}->{scope[1]} ignored")
                continue
            target[scope] = [
                AncillaryOption(
                    code=str(option.get("code")),
                    description=option.get("dsc") or "",
                    price=to_decimal(option.get("amt")),
                )
                for option in (entry.get("options") or [])
                if option.get("code") is not None
            ]


def _parse_seat(raw: dict) -> SeatOption:
    return SeatOption(
        code=str(raw.get("code")),
        price=to_decimal(raw.get("amt")),
        is_booked=bool(raw.get("isBooked")),
        is_aisle=bool(raw.get("isAisle")),
        seat_no=raw.get("seatNo"),
    )


def _first_fare_currency(items: list[dict]) -> str | None:
    for item in items:
        fare_quote = (item.get("itemFlight") or {}).get("fareQuote") or {}
        if fare_quote.get("currency"):
            return fare_quote["currency"]
    return None
