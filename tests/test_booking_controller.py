import asyncio
from decimal import Decimal

import pytest

from flightdesk.services.booking_controller import BookingController, BookingState, BookingStateError
from flightdesk.services.itinerary_model import build_itinerary
from flightdesk.services.reconciliation import ReconciliationState

LEG = ("NYC", "LAX")


@pytest.fixture
def controller(one_way_raw, fake_provider):
    return BookingController(build_itinerary(one_way_raw), provider="TC", client=fake_provider)


async def ready(controller, traveler_details):
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    controller.toggle_seat("1", LEG, "12A")
    controller.toggle_seat("2", LEG, "12B")
    return await controller.confirm_ancillaries()


@pytest.mark.asyncio
async def test_two_travelers_distinct_seats_then_book(controller, fake_provider, traveler_details):
    fake_provider.recheck_response = {"totalAmount": 500, "previousTotalAmount": 500, "isPriceChanged": False}
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    assert controller.state == BookingState.ANCILLARY_SELECTION

    assert controller.toggle_seat("1", LEG, "12A").accepted
    assert controller.toggle_seat("2", LEG, "12B").accepted
    assert controller.store.total_cost() == Decimal("25.50")
    assert not controller.can_book

    state = await controller.confirm_ancillaries()

    assert state == BookingState.READY_TO_BOOK
    assert controller.can_book
    assert not controller.result.is_price_changed

    allocate = fake_provider.calls[0]
    passengers = allocate[3]
    assert passengers[0]["isLeadPax"] is True
    assert passengers[0]["ssr"]["seat"][0]["code"] == "12A"
    assert passengers[1]["ssr"]["seat"][0]["amt"] == 15.5

    confirmation = await controller.book()

    assert confirmation is not None
    assert controller.state == BookingState.BOOKED
    assert fake_provider.calls[-1] == ("book", "TR-ALLOC", "IT-ALLOC")


@pytest.mark.asyncio
async def test_seat_held_by_other_traveler_is_rejected_inline(controller, traveler_details):
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    controller.toggle_seat("1", LEG, "12A")

    outcome = controller.toggle_seat("2", LEG, "12A")

    assert not outcome.accepted
    assert outcome.error_code == "seat_unavailable"
    assert controller.store.selection_set.for_traveler("1").find("seat", LEG).code == "12A"


@pytest.mark.asyncio
async def test_unknown_options_are_rejected_without_raising(controller, traveler_details):
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})

    assert controller.toggle_seat("1", LEG, "99Z").error_code == "option_unavailable"
    assert controller.toggle_seat("1", ("AAA", "BBB"), "12A").error_code == "option_unavailable"
    assert controller.toggle_meal("1", LEG, "NOPE").error_code == "option_unavailable"
    assert controller.toggle_baggage("1", 4, "BAG15").error_code == "option_unavailable"
    assert controller.store.revision == 0


@pytest.mark.asyncio
async def test_no_ancillaries_skips_selection(bare_raw, fake_provider):
    controller = BookingController(build_itinerary(bare_raw), client=fake_provider)

    state = await controller.submit_travelers({"1": {"firstName": "Ada"}})

    assert state == BookingState.READY_TO_BOOK
    assert controller.ancillaries_skipped
    assert controller.ancillaries_confirmed
    assert controller.store.selection_set.is_empty()
    assert fake_provider.names() == ["allocate", "recheck"]
    assert fake_provider.calls[0][3][0]["ssr"] == {"seat": [], "baggage": [], "meal": []}
    assert controller.can_book


@pytest.mark.asyncio
async def test_toggle_after_settlement_blocks_booking(controller, traveler_details):
    await ready(controller, traveler_details)
    assert controller.can_book

    outcome = controller.toggle_baggage("1", 0, "BAG15")

    assert outcome.accepted
    assert controller.state == BookingState.ANCILLARY_SELECTION
    assert controller.result is None
    assert not controller.can_book
    with pytest.raises(BookingStateError):
        await controller.book()

    assert await controller.confirm_ancillaries() == BookingState.READY_TO_BOOK
    assert controller.can_book


@pytest.mark.asyncio
async def test_rejected_toggle_after_settlement_keeps_result(controller, traveler_details):
    await ready(controller, traveler_details)

    outcome = controller.toggle_seat("2", LEG, "12A")

    assert not outcome.accepted
    assert controller.state == BookingState.READY_TO_BOOK
    assert controller.can_book


@pytest.mark.asyncio
async def test_allocation_failure_returns_to_selection(controller, fake_provider, traveler_details):
    fake_provider.fail.add("allocate")

    state = await ready(controller, traveler_details)

    assert state == BookingState.ANCILLARY_SELECTION
    assert controller.result.status == ReconciliationState.FAILED
    assert not controller.ancillaries_confirmed
    assert not controller.can_book

    fake_provider.fail.clear()
    assert await controller.confirm_ancillaries() == BookingState.READY_TO_BOOK


@pytest.mark.asyncio
async def test_recheck_failure_still_permits_booking(controller, fake_provider, traveler_details):
    fake_provider.fail.add("recheck")

    state = await ready(controller, traveler_details)

    assert state == BookingState.READY_TO_BOOK
    assert controller.result.status == ReconciliationState.SETTLED_DEGRADED
    assert controller.can_book
    summary = controller.price_summary()
    assert summary["fare_total"] == Decimal("500")
    assert summary["final_total"] == Decimal("525.50")


@pytest.mark.asyncio
async def test_booking_failure_is_retryable_without_reallocation(controller, fake_provider, traveler_details):
    await ready(controller, traveler_details)
    fake_provider.fail.add("book")

    assert await controller.book() is None
    assert controller.state == BookingState.BOOKING_FAILED
    assert "book exploded" in controller.booking_error
    assert controller.can_book

    fake_provider.fail.clear()
    assert await controller.book() is not None
    assert controller.state == BookingState.BOOKED
    assert fake_provider.names() == ["allocate", "recheck", "book", "book"]


@pytest.mark.asyncio
async def test_booking_without_reference_fails(controller, fake_provider, traveler_details):
    await ready(controller, traveler_details)
    fake_provider.book_response = {"success": True, "data": {"results": {"details": []}}}

    assert await controller.book() is None
    assert controller.state == BookingState.BOOKING_FAILED


@pytest.mark.asyncio
async def test_close_during_reconciliation_discards_the_result(controller, fake_provider, traveler_details):
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    controller.toggle_seat("1", LEG, "12A")
    gate = asyncio.Event()
    fake_provider.gates["allocate"] = gate

    confirm = asyncio.create_task(controller.confirm_ancillaries())
    await asyncio.sleep(0)
    assert controller.state == BookingState.RECONCILING
    first_session = controller.session_id

    controller.close_ancillaries()
    assert controller.state == BookingState.COLLECTING_TRAVELERS
    assert controller.store.selection_set.is_empty()
    await controller.reopen_ancillaries()
    assert controller.session_id > first_session + 1

    gate.set()
    await confirm

    assert controller.state == BookingState.ANCILLARY_SELECTION
    assert controller.result is None
    assert not controller.can_book


@pytest.mark.asyncio
async def test_toggle_during_reconciliation_makes_result_stale(controller, fake_provider, traveler_details):
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    gate = asyncio.Event()
    fake_provider.gates["allocate"] = gate

    confirm = asyncio.create_task(controller.confirm_ancillaries())
    await asyncio.sleep(0)
    assert controller.toggle_meal("1", LEG, "VGML").accepted
    assert controller.state == BookingState.ANCILLARY_SELECTION

    gate.set()
    await confirm

    assert controller.result is None
    assert not controller.can_book


@pytest.mark.asyncio
async def test_guards_on_out_of_order_actions(controller, traveler_details):
    with pytest.raises(BookingStateError):
        controller.toggle_seat("1", LEG, "12A")
    with pytest.raises(BookingStateError):
        await controller.confirm_ancillaries()
    with pytest.raises(BookingStateError):
        await controller.reopen_ancillaries()
    with pytest.raises(BookingStateError):
        await controller.book()

    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    with pytest.raises(BookingStateError):
        await controller.submit_travelers({})


@pytest.mark.asyncio
async def test_booking_ids_fall_back_to_itinerary(controller, fake_provider, traveler_details):
    assert controller.booking_ids() == ("TR-1", "IT-1")

    fake_provider.allocate_response = {}
    await ready(controller, traveler_details)
    await controller.book()

    assert fake_provider.calls[-1] == ("book", "TR-1", "IT-1")


@pytest.mark.asyncio
async def test_price_summary_reports_price_change(controller, fake_provider, traveler_details):
    fake_provider.recheck_response = {"totalAmount": 550, "previousTotalAmount": 500, "isPriceChanged": True}
    await ready(controller, traveler_details)

    summary = controller.price_summary()

    assert summary["fare_total"] == Decimal("550")
    assert summary["ancillaries_total"] == Decimal("25.50")
    assert summary["final_total"] == Decimal("575.50")
    assert summary["previous_fare_total"] == Decimal("500")
    assert summary["price_delta"] == Decimal("50")
    assert summary["price_change_direction"] == "increase"


@pytest.mark.asyncio
async def test_advance_dispatches_actions(controller, traveler_details):
    await controller.advance("submit_travelers", travelers={k: traveler_details[k] for k in ("1", "2")})
    outcome = await controller.advance("toggle_seat", traveler_id="1", leg_key=LEG, code="12A")
    assert outcome.accepted
    outcome = await controller.advance("toggle_baggage", traveler_id="1", direction_index=0, code="BAG20")
    assert outcome.accepted
    assert await controller.advance("confirm_ancillaries") == BookingState.READY_TO_BOOK
    assert await controller.advance("book") is not None

    with pytest.raises(BookingStateError):
        await controller.advance("teleport")


@pytest.mark.asyncio
async def test_session_ids_increase_on_open_close_reopen(controller, traveler_details):
    seen = [controller.session_id]
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    seen.append(controller.session_id)
    controller.close_ancillaries()
    seen.append(controller.session_id)
    await controller.reopen_ancillaries()
    seen.append(controller.session_id)

    assert seen == sorted(set(seen))


@pytest.mark.asyncio
async def test_rerun_after_price_change_keeps_latest_fare_and_ids(controller, fake_provider, traveler_details):
    fake_provider.recheck_response = {"totalAmount": 600, "previousTotalAmount": 500, "isPriceChanged": True}
    await ready(controller, traveler_details)
    assert controller.price_summary()["fare_total"] == Decimal("600")

    assert controller.toggle_meal("1", LEG, "VGML").accepted
    assert controller.price_summary()["fare_total"] == Decimal("600")

    fake_provider.allocate_response = {}
    fake_provider.fail.add("recheck")
    assert await controller.confirm_ancillaries() == BookingState.READY_TO_BOOK

    assert controller.result.status == ReconciliationState.SETTLED_DEGRADED
    assert controller.result.total_amount == Decimal("600")
    assert controller.price_summary()["fare_total"] == Decimal("600")
    second_allocate = [c for c in fake_provider.calls if c[0] == "allocate"][1]
    assert second_allocate[1:3] == ("TR-ALLOC", "IT-ALLOC")

    await controller.book()
    assert fake_provider.calls[-1] == ("book", "TR-ALLOC", "IT-ALLOC")


@pytest.mark.asyncio
async def test_infant_cannot_take_the_adults_seat(one_way_raw, fake_provider, traveler_details):
    one_way_raw["data"]["results"].update({"adultCount": 1, "infantCount": 1})
    controller = BookingController(build_itinerary(one_way_raw), client=fake_provider)
    await controller.submit_travelers({k: traveler_details[k] for k in ("1", "2")})
    assert controller.travelers[1].pax_type == "infant"

    outcome = controller.toggle_seat("2", LEG, "12A")

    assert not outcome.accepted
    assert outcome.error_code == "seat_not_permitted"
    assert controller.toggle_seat("1", LEG, "12B").accepted
