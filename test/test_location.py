import asyncio
import math

import pytest

from _fakes import CUSTOMER, OTHER_CUSTOMER, PLUMBER, PLUMBER_2, PausedReadStore, draft, order_in, run
from komek.engine import OrderLifecycleEngine
from komek.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from komek.location import LocationTracker
from komek.memory_store import InMemoryOrderStore
from komek.order_state import OrderStatus


def _setup():
    store = InMemoryOrderStore()
    return OrderLifecycleEngine(store), LocationTracker(store), store


def test_full_job_scenario():
    async def scenario():
        engine, tracker, _ = _setup()
        order = await engine.create(CUSTOMER, draft("santehnik"))
        assert order.status is OrderStatus.OPEN and order.specialist_id is None
        order = await engine.claim(order.id, PLUMBER)
        assert order.status is OrderStatus.ACCEPTED and order.specialist_id == "s1"
        order = await engine.set_in_progress(order.id, PLUMBER)
        assert order.status is OrderStatus.IN_PROGRESS
        order = await tracker.report_location(order.id, PLUMBER, "specialist", 55.75, 37.61)
        assert order.to_projection()["specialistLatitude"] == 55.75
        assert order.status is OrderStatus.IN_PROGRESS
        order = await engine.complete(order.id, PLUMBER)
        assert order.status is OrderStatus.COMPLETED
        with pytest.raises(InvalidStateError):
            await tracker.report_location(order.id, PLUMBER, "specialist", 55.76, 37.62)
    run(scenario())


@pytest.mark.parametrize("status", ["accepted", "in_progress"])
def test_reports_overwrite_only_their_side(status):
    async def scenario():
        engine, tracker, store = _setup()
        order = await order_in(engine, status)
        await tracker.report_location(order.id, CUSTOMER, "customer", 43.2, 76.8)
        await tracker.report_location(order.id, PLUMBER, "specialist", 43.3, 76.9)
        updated = await tracker.report_location(order.id, PLUMBER, "specialist", "43.31", "76.91")
        assert updated.customer_location.latitude == 43.2
        assert updated.customer_location.longitude == 76.8
        assert updated.specialist_location.latitude == 43.31
        assert updated.specialist_location.longitude == 76.91
        assert updated.specialist_location.updated_at is not None
        assert updated.status.value == status
        assert await store.get_by_id(order.id) == updated
    run(scenario())


@pytest.mark.parametrize("status", ["open", "completed", "cancelled"])
def test_reports_outside_active_states_fail(status):
    async def scenario():
        engine, tracker, store = _setup()
        order = await order_in(engine, status)
        with pytest.raises(InvalidStateError) as info:
            await tracker.report_location(order.id, CUSTOMER, "customer", 10, 10)
        assert info.value.current_status == status
        assert (await store.get_by_id(order.id)).customer_location is None
    run(scenario())


def test_reporter_must_match_role():
    async def scenario():
        engine, tracker, _ = _setup()
        order = await order_in(engine, "accepted")
        with pytest.raises(ForbiddenError):
            await tracker.report_location(order.id, OTHER_CUSTOMER, "customer", 1, 1)
        with pytest.raises(ForbiddenError):
            await tracker.report_location(order.id, PLUMBER, "customer", 1, 1)
        with pytest.raises(ForbiddenError):
            await tracker.report_location(order.id, PLUMBER_2, "specialist", 1, 1)
        with pytest.raises(ForbiddenError):
            await tracker.report_location(order.id, CUSTOMER, "specialist", 1, 1)
    run(scenario())


def test_released_specialist_cannot_report():
    async def scenario():
        engine, tracker, _ = _setup()
        order = await order_in(engine, "accepted")
        await engine.release(order.id, PLUMBER)
        with pytest.raises(ForbiddenError):
            await tracker.report_location(order.id, PLUMBER, "specialist", 1, 1)
    run(scenario())


@pytest.mark.parametrize("lat,lng", [
    (None, 10),
    (10, None),
    (math.nan, 10),
    (10, math.inf),
    (90.01, 0),
    (-91, 0),
    (0, 180.5),
    (0, -181),
    ("north", 10),
    (True, 10),
    ([1], 10),
])
def test_bad_coordinates(lat, lng):
    async def scenario():
        engine, tracker, _ = _setup()
        order = await order_in(engine, "accepted")
        with pytest.raises(ValidationError):
            await tracker.report_location(order.id, PLUMBER, "specialist", lat, lng)
    run(scenario())


def test_bounds_are_inclusive():
    async def scenario():
        engine, tracker, _ = _setup()
        order = await order_in(engine, "accepted")
        updated = await tracker.report_location(order.id, PLUMBER, "specialist", -90, 180)
        assert updated.specialist_location.latitude == -90.0
    run(scenario())


def test_unknown_order():
    async def scenario():
        _, tracker, _ = _setup()
        with pytest.raises(NotFoundError):
            await tracker.report_location("nope", PLUMBER, "specialist", 1, 1)
    run(scenario())


@pytest.mark.parametrize("reclaimed", [False, True])
def test_stale_specialist_report_after_release_writes_nothing(reclaimed):
    async def scenario():
        store = PausedReadStore()
        engine, tracker = OrderLifecycleEngine(store), LocationTracker(store)
        order = await order_in(engine, "in_progress")
        resume = store.pause_next_read()
        stale = asyncio.create_task(tracker.report_location(order.id, PLUMBER, "specialist", 43.3, 76.9))
        await asyncio.sleep(0)  # report has read s1 on an active order
        await engine.release(order.id, CUSTOMER)
        if reclaimed:
            await engine.claim(order.id, PLUMBER_2)
        resume.set()
        with pytest.raises(ForbiddenError):
            await stale
        stored = await store.get_by_id(order.id)
        assert stored.specialist_location is None
        assert stored.specialist_id == ("s3" if reclaimed else None)
        assert stored.status is (OrderStatus.ACCEPTED if reclaimed else OrderStatus.OPEN)
    run(scenario())


def test_stale_customer_report_after_cancel_writes_nothing():
    async def scenario():
        store = PausedReadStore()
        engine, tracker = OrderLifecycleEngine(store), LocationTracker(store)
        order = await order_in(engine, "accepted")
        resume = store.pause_next_read()
        stale = asyncio.create_task(tracker.report_location(order.id, CUSTOMER, "customer", 43.2, 76.8))
        await asyncio.sleep(0)
        await engine.cancel(order.id, CUSTOMER)
        resume.set()
        with pytest.raises(InvalidStateError):
            await stale
        stored = await store.get_by_id(order.id)
        assert stored.status is OrderStatus.CANCELLED
        assert stored.customer_location is None
    run(scenario())
