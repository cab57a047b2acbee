import asyncio
from datetime import date, datetime, timezone

import pytest

from orderdesk.core.exceptions import (
    CollisionError,
    CorruptDataError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    RetryExhaustedError,
    TransientStoreError,
)
from orderdesk.models import OrderStatus
from orderdesk.schemas import Order
from orderdesk.services.order_ids import ORDER_ID_PATTERN
from orderdesk.services.orders import OrderService
from orderdesk.services.status_machine import can_transition


# =============================================================================
# CREATION
# =============================================================================

async def test_create_order_starts_pending(service, place_order):
    order_id = await place_order(preferred_delivery_time="19:30")

    assert ORDER_ID_PATTERN.match(order_id)
    order = await service.get_order(order_id)
    assert order.status == OrderStatus.PENDING
    assert list(order.status_history) == [OrderStatus.PENDING]
    assert order.status_history[OrderStatus.PENDING] == order.created_at == order.updated_at
    assert order.preferred_delivery_time == "19:30"
    assert order.items[0].line_total == 7000


async def test_create_order_requires_customer(service, items):
    with pytest.raises(InvalidArgumentError, match="customer"):
        await service.create_order(customer=None, items=items, total=6000)


async def test_create_order_requires_items(service, customer):
    with pytest.raises(InvalidArgumentError, match="at least one item"):
        await service.create_order(customer=customer, items=[], total=6000)


async def test_create_order_rejects_malformed_customer(service, items):
    with pytest.raises(InvalidArgumentError, match="customer"):
        await service.create_order(customer={"name": "Awa"}, items=items, total=6000)


async def test_taken_id_raises_collision(store, customer, items):
    service = OrderService(store, id_generator=lambda: "4821937")
    await service.create_order(customer, items, total=6000)
    writes = store.writes

    with pytest.raises(CollisionError) as exc_info:
        await service.create_order(customer, items, total=1000)

    assert exc_info.value.order_id == "4821937"
    assert store.writes == writes
    assert (await service.get_order("4821937")).total == 6000


async def test_exporter_receives_committed_orders(store, customer, items):
    exported = []
    service = OrderService(store, exporter=exported.append)

    order_id = await service.create_order(customer, items, total=6000)
    await service.update_order_status(order_id, "processing")

    assert [(o.id, o.status) for o in exported] == [
        (order_id, OrderStatus.PENDING),
        (order_id, OrderStatus.PROCESSING),
    ]


async def test_failing_exporter_keeps_commit(store, customer, items):
    async def broken_exporter(order):
        raise RuntimeError("broker down")

    service = OrderService(store, exporter=broken_exporter)
    order_id = await service.create_order(customer, items, total=6000)
    order = await service.update_order_status(order_id, "processing")

    assert order.status == OrderStatus.PROCESSING
    assert (await service.get_order(order_id)).status == OrderStatus.PROCESSING


# =============================================================================
# STATUS UPDATES
# =============================================================================

async def test_pending_to_processing(service, place_order):
    order_id = await place_order()
    before = await service.get_order(order_id)

    order = await service.update_order_status(order_id, "processing")

    assert order.status == OrderStatus.PROCESSING
    stored = await service.get_order(order_id)
    assert stored.status == order.status
    assert stored.updated_at == order.updated_at
    assert set(stored.status_history) == {OrderStatus.PENDING, OrderStatus.PROCESSING}
    assert stored.status_history[OrderStatus.PENDING] == before.status_history[OrderStatus.PENDING]
    assert stored.status_history[OrderStatus.PROCESSING] == stored.updated_at
    assert stored.updated_at >= before.updated_at


async def test_full_lifecycle_history_is_ordered(service, place_order):
    order_id = await place_order()
    await service.update_order_status(order_id, "processing")
    await service.update_order_status(order_id, OrderStatus.COMPLETED)

    order = await service.get_order(order_id)
    assert [status for status, _ in order.history()] == [
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.COMPLETED,
    ]
    stamps = [stamp for _, stamp in order.history()]
    assert stamps == sorted(stamps)
    assert order.updated_at == max(stamps)


async def test_completed_order_cannot_be_cancelled(service, store, place_order):
    order_id = await place_order()
    await service.update_order_status(order_id, "processing")
    await service.update_order_status(order_id, "completed")
    before = await store.get("orders", order_id)
    writes = store.writes

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_order_status(order_id, "cancelled")

    assert exc_info.value.current == "completed"
    assert exc_info.value.requested == "cancelled"
    assert await store.get("orders", order_id) == before
    assert store.writes == writes


async def test_pending_cannot_skip_to_completed(service, place_order):
    order_id = await place_order()
    with pytest.raises(InvalidTransitionError):
        await service.update_order_status(order_id, "completed")
    assert (await service.get_order(order_id)).status == OrderStatus.PENDING


async def test_same_status_is_rejected(service, place_order):
    order_id = await place_order()
    with pytest.raises(InvalidTransitionError):
        await service.update_order_status(order_id, "pending")


PATHS_TO = {
    OrderStatus.PENDING: [],
    OrderStatus.PROCESSING: [OrderStatus.PROCESSING],
    OrderStatus.COMPLETED: [OrderStatus.PROCESSING, OrderStatus.COMPLETED],
    OrderStatus.CANCELLED: [OrderStatus.CANCELLED],
}

ILLEGAL_PAIRS = [
    (current, requested)
    for current in OrderStatus
    for requested in OrderStatus
    if not can_transition(current, requested)
]


@pytest.mark.parametrize("current,requested", ILLEGAL_PAIRS)
async def test_illegal_transition_leaves_order_untouched(service, store, sleep, place_order, current, requested):
    order_id = await place_order()
    for status in PATHS_TO[current]:
        await service.update_order_status(order_id, status)
    before = await store.get("orders", order_id)
    writes = store.writes

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_order_status_with_transaction(order_id, requested.value)

    assert exc_info.value.current == current.value
    assert exc_info.value.requested == requested.value
    assert await store.get("orders", order_id) == before
    assert store.writes == writes
    assert sleep.delays == []


def test_every_illegal_pair_is_covered():
    assert len(ILLEGAL_PAIRS) == 12


async def test_missing_order_is_not_created(service, store, sleep):
    writes = store.writes

    with pytest.raises(NotFoundError):
        await service.update_order_status_with_transaction("9999999", "processing")

    assert await store.get("orders", "9999999") is None
    assert store.writes == writes
    assert sleep.delays == []


@pytest.mark.parametrize("order_id,status", [("", "processing"), ("4821937", ""), ("4821937", None)])
async def test_missing_arguments(service, order_id, status):
    with pytest.raises(InvalidArgumentError):
        await service.update_order_status(order_id, status)


async def test_unknown_status_is_invalid_argument(service, place_order):
    order_id = await place_order()
    with pytest.raises(InvalidArgumentError, match="shipped"):
        await service.update_order_status_with_transaction(order_id, "shipped")


async def test_corrupt_order_is_reported(service, store):
    await store.create("orders", "1234567", {"customer": {"name": "Awa"}})

    with pytest.raises(CorruptDataError):
        await service.update_order_status("1234567", "processing")
    assert await store.get("orders", "1234567") == {"customer": {"name": "Awa"}}


async def test_advance_follows_dashboard_flow(service, place_order):
    order_id = await place_order()

    assert (await service.advance_order(order_id)).status == OrderStatus.PROCESSING
    assert (await service.advance_order(order_id)).status == OrderStatus.COMPLETED
    with pytest.raises(InvalidTransitionError):
        await service.advance_order(order_id)


# =============================================================================
# RETRIES
# =============================================================================

async def test_transient_failures_are_retried_with_linear_backoff(service, store, sleep, place_order):
    order_id = await place_order()
    store.fail_next(3)
    writes = store.writes

    order = await service.update_order_status_with_transaction(order_id, "processing")

    assert order.status == OrderStatus.PROCESSING
    assert store.writes - writes == 1
    assert sleep.delays == [1.0, 2.0, 3.0]
    history = (await service.get_order(order_id)).status_history
    assert set(history) == {OrderStatus.PENDING, OrderStatus.PROCESSING}


async def test_retry_budget_exhausted(service, store, sleep, place_order):
    order_id = await place_order()
    store.fail_next(4)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await service.update_order_status_with_transaction(order_id, "processing")

    assert exc_info.value.attempts == 4
    assert isinstance(exc_info.value.__cause__, TransientStoreError)
    assert isinstance(exc_info.value, TransientStoreError)
    assert sleep.delays == [1.0, 2.0, 3.0]
    assert (await service.get_order(order_id)).status == OrderStatus.PENDING


async def test_single_attempt_update_does_not_retry(service, store, sleep, place_order):
    order_id = await place_order()
    store.fail_next(1)

    with pytest.raises(TransientStoreError):
        await service.update_order_status(order_id, "processing")
    assert sleep.delays == []


async def test_semantic_errors_are_not_retried(service, sleep, place_order):
    order_id = await place_order()
    with pytest.raises(InvalidTransitionError):
        await service.update_order_status_with_transaction(order_id, "completed")
    assert sleep.delays == []


# =============================================================================
# CONCURRENCY
# =============================================================================

async def test_racing_terminal_updates_have_one_winner(service, place_order):
    order_id = await place_order()
    await service.update_order_status(order_id, "processing")

    results = await asyncio.gather(
        service.update_order_status_with_transaction(order_id, "completed"),
        service.update_order_status_with_transaction(order_id, "cancelled"),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, Order)]
    losers = [r for r in results if isinstance(r, InvalidTransitionError)]
    assert len(winners) == 1 and len(losers) == 1
    assert losers[0].current == winners[0].status.value

    stored = await service.get_order(order_id)
    assert stored.status == winners[0].status
    assert set(stored.status_history) == {
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        winners[0].status,
    }


async def test_racing_operators_produce_legal_histories(service, place_order):
    order_ids = [await place_order() for _ in range(5)]

    await asyncio.gather(*(
        service.update_order_status_with_transaction(order_id, status)
        for order_id in order_ids
        for status in ("processing", "cancelled")
    ), return_exceptions=True)

    for order_id in order_ids:
        order = await service.get_order(order_id)
        path = [status for status, _ in order.history()]
        assert path in (
            [OrderStatus.PENDING, OrderStatus.PROCESSING],
            [OrderStatus.PENDING, OrderStatus.CANCELLED],
            [OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CANCELLED],
        )
        assert path[-1] == order.status


# =============================================================================
# LISTING, DAILY TRACKING & LIVE FEED
# =============================================================================

async def test_list_orders_filters_and_pages(service, place_order):
    first = await place_order()
    second = await place_order()
    third = await place_order()
    await service.update_order_status(second, "cancelled")

    total, orders = await service.list_orders()
    assert total == 3
    assert [o.id for o in orders] == [third, second, first]

    total, orders = await service.list_orders(status="pending", limit=1)
    assert total == 2
    assert [o.id for o in orders] == [third]

    total, orders = await service.list_orders(skip=1, limit=5)
    assert [o.id for o in orders] == [second, first]


async def test_list_orders_skips_corrupt_documents(service, store, place_order):
    order_id = await place_order()
    await store.create("orders", "1234567", {"id": "1234567", "status": "bogus"})

    total, orders = await service.list_orders()
    assert total == 1
    assert orders[0].id == order_id


async def test_daily_summary(service, clock, place_order, customer):
    await place_order(items=[{"id": "pastels", "name": "Pastels", "price": 1000}], total=1000)
    dinner = await place_order()
    await service.update_order_status(dinner, "processing")

    clock.current = datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
    await place_order()

    summary = await service.daily_summary(day=date(2026, 10, 19))
    assert summary.total_orders == 2
    assert summary.pending_orders == 1

    search = await service.daily_summary(day=date(2026, 10, 19), search="PASTEL")
    assert search.total_orders == 1
    assert search.orders[0].items[0].name == "Pastels"

    by_id = await service.daily_summary(day=date(2026, 10, 19), search=dinner)
    assert [o.id for o in by_id.orders] == [dinner]


async def test_feed_delivers_snapshots(service, place_order):
    feed = service.subscribe_orders()

    first = await feed.__anext__()
    assert first.orders == [] and first.error is None

    order_id = await place_order()
    event = await asyncio.wait_for(feed.__anext__(), timeout=1)
    assert [o.id for o in event.orders] == [order_id]

    await service.update_order_status(order_id, "processing")
    event = await asyncio.wait_for(feed.__anext__(), timeout=1)
    assert event.orders[0].status == OrderStatus.PROCESSING

    await feed.aclose()


async def test_feed_reports_corrupt_documents(service, store, place_order):
    await place_order()
    await store.create("orders", "1234567", {"id": "1234567", "status": "bogus"})

    feed = service.subscribe_orders()
    event = await feed.__anext__()
    await feed.aclose()

    assert len(event.orders) == 1
    assert len(event.corrupt) == 1
    assert "1234567" in event.corrupt[0]


async def test_feed_reconnects_after_failure(service, store, sleep, place_order):
    order_id = await place_order()
    feed = service.subscribe_orders()
    await feed.__anext__()

    store.disconnect_watchers("orders")
    failure = await asyncio.wait_for(feed.__anext__(), timeout=1)
    assert failure.error and failure.orders == []

    resumed = await asyncio.wait_for(feed.__anext__(), timeout=1)
    assert resumed.error is None
    assert [o.id for o in resumed.orders] == [order_id]
    assert sleep.delays == [5.0]

    await feed.aclose()


async def test_closing_feed_releases_watch(service, store):
    feed = service.subscribe_orders()
    await feed.__anext__()
    assert store.watcher_count("orders") == 1

    await feed.aclose()
    assert store.watcher_count("orders") == 0
