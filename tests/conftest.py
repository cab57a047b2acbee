import os

# Settings are cached on first use: pin the test environment before any import
os.environ["ENV_MODE"] = "development"
os.environ["EXCEL_EXPORT_ENABLED"] = "false"
os.environ["STATUS_UPDATE_RETRY_DELAY"] = "0"
os.environ["ORDER_FEED_RETRY_DELAY"] = "0"
os.environ["MOCK_STORE_FAILURE_RATE"] = "0"

from datetime import datetime, timedelta, timezone

import pytest

from orderdesk.services.orders import OrderService
from orderdesk.services.store.mock import MockOrderStore


class TickingClock:
    """Clock that advances one second per reading."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return TickingClock(datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return MockOrderStore(clock=clock)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def service(store, sleep):
    return OrderService(store, max_retries=3, retry_delay=1.0, feed_retry_delay=5.0, sleep=sleep)


@pytest.fixture
def customer():
    return {
        "name": "Awa Diop",
        "phone": "+221 77 123 45 67",
        "location": {"lat": 14.6937, "lng": -17.4441},
    }


@pytest.fixture
def items():
    return [
        {
            "id": "dibi-mouton",
            "name": "Dibi Mouton",
            "price": 3000,
            "quantity": 2,
            "extras": ["Oignons", {"id": "frites", "name": "Frites", "price": 500}],
        }
    ]


@pytest.fixture
def place_order(service, customer, items):
    async def place(**overrides):
        data = {"customer": customer, "items": items, "total": 6000}
        data.update(overrides)
        return await service.create_order(**data)

    return place


@pytest.fixture
def order_document():
    """A well-formed stored order document."""
    return {
        "id": "4821937",
        "status": "processing",
        "statusHistory": {
            "pending": "2026-10-19T11:00:00+00:00",
            "processing": "2026-10-19T11:05:00+00:00",
        },
        "customer": {
            "name": "Awa Diop",
            "phone": "+221 77 123 45 67",
            "location": {"lat": 14.6937, "lng": -17.4441},
        },
        "items": [
            {"id": "pastels", "name": "Pastels", "price": 1000, "quantity": 3, "extras": []},
        ],
        "total": 3000,
        "preferredDeliveryTime": "19:30",
        "createdAt": "2026-10-19T11:00:00+00:00",
        "updatedAt": "2026-10-19T11:05:00+00:00",
    }
