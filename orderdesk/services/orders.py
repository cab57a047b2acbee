"""
Order Service

Business logic of the order core, built on top of an order store:
    - create_order: assigns a fresh id and writes the initial pending document
    - update_order_status: one transactional status transition
    - update_order_status_with_transaction: the same, retried on transient
      store failures with linear backoff
    - subscribe_orders: live feed of full order snapshots
    - daily_summary: today's orders for the tracking screen

Every status change goes through one store transaction that reads the order,
validates the move against the status machine and writes status, updatedAt
and the new statusHistory entry together. Two operators racing on the same
order are serialized by the store: the loser re-reads the winner's state.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import inspect
import logging
from datetime import date, datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from orderdesk.core.config import Settings, get_settings
from orderdesk.core.exceptions import (
    CollisionError,
    DocumentExistsError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    CorruptDataError,
    RetryExhaustedError,
    TransientStoreError,
)
from orderdesk.models import OrderStatus
from orderdesk.schemas import DailySummaryResponse, Order, OrderCreate, OrderFeedEvent
from orderdesk.services.order_ids import generate_order_id
from orderdesk.services.status_machine import (
    INITIAL_STATUS,
    next_status,
    parse_status,
    validate_transition,
)
from orderdesk.services.store.base import ORDERS_COLLECTION, BaseOrderStore, BaseTransaction

logger = logging.getLogger(__name__)

Exporter = Callable[[Order], Union[Any, Awaitable[Any]]]


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in error.errors()
    )


class OrderService:
    """
    Order lifecycle operations against an injected store.

    Attributes:
        max_retries: Retries after the first attempt in the retrying updater
        retry_delay: Base backoff delay; attempt ``n`` waits ``n * retry_delay``
        feed_retry_delay: Pause before the live feed reconnects after an error

    Example:
        >>> service = OrderService(MockOrderStore())
        >>> order_id = await service.create_order(customer, items, total=6000)
        >>> await service.update_order_status_with_transaction(order_id, "processing")
    """

    def __init__(
        self,
        store: BaseOrderStore,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        feed_retry_delay: float = 5.0,
        timezone: str = "Africa/Dakar",
        exporter: Optional[Exporter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        id_generator: Callable[[], str] = generate_order_id,
    ):
        self.store = store
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.feed_retry_delay = feed_retry_delay
        self.timezone = ZoneInfo(timezone)
        self._exporter = exporter
        self._sleep = sleep
        self._generate_id = id_generator

    @classmethod
    def from_settings(
        cls,
        store: BaseOrderStore,
        settings: Optional[Settings] = None,
        **overrides: Any,
    ) -> "OrderService":
        settings = settings or get_settings()
        options: dict[str, Any] = {
            "max_retries": settings.status_update_max_retries,
            "retry_delay": settings.status_update_retry_delay,
            "feed_retry_delay": settings.order_feed_retry_delay,
            "timezone": settings.restaurant_timezone,
        }
        options.update(overrides)
        return cls(store, **options)

    # =========================================================================
    # CREATION & READS
    # =========================================================================

    async def create_order(
        self,
        customer: Any,
        items: Any,
        total: int,
        preferred_delivery_time: Optional[str] = None,
    ) -> str:
        """
        Create a pending order and return its id.

        Raises:
            InvalidArgumentError: customer fields or items missing/invalid
            CollisionError: the generated id is taken; call again
            TransientStoreError: the store could not be reached
        """
        if not customer:
            raise InvalidArgumentError("Missing required customer information")
        if not items:
            raise InvalidArgumentError("Order must contain at least one item")

        try:
            payload = OrderCreate.model_validate({
                "customer": customer,
                "items": items,
                "total": total,
                "preferredDeliveryTime": preferred_delivery_time,
            })
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Invalid order: {_describe_validation_error(e)}"
            ) from e

        order_id = self._generate_id()
        now = self.store.now()
        order = Order(
            id=order_id,
            status=INITIAL_STATUS,
            status_history={INITIAL_STATUS: now},
            customer=payload.customer,
            items=payload.items,
            total=payload.total,
            preferred_delivery_time=payload.preferred_delivery_time,
            created_at=now,
            updated_at=now,
        )

        try:
            await self.store.create(ORDERS_COLLECTION, order_id, order.to_document())
        except DocumentExistsError as e:
            logger.warning(f"Order ID collision on {order_id}")
            raise CollisionError(order_id) from e

        logger.info(
            f"Order #{order_id} created for {order.customer.name} "
            f"({len(order.items)} items, total {order.total})"
        )
        await self._export(order)
        return order_id

    async def get_order(self, order_id: str) -> Order:
        if not order_id:
            raise InvalidArgumentError("Order ID is required")
        data = await self.store.get(ORDERS_COLLECTION, order_id)
        if data is None:
            raise NotFoundError(order_id)
        return Order.from_document(data, order_id)

    async def list_orders(
        self,
        status: Union[str, OrderStatus, None] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[int, list[Order]]:
        """
        Orders newest first, optionally filtered by status.

        Returns:
            (number of matching orders, the requested page)
        """
        wanted = parse_status(status) if status else None
        orders = [
            order for order in self._parse_documents(await self.store.list(ORDERS_COLLECTION))[0]
            if wanted is None or order.status == wanted
        ]
        end = None if limit is None else skip + limit
        return len(orders), orders[skip:end]

    def _parse_documents(self, documents: list[dict]) -> tuple[list[Order], list[str]]:
        orders: list[Order] = []
        corrupt: list[str] = []
        for data in documents:
            try:
                orders.append(Order.from_document(data))
            except CorruptDataError as e:
                logger.warning(f"Skipping corrupt order document: {e}")
                corrupt.append(str(e))
        return orders, corrupt

    # =========================================================================
    # STATUS UPDATES
    # =========================================================================

    def _validate_request(self, order_id: str, new_status: Any) -> tuple[str, OrderStatus]:
        if not order_id or not str(order_id).strip() or not new_status:
            raise InvalidArgumentError("Order ID and new status are required")
        return str(order_id).strip(), parse_status(new_status)

    def _transition(self, order_id: str, target: OrderStatus):
        async def apply(txn: BaseTransaction) -> Order:
            data = await txn.get(ORDERS_COLLECTION, order_id)
            if data is None:
                raise NotFoundError(order_id)

            order = Order.from_document(data, order_id)
            validate_transition(order.status, target, order_id=order_id)

            timestamp = txn.timestamp
            stamp = timestamp.isoformat()
            txn.update(ORDERS_COLLECTION, order_id, {
                "status": target.value,
                "updatedAt": stamp,
                f"statusHistory.{target.value}": stamp,
            })
            return order.model_copy(update={
                "status": target,
                "updated_at": timestamp,
                "status_history": {**order.status_history, target: timestamp},
            })

        return apply

    async def update_order_status(self, order_id: str, new_status: Any) -> Order:
        """
        Apply one status transition in a single store transaction.

        Raises:
            InvalidArgumentError, NotFoundError, CorruptDataError,
            InvalidTransitionError, TransientStoreError
        """
        order_id, target = self._validate_request(order_id, new_status)
        order = await self.store.run_transaction(self._transition(order_id, target))
        logger.info(f"Order #{order_id} moved to {target.value}")
        await self._export(order)
        return order

    async def update_order_status_with_transaction(self, order_id: str, new_status: Any) -> Order:
        """
        Apply one status transition, retrying transient store failures.

        Attempt ``n`` that fails transiently is followed by a pause of
        ``n * retry_delay`` seconds. Semantic failures are raised at once.

        Raises:
            RetryExhaustedError: every attempt failed transiently
        """
        order_id, target = self._validate_request(order_id, new_status)
        attempts = self.max_retries + 1
        last_error: Optional[TransientStoreError] = None

        for attempt in range(1, attempts + 1):
            try:
                order = await self.store.run_transaction(self._transition(order_id, target))
            except TransientStoreError as e:
                last_error = e
                logger.warning(
                    f"Status update of order #{order_id} to {target.value} failed "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                if attempt < attempts:
                    await self._sleep(self.retry_delay * attempt)
                continue

            logger.info(f"Order #{order_id} moved to {target.value} (attempt {attempt})")
            await self._export(order)
            return order

        logger.error(f"Giving up on order #{order_id} after {attempts} attempts")
        raise RetryExhaustedError(order_id, attempts, last_error) from last_error

    async def advance_order(self, order_id: str) -> Order:
        """Move an order to its dashboard "next" status."""
        order = await self.get_order(order_id)
        target = next_status(order.status)
        if target is None:
            raise InvalidTransitionError(order.status.value, "next", order_id=order.id)
        return await self.update_order_status_with_transaction(order.id, target)

    # =========================================================================
    # LIVE FEED & DAILY TRACKING
    # =========================================================================

    async def subscribe_orders(self) -> AsyncIterator[OrderFeedEvent]:
        """
        Endless feed of full order snapshots.

        Store failures are delivered as events with ``error`` set, then the
        feed reconnects after ``feed_retry_delay``. Closing the iterator
        closes the store watch.
        """
        while True:
            watcher = self.store.watch(ORDERS_COLLECTION)
            try:
                async for documents in watcher:
                    orders, corrupt = self._parse_documents(documents)
                    yield OrderFeedEvent(orders=orders, corrupt=corrupt, timestamp=self.store.now())
            except Exception as e:
                logger.warning(f"Order feed interrupted: {e}")
                yield OrderFeedEvent(error=str(e) or type(e).__name__, timestamp=self.store.now())
            finally:
                await watcher.aclose()

            await self._sleep(self.feed_retry_delay)
            logger.info("Order feed reconnecting")

    async def daily_summary(
        self,
        day: Optional[date] = None,
        search: Optional[str] = None,
    ) -> DailySummaryResponse:
        """Orders created on ``day`` (restaurant timezone), newest first."""
        day = day or datetime.now(self.timezone).date()
        needle = (search or "").strip().lower()

        _, orders = await self.list_orders()
        todays = []
        for order in orders:
            if order.created_at.astimezone(self.timezone).date() != day:
                continue
            if needle and not (
                needle in order.id.lower()
                or needle in order.customer.name.lower()
                or any(needle in item.name.lower() for item in order.items)
            ):
                continue
            todays.append(order)

        return DailySummaryResponse(
            day=day,
            total_orders=len(todays),
            pending_orders=sum(1 for o in todays if o.status == OrderStatus.PENDING),
            orders=todays,
        )

    # =========================================================================
    # EXPORT HOOK
    # =========================================================================

    async def _export(self, order: Order) -> None:
        """Hand a committed order to the exporter. Never undoes the commit."""
        if self._exporter is None:
            return
        try:
            result = self._exporter(order)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Export of order #{order.id} failed")
