"""
Order Store Factory

Provides a single entry point for building the document store behind the
order service. The factory pattern allows the rest of the application to
remain agnostic about which implementation is being used.

Usage:
    from orderdesk.services.store import create_order_store

    # Returns MockOrderStore or SqlOrderStore based on ENV_MODE
    store = create_order_store(settings)
    await store.initialize()
    ...
    await store.close()

The store is built once by the application lifespan and handed to the order
service; there is no module-level instance.

Environment Switching:
    - ENV_MODE=development → MockOrderStore (in memory)
    - ENV_MODE=staging → SqlOrderStore (staging database)
    - ENV_MODE=production → SqlOrderStore (live database)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional

from orderdesk.core.config import Settings, get_settings
from orderdesk.database import create_engine
from orderdesk.services.store.base import (
    ORDERS_COLLECTION,
    BaseOrderStore,
    BaseTransaction,
    apply_update,
)
from orderdesk.services.store.mock import MockOrderStore
from orderdesk.services.store.sql import SqlOrderStore

logger = logging.getLogger(__name__)


def create_order_store(settings: Optional[Settings] = None) -> BaseOrderStore:
    """
    Build the configured order store.

    Returns:
        BaseOrderStore: MockOrderStore in development, SqlOrderStore otherwise
    """
    settings = settings or get_settings()

    if settings.is_development:
        logger.info("Order Store: Using MockOrderStore (development mode)")
        return MockOrderStore(
            failure_rate=settings.mock_store_failure_rate,
            min_latency=settings.mock_store_min_latency,
            max_latency=settings.mock_store_max_latency,
            transaction_attempts=settings.store_transaction_attempts,
        )

    logger.info(
        f"Order Store: Using SqlOrderStore "
        f"({settings.env_mode.value} mode)"
    )
    return SqlOrderStore(
        create_engine(settings),
        transaction_attempts=settings.store_transaction_attempts,
        poll_interval=settings.order_feed_poll_interval,
    )


__all__ = [
    "create_order_store",
    "ORDERS_COLLECTION",
    "BaseOrderStore",
    "BaseTransaction",
    "apply_update",
    "MockOrderStore",
    "SqlOrderStore",
]
