"""
Order Store Abstract Base Class

Defines the interface contract of the document store behind the order core.
Both MockOrderStore and SqlOrderStore must implement these methods, so the
order service behaves identically regardless of which store is active.

Design Pattern: Strategy Pattern
    - Development runs against an in-memory store
    - Staging and production run against a SQL database
    - Tests inject failures and latency through the mock

Transactions are optimistic: a transaction function reads documents, buffers
its updates, and the store commits them only if none of the documents it read
changed in the meantime. On conflict the store re-runs the function against
fresh data, up to a fixed number of attempts, then raises
``TransientStoreError``. Errors raised by the function itself abort the
transaction with nothing written and propagate unchanged.

Author: Khalil Bannouri
Version: 1.0.0
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

ORDERS_COLLECTION = "orders"

Document = dict[str, Any]


def apply_update(document: Document, fields: dict[str, Any]) -> Document:
    """
    Apply ``fields`` to ``document`` in place and return it.

    Dotted keys address nested maps, so ``{"statusHistory.processing": ts}``
    adds one history entry without touching the others.
    """
    for path, value in fields.items():
        target = document
        *parents, leaf = path.split(".")
        for key in parents:
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            target = child
        target[leaf] = copy.deepcopy(value)
    return document


class BaseTransaction(ABC):
    """
    Read-modify-write scope handed to a transaction function.

    Attributes:
        timestamp: Store time at which this attempt started. Every field the
            attempt writes should use it, so one commit carries one time.
    """

    def __init__(self, timestamp: datetime):
        self.timestamp = timestamp

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read a document and remember its version for the commit check."""
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Buffer an update of a document previously read in this transaction."""
        pass


TransactionFn = Callable[[BaseTransaction], Awaitable[T]]


class BaseOrderStore(ABC):
    """
    Abstract base class for order stores.

    Example:
        >>> store = create_order_store(settings)
        >>> await store.create("orders", "4821937", {"status": "pending"})
        >>> async def mark(txn):
        ...     doc = await txn.get("orders", "4821937")
        ...     txn.update("orders", "4821937", {"status": "processing"})
        >>> await store.run_transaction(mark)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the store provider.

        Returns:
            str: Provider name (e.g., "mock", "sql")
        """
        pass

    def now(self) -> datetime:
        """Store clock used for server-assigned timestamps."""
        return datetime.now(timezone.utc)

    async def initialize(self) -> None:
        """Prepare the backing storage. Called once at startup."""
        return None

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """
        Read one document outside any transaction.

        Returns:
            A copy of the document, or None when it does not exist
        """
        pass

    @abstractmethod
    async def create(self, collection: str, doc_id: str, data: Document) -> None:
        """
        Create a document only if its id is free.

        Raises:
            DocumentExistsError: a document with this id already exists
            TransientStoreError: network or contention failure
        """
        pass

    @abstractmethod
    async def list(self, collection: str) -> list[Document]:
        """All documents of a collection, newest ``createdAt`` first."""
        pass

    @abstractmethod
    async def run_transaction(self, fn: TransactionFn) -> T:
        """
        Run ``fn`` inside an atomic read-modify-write scope.

        Returns:
            Whatever ``fn`` returned, once its updates are committed

        Raises:
            TransientStoreError: conflicts persisted through the store's own
                re-runs, or the store could not be reached
            Anything ``fn`` raised, with nothing written
        """
        pass

    @abstractmethod
    def watch(self, collection: str) -> AsyncIterator[list[Document]]:
        """
        Live full snapshots of a collection.

        Yields the current snapshot immediately, then a new one after every
        change. Raises ``TransientStoreError`` when the connection is lost;
        closing the iterator releases the underlying resources.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the store.

        Returns:
            bool: True if the store is reachable and operational
        """
        pass

    async def close(self) -> None:
        """Release connections. Called once at shutdown."""
        return None
