"""
Mock Order Store Implementation

Keeps documents in memory with the same optimistic transaction semantics as
the SQL store. Used in development mode (ENV_MODE=development) and by the
test suite to:
    - Run the complete order flow without a database
    - Reproduce write races between concurrent operators
    - Inject transient failures on demand

Behavior:
    - Every document carries a version, bumped on each committed write
    - Transaction reads yield to the event loop, so concurrent transactions
      genuinely interleave between read and commit
    - A commit is checked and applied without suspension, which makes it
      atomic relative to every other coroutine
    - Optional simulated latency and random transient failures

Author: Khalil Bannouri
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from collections import deque
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

from orderdesk.core.exceptions import (
    DocumentExistsError,
    InvalidArgumentError,
    TransientStoreError,
)
from orderdesk.services.store.base import (
    BaseOrderStore,
    BaseTransaction,
    Document,
    T,
    TransactionFn,
    apply_update,
)

logger = logging.getLogger(__name__)


class _StoredDocument:
    __slots__ = ("version", "data")

    def __init__(self, version: int, data: Document):
        self.version = version
        self.data = data


class MockTransaction(BaseTransaction):
    """Transaction attempt against a MockOrderStore."""

    def __init__(self, store: "MockOrderStore", timestamp: datetime):
        super().__init__(timestamp)
        self._store = store
        self._reads: dict[tuple[str, str], Optional[int]] = {}
        self._writes: dict[tuple[str, str], dict[str, Any]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self._store._simulate_latency()
        stored = self._store._collection(collection).get(doc_id)
        self._reads[(collection, doc_id)] = stored.version if stored else None
        data = copy.deepcopy(stored.data) if stored else None
        # Yield after reading so concurrent transactions can read the same version
        await asyncio.sleep(0)
        return data

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        key = (collection, doc_id)
        if key not in self._reads:
            raise InvalidArgumentError(
                f"Transaction must read {collection}/{doc_id} before updating it"
            )
        self._writes.setdefault(key, {}).update(fields)

    def _has_conflict(self) -> bool:
        for (collection, doc_id), version in self._reads.items():
            stored = self._store._collection(collection).get(doc_id)
            current = stored.version if stored else None
            if current != version:
                return True
        return False

    def _commit(self) -> int:
        """Apply buffered writes. Returns the number of documents written."""
        written = 0
        for (collection, doc_id), fields in self._writes.items():
            stored = self._store._collection(collection).get(doc_id)
            if stored is None:
                raise InvalidArgumentError(f"Cannot update missing document {collection}/{doc_id}")
            apply_update(stored.data, fields)
            stored.version += 1
            written += 1
            self._store._notify(collection)
        return written


class MockOrderStore(BaseOrderStore):
    """
    In-memory implementation of the order store.

    Attributes:
        failure_rate: Probability of a simulated transient failure per operation
        min_latency: Minimum simulated round-trip in seconds
        max_latency: Maximum simulated round-trip in seconds
        transaction_attempts: Re-runs of a conflicting transaction before giving up
        writes: Number of committed writes (creates and transaction commits)

    Example:
        >>> store = MockOrderStore()
        >>> store.fail_next(2)  # next two operations raise TransientStoreError
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        transaction_attempts: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max(min_latency, max_latency)
        self.transaction_attempts = transaction_attempts
        self.writes = 0

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_timestamp: Optional[datetime] = None
        self._collections: dict[str, dict[str, _StoredDocument]] = {}
        self._watchers: dict[str, set[asyncio.Queue]] = {}
        self._scheduled_failures: deque[Exception] = deque()

        logger.info(
            f"MockOrderStore initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{self.max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def now(self) -> datetime:
        # Never run backwards, so status history stays in commit order
        current = self._clock()
        if self._last_timestamp is not None and current < self._last_timestamp:
            current = self._last_timestamp
        self._last_timestamp = current
        return current

    # =========================================================================
    # FAILURE INJECTION
    # =========================================================================

    def fail_next(self, count: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``count`` operations raise ``error``."""
        for _ in range(count):
            self._scheduled_failures.append(
                error or TransientStoreError("Simulated store contention")
            )

    def disconnect_watchers(self, collection: str, error: Optional[Exception] = None) -> None:
        """Break every open watch on ``collection``, as a dropped connection would."""
        failure = error or TransientStoreError("Simulated watch disconnect")
        for queue in self._watchers.get(collection, set()):
            queue.put_nowait(failure)

    def watcher_count(self, collection: str) -> int:
        return len(self._watchers.get(collection, set()))

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    async def _before_operation(self, operation: str) -> None:
        await self._simulate_latency()
        if self._scheduled_failures:
            error = self._scheduled_failures.popleft()
            logger.debug(f"Mock: Injected failure on {operation}: {error}")
            raise error
        if self.failure_rate and random.random() < self.failure_rate:
            raise TransientStoreError(f"Simulated transient failure during {operation}")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _collection(self, collection: str) -> dict[str, _StoredDocument]:
        return self._collections.setdefault(collection, {})

    def _notify(self, collection: str) -> None:
        for queue in self._watchers.get(collection, set()):
            queue.put_nowait(None)

    def _snapshot(self, collection: str) -> list[Document]:
        docs = [copy.deepcopy(stored.data) for stored in self._collection(collection).values()]
        docs.sort(key=lambda d: str(d.get("createdAt") or ""), reverse=True)
        return docs

    # =========================================================================
    # STORE OPERATIONS
    # =========================================================================

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self._before_operation("get")
        stored = self._collection(collection).get(doc_id)
        return copy.deepcopy(stored.data) if stored else None

    async def create(self, collection: str, doc_id: str, data: Document) -> None:
        await self._before_operation("create")
        documents = self._collection(collection)
        if doc_id in documents:
            raise DocumentExistsError(collection, doc_id)
        documents[doc_id] = _StoredDocument(version=1, data=copy.deepcopy(data))
        self.writes += 1
        self._notify(collection)
        logger.debug(f"Mock: Created {collection}/{doc_id}")

    async def list(self, collection: str) -> list[Document]:
        await self._before_operation("list")
        return self._snapshot(collection)

    async def run_transaction(self, fn: TransactionFn) -> T:
        await self._before_operation("transaction")

        for attempt in range(1, self.transaction_attempts + 1):
            txn = MockTransaction(self, timestamp=self.now())
            result = await fn(txn)

            # Check and apply without awaiting
            if txn._has_conflict():
                logger.debug(f"Mock: Transaction conflict on attempt {attempt}, re-running")
                continue

            self.writes += txn._commit()
            return result

        raise TransientStoreError(
            f"Transaction aborted after {self.transaction_attempts} conflicting attempts"
        )

    async def watch(self, collection: str) -> AsyncIterator[list[Document]]:
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(collection, set()).add(queue)
        try:
            yield self._snapshot(collection)
            while True:
                signal = await queue.get()
                if isinstance(signal, Exception):
                    raise signal
                # Coalesce bursts of writes into one snapshot
                while not queue.empty():
                    signal = queue.get_nowait()
                    if isinstance(signal, Exception):
                        raise signal
                yield self._snapshot(collection)
        finally:
            self._watchers.get(collection, set()).discard(queue)

    async def health_check(self) -> bool:
        """Mock is always healthy."""
        return True
