"""
SQL Order Store Implementation

Stores order documents in the ``documents`` table through the SQLAlchemy
async engine. Used in staging and production (ENV_MODE=staging/production).

Concurrency control:
    - Transaction reads take a row lock (``SELECT ... FOR UPDATE``) where the
      database supports it
    - Every write is guarded by the version read in the same transaction
      (``UPDATE ... WHERE version = :read_version``); a zero row count means
      another writer committed first and the whole transaction is re-run
    - Creates are plain inserts on the (collection, id) primary key, so an id
      that is already taken fails atomically with an IntegrityError

Error mapping:
    - IntegrityError on create      -> DocumentExistsError
    - OperationalError, InterfaceError, pool timeouts, invalidated
      connections                   -> TransientStoreError

Author: Khalil Bannouri
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from orderdesk.core.exceptions import (
    DocumentExistsError,
    InvalidArgumentError,
    OrderDeskError,
    TransientStoreError,
)
from orderdesk.database import create_session_maker, init_db
from orderdesk.models import DocumentRecord
from orderdesk.services.store.base import (
    BaseOrderStore,
    BaseTransaction,
    Document,
    T,
    TransactionFn,
    apply_update,
)

logger = logging.getLogger(__name__)


class _WriteConflict(Exception):
    """A guarded update matched no row: the document changed since it was read."""


class SqlTransaction(BaseTransaction):
    """Transaction attempt bound to one database session."""

    def __init__(self, session: AsyncSession, timestamp: datetime):
        super().__init__(timestamp)
        self._session = session
        self._reads: dict[tuple[str, str], tuple[int, Document]] = {}
        self._writes: dict[tuple[str, str], dict[str, Any]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        result = await self._session.execute(
            select(DocumentRecord.data, DocumentRecord.version)
            .where(DocumentRecord.collection == collection, DocumentRecord.id == doc_id)
            .with_for_update()
        )
        row = result.first()
        if row is None:
            return None
        self._reads[(collection, doc_id)] = (row.version, copy.deepcopy(row.data))
        return copy.deepcopy(row.data)

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        key = (collection, doc_id)
        if key not in self._reads:
            raise InvalidArgumentError(
                f"Transaction must read {collection}/{doc_id} before updating it"
            )
        self._writes.setdefault(key, {}).update(fields)

    async def flush(self) -> None:
        """Write buffered updates, each guarded by the version it was read at."""
        for (collection, doc_id), fields in self._writes.items():
            version, data = self._reads[(collection, doc_id)]
            new_data = apply_update(copy.deepcopy(data), fields)
            result = await self._session.execute(
                update(DocumentRecord)
                .where(
                    DocumentRecord.collection == collection,
                    DocumentRecord.id == doc_id,
                    DocumentRecord.version == version,
                )
                .values(
                    data=new_data,
                    status=new_data.get("status"),
                    version=version + 1,
                    updated_at=self.timestamp,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _WriteConflict(f"{collection}/{doc_id} changed since version {version}")


class SqlOrderStore(BaseOrderStore):
    """
    SQLAlchemy implementation of the order store.

    Attributes:
        transaction_attempts: Re-runs of a conflicting transaction before giving up
        poll_interval: Seconds between change checks of ``watch``
    """

    def __init__(
        self,
        engine: AsyncEngine,
        transaction_attempts: int = 5,
        poll_interval: float = 2.0,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.engine = engine
        self.transaction_attempts = transaction_attempts
        self.poll_interval = poll_interval
        self._session_maker = session_maker or create_session_maker(engine)

        logger.info(f"SqlOrderStore initialized ({engine.url.render_as_string(hide_password=True)})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "sql"

    async def initialize(self) -> None:
        await init_db(self.engine)

    @asynccontextmanager
    async def _store_errors(self, operation: str):
        """Translate driver failures into the order desk taxonomy."""
        try:
            yield
        except OrderDeskError:
            raise
        except (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError, ConnectionError) as e:
            logger.warning(f"SQL store {operation} failed: {e}")
            raise TransientStoreError(f"Store unavailable during {operation}: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning(f"SQL store {operation} lost its connection: {e}")
                raise TransientStoreError(f"Connection lost during {operation}: {e}") from e
            raise

    # =========================================================================
    # STORE OPERATIONS
    # =========================================================================

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._store_errors("get"):
            async with self._session_maker() as session:
                result = await session.execute(
                    select(DocumentRecord.data).where(
                        DocumentRecord.collection == collection,
                        DocumentRecord.id == doc_id,
                    )
                )
                data = result.scalar_one_or_none()
                return copy.deepcopy(data) if data is not None else None

    async def create(self, collection: str, doc_id: str, data: Document) -> None:
        async with self._store_errors("create"):
            async with self._session_maker() as session:
                now = self.now()
                try:
                    async with session.begin():
                        session.add(DocumentRecord(
                            collection=collection,
                            id=doc_id,
                            data=copy.deepcopy(data),
                            status=data.get("status"),
                            version=1,
                            created_at=now,
                            updated_at=now,
                        ))
                except IntegrityError as e:
                    raise DocumentExistsError(collection, doc_id) from e
        logger.debug(f"SQL: Created {collection}/{doc_id}")

    async def list(self, collection: str) -> list[Document]:
        async with self._store_errors("list"):
            async with self._session_maker() as session:
                result = await session.execute(
                    select(DocumentRecord.data)
                    .where(DocumentRecord.collection == collection)
                    .order_by(DocumentRecord.created_at.desc(), DocumentRecord.id)
                )
                return [copy.deepcopy(data) for data in result.scalars().all()]

    async def run_transaction(self, fn: TransactionFn) -> T:
        for attempt in range(1, self.transaction_attempts + 1):
            async with self._store_errors("transaction"):
                async with self._session_maker() as session:
                    try:
                        async with session.begin():
                            txn = SqlTransaction(session, timestamp=self.now())
                            result = await fn(txn)
                            await txn.flush()
                        return result
                    except _WriteConflict as e:
                        logger.debug(f"SQL: Transaction conflict on attempt {attempt} ({e}), re-running")

        raise TransientStoreError(
            f"Transaction aborted after {self.transaction_attempts} conflicting attempts"
        )

    async def _fingerprint(self, collection: str) -> tuple[int, int]:
        # Row count moves on inserts, the version sum on every update
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count(), func.coalesce(func.sum(DocumentRecord.version), 0))
                .where(DocumentRecord.collection == collection)
            )
            count, versions = result.one()
            return int(count), int(versions)

    async def watch(self, collection: str) -> AsyncIterator[list[Document]]:
        last: Optional[tuple[int, int]] = None
        while True:
            async with self._store_errors("watch"):
                fingerprint = await self._fingerprint(collection)
            if fingerprint != last:
                last = fingerprint
                yield await self.list(collection)
            await asyncio.sleep(self.poll_interval)

    async def health_check(self) -> bool:
        """Verify the database answers a trivial query."""
        try:
            async with self._session_maker() as session:
                await session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"SQL store health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("SQL store connections released")
