"""
Local Record Store - the last reconciled entitlement list of each user.

Full replace semantics only: merging happens above the store, never inside it.
"""

from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from entitlement_sync.db.models import EntitlementRecordRow
from entitlement_sync.exceptions import RecordStoreError
from entitlement_sync.models.domain import EntitlementRecord

logger = get_logger(__name__)


class EntitlementRecordStore(Protocol):
    """Durable mapping from product to the last known entitlement record."""

    async def get_all(self, user_id: str) -> list[EntitlementRecord]:
        """Point-in-time snapshot of the user's records."""
        ...

    async def replace_all(self, user_id: str, records: list[EntitlementRecord]) -> None:
        """Atomically swap the user's records for the given list."""
        ...

    async def delete_all(self, user_id: str) -> None:
        """Remove every record of the user."""
        ...


def unique_by_product(records: list[EntitlementRecord]) -> list[EntitlementRecord]:
    """Keep the first record of each product, preserving order."""
    seen: set[str | None] = set()
    unique: list[EntitlementRecord] = []
    for record in records:
        if record.product in seen:
            logger.warning("duplicate_product_record_dropped", product=record.product)
            continue
        seen.add(record.product)
        unique.append(record)
    return unique


class InMemoryEntitlementRecordStore:
    """Process-local store; each replace swaps one immutable tuple."""

    def __init__(self) -> None:
        self._records: dict[str, tuple[EntitlementRecord, ...]] = {}

    async def get_all(self, user_id: str) -> list[EntitlementRecord]:
        return list(self._records.get(user_id, ()))

    async def replace_all(self, user_id: str, records: list[EntitlementRecord]) -> None:
        self._records[user_id] = tuple(unique_by_product(records))

    async def delete_all(self, user_id: str) -> None:
        self._records.pop(user_id, None)


class SqlEntitlementRecordStore:
    """
    PostgreSQL-backed store.

    replace_all deletes and inserts inside a single transaction, so readers
    see either the previous list or the new one, never an empty gap.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_all(self, user_id: str) -> list[EntitlementRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(EntitlementRecordRow)
                    .where(EntitlementRecordRow.user_id == user_id)
                    .order_by(EntitlementRecordRow.position)
                )
                return [row.to_record() for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            logger.error("record_store_read_failed", user_id=user_id, error=str(exc))
            raise RecordStoreError(f"read failed: {exc}") from exc

    async def replace_all(self, user_id: str, records: list[EntitlementRecord]) -> None:
        rows = [
            EntitlementRecordRow.from_record(user_id, position, record)
            for position, record in enumerate(unique_by_product(records))
        ]
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(EntitlementRecordRow).where(EntitlementRecordRow.user_id == user_id)
                    )
                    session.add_all(rows)
        except SQLAlchemyError as exc:
            logger.error("record_store_replace_failed", user_id=user_id, error=str(exc))
            raise RecordStoreError(f"replace failed: {exc}") from exc

        logger.debug("record_store_replaced", user_id=user_id, records=len(rows))

    async def delete_all(self, user_id: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(EntitlementRecordRow).where(EntitlementRecordRow.user_id == user_id)
                    )
        except SQLAlchemyError as exc:
            logger.error("record_store_delete_failed", user_id=user_id, error=str(exc))
            raise RecordStoreError(f"delete failed: {exc}") from exc
