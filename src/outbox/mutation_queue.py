"""
Outbox - Durable Mutation Queue

Persistent store of side-effecting requests the host application could not
deliver. Records are appended by the host, listed in id order, and deleted
only by a successful replay or an explicit remove.
"""
from typing import Any, Dict, List, Union

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
import structlog

from ..shared.exceptions import StorageUnavailable
from ..shared.schemas import QueuedMutation, QueuedMutationCreate
from ..transport.http_client import Request, encode_body
from .database import QueueDatabase
from .models import QueuedMutationRecord

logger = structlog.get_logger(__name__)


class DurableMutationQueue:
    """Append, list and remove queued mutations; each call is its own transaction."""

    def __init__(self, database: QueueDatabase):
        self.database = database

    async def append(self, record: Union[QueuedMutationCreate, Dict[str, Any]]) -> int:
        """
        Persist a mutation and return its auto-assigned id.

        Args:
            record: QueuedMutationCreate or an equivalent dictionary

        Returns:
            The record id
        """
        if not isinstance(record, QueuedMutationCreate):
            record = QueuedMutationCreate.model_validate(record)

        row = QueuedMutationRecord(
            url=record.url,
            method=record.method,
            headers=dict(record.headers),
            body=encode_body(record.body),
        )

        try:
            async with self.database.get_session() as session:
                session.add(row)
                await session.commit()
                record_id = row.id
        except SQLAlchemyError as e:
            logger.error("Failed to append queued mutation", url=record.url, error=str(e))
            raise StorageUnavailable(f"Cannot append to mutation queue: {e}") from e

        logger.info("Queued mutation", record_id=record_id, method=record.method, url=record.url)
        return record_id

    async def enqueue_request(self, request: Request) -> int:
        """Queue an undeliverable request as issued by the host."""
        return await self.append(QueuedMutationCreate(
            url=request.url,
            method=request.method,
            headers=dict(request.headers),
            body=request.body,
        ))

    async def list_all(self) -> List[QueuedMutation]:
        """All queued mutations in insertion (id) order."""
        try:
            async with self.database.get_session() as session:
                result = await session.execute(
                    select(QueuedMutationRecord).order_by(QueuedMutationRecord.id.asc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list queued mutations", error=str(e))
            raise StorageUnavailable(f"Cannot read mutation queue: {e}") from e

        return [QueuedMutation.model_validate(row) for row in rows]

    async def remove(self, record_id: int) -> bool:
        """Delete one record by id; returns whether it existed."""
        try:
            async with self.database.get_session() as session:
                result = await session.execute(
                    delete(QueuedMutationRecord).where(QueuedMutationRecord.id == record_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to remove queued mutation", record_id=record_id, error=str(e))
            raise StorageUnavailable(f"Cannot remove from mutation queue: {e}") from e

        removed = result.rowcount > 0
        logger.debug("Removed queued mutation", record_id=record_id, removed=removed)
        return removed

    async def count(self) -> int:
        try:
            async with self.database.get_session() as session:
                result = await session.execute(select(func.count(QueuedMutationRecord.id)))
                return result.scalar_one()
        except SQLAlchemyError as e:
            logger.error("Failed to count queued mutations", error=str(e))
            raise StorageUnavailable(f"Cannot read mutation queue: {e}") from e
