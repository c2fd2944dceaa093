"""
Outbox - Database Models

The mutation queue table. Ids come from an AUTOINCREMENT sequence so drain
order is explicit and ids are never reused after deletion.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, LargeBinary
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueuedMutationRecord(Base):
    """
    A side-effecting request that could not be delivered.
    Rows are immutable; they are only ever inserted and deleted.
    """
    __tablename__ = "mutation_queue"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, nullable=False)
    method = Column(String(16), nullable=False)
    headers = Column(JSON, nullable=False, default=dict)
    body = Column(LargeBinary, nullable=True)
    enqueued_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<QueuedMutationRecord(id={self.id}, method='{self.method}', url='{self.url}')>"
