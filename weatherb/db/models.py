"""SQLAlchemy ORM models for the shared job queue and key-value store."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class QueueJob(Base):
    """A unit of queued work.

    ``run_at`` and ``locked_until`` are unix timestamps. A row exists while
    the job is ``pending``, ``active`` or ``dead``; successful jobs are
    deleted so their dedupe key becomes free again.
    """

    __tablename__ = "queue_jobs"
    __table_args__ = (
        UniqueConstraint("queue", "dedupe_key", name="uq_queue_jobs_queue_dedupe"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue = Column(String(64), nullable=False, index=True)
    dedupe_key = Column(String(255), nullable=True)
    payload = Column(JSON, nullable=False)
    state = Column(String(16), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    run_at = Column(Float, nullable=False, index=True)
    locked_until = Column(Float, nullable=True)
    claim_token = Column(String(32), nullable=True)  # owner of the current lease
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<QueueJob(id={self.id}, queue={self.queue}, key={self.dedupe_key}, "
            f"state={self.state}, attempts={self.attempts})>"
        )


class DeadLetter(Base):
    """Terminal record of a job that failed permanently or exhausted its retries."""

    __tablename__ = "dead_letters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, nullable=False, index=True)
    queue = Column(String(64), nullable=False, index=True)
    dedupe_key = Column(String(255), nullable=True)
    payload = Column(JSON, nullable=False)
    attempts = Column(Integer, nullable=False)
    failure_class = Column(String(32), nullable=False)  # "permanent" | "exhausted"
    error = Column(Text, nullable=True)
    replayed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<DeadLetter(id={self.id}, queue={self.queue}, key={self.dedupe_key})>"


class KeyValue(Base):
    """Shared key-value entry (outage sentinel, admin config, city rotation)."""

    __tablename__ = "kv_store"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<KeyValue(key={self.key})>"
