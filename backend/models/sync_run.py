"""SyncRun / SyncRunEntry models - audit trail of batch sync invocations."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class SyncRun(Base):
    """One invocation of the batch sync driver.

    A run has one entry per connection it attempted.
    """

    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    environment = Column(String, nullable=False)
    started_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime, nullable=True)
    is_complete = Column(Boolean, default=False)
    connections_attempted = Column(Integer, nullable=False, default=0)
    connections_succeeded = Column(Integer, nullable=False, default=0)
    connections_partial = Column(Integer, nullable=False, default=0)
    connections_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    # Relationships
    entries = relationship(
        "SyncRunEntry",
        back_populates="sync_run",
        cascade="all, delete-orphan",
        order_by="SyncRunEntry.created_at",
    )


class SyncRunEntry(Base):
    """Result of syncing a single connection within a batch run."""

    __tablename__ = "sync_run_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    sync_run_id = Column(
        String(36), ForeignKey("sync_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    connection_id = Column(String(36), nullable=False)
    item_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    status = Column(String, nullable=False)  # "success" | "partial" | "failed"
    error_messages = Column(JSON, nullable=True)  # list[str]
    accounts_synced = Column(Integer, default=0)
    accounts_error = Column(Integer, default=0)
    transactions_synced = Column(Integer, default=0)
    holdings_synced = Column(Integer, default=0)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    sync_run = relationship("SyncRun", back_populates="entries")
