"""SyncState model - per-account, per-domain sync progress."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

SYNC_DOMAIN_TRANSACTIONS = "transactions"
SYNC_DOMAIN_INVESTMENTS = "investments"
SYNC_DOMAINS = (SYNC_DOMAIN_TRANSACTIONS, SYNC_DOMAIN_INVESTMENTS)

SYNC_STATUS_PENDING = "pending"
SYNC_STATUS_SYNCING = "syncing"
SYNC_STATUS_COMPLETE = "complete"
SYNC_STATUS_ERROR = "error"


class SyncState(Base):
    """Durable sync progress for one account in one domain.

    Exactly one row exists per (account, domain). ``cursor`` is the last
    checkpointed changefeed position and is never cleared by a failure;
    the investments domain has no cursor. ``error_message`` is only set
    while ``status == "error"``.
    """

    __tablename__ = "account_sync_states"
    __table_args__ = (
        UniqueConstraint("account_id", "domain", name="uix_sync_state_account_domain"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    domain = Column(String, nullable=False)  # "transactions" | "investments"
    cursor = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=SYNC_STATUS_PENDING)  # "pending" | "syncing" | "complete" | "error"
    error_message = Column(Text, nullable=True)
    total_synced = Column(Integer, nullable=False, default=0)  # monotonic
    last_sync_count = Column(Integer, nullable=True)  # records applied by the last attempt
    last_synced_at = Column(DateTime, nullable=True)  # last "complete" transition
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="sync_states")

    @property
    def has_cursor(self) -> bool:
        return bool(self.cursor)
