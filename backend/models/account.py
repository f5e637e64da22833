"""Account model - one account under a linked connection."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Account(Base):
    """An account reported by the aggregator for a connection.

    ``external_id`` is the aggregator's account id. ``type`` decides which
    sync domains apply: every account gets transaction sync, ``investment``
    accounts also get holdings sync. Removing an account removes its sync
    states, transactions and holdings.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(
        String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    official_name = Column(String, nullable=True)
    mask = Column(String, nullable=True)  # last 4 digits
    type = Column(String, nullable=True)  # "depository" | "credit" | "loan" | "investment" | ...
    subtype = Column(String, nullable=True)
    current_balance = Column(Numeric(18, 2), nullable=True, default=Decimal("0"))
    available_balance = Column(Numeric(18, 2), nullable=True)
    iso_currency_code = Column(String(3), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    connection = relationship("Connection", back_populates="accounts")
    sync_states = relationship(
        "SyncState",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transactions = relationship(
        "Transaction",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    holdings = relationship(
        "Holding",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_investment(self) -> bool:
        return self.type == "investment"
