"""Transaction model - one aggregator transaction keyed by its natural id."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, JSON, Numeric, String
from sqlalchemy.orm import relationship

from database import Base


class Transaction(Base):
    """A transaction as last reported by the aggregator.

    ``transaction_id`` is the aggregator's id and the upsert key. The
    ``custom_category`` / ``budget_ids`` columns belong to AI
    post-processing and survive upstream modifications.
    """

    __tablename__ = "transactions"

    transaction_id = Column(String, primary_key=True)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    account_name = Column(String, nullable=True)
    date = Column(Date, nullable=False, index=True)
    authorized_date = Column(Date, nullable=True)
    name = Column(String, nullable=False)
    merchant_name = Column(String, nullable=True)
    amount = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    direction = Column(String, nullable=False)  # "debit" | "credit"
    iso_currency_code = Column(String(3), nullable=True)
    aggregator_category = Column(JSON, nullable=True)  # list[str]
    pending = Column(Boolean, nullable=False, default=False)

    # AI post-processing
    custom_category = Column(String, nullable=True)
    categorized_at = Column(DateTime, nullable=True)
    budget_ids = Column(JSON, nullable=False, default=list)  # list[str]
    budgets_updated_at = Column(DateTime, nullable=True)  # set once labelled against all budgets

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="transactions")
