"""Holding model - current investment position per account and security."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Holding(Base):
    """A holding from the latest holdings snapshot.

    Rows for an account are replaced wholesale on every successful
    snapshot sync. Security metadata is denormalized onto the row.
    """

    __tablename__ = "investment_holdings"
    __table_args__ = (
        UniqueConstraint("account_id", "security_id", name="uix_holding_account_security"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    security_id = Column(String, nullable=False)  # aggregator security id
    quantity = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    cost_basis = Column(Numeric(18, 2), nullable=True)
    institution_price = Column(Numeric(18, 4), nullable=True)
    institution_value = Column(Numeric(18, 2), nullable=True)
    institution_price_as_of = Column(Date, nullable=True)
    iso_currency_code = Column(String(3), nullable=True)

    # Security metadata
    ticker = Column(String, nullable=True)
    security_name = Column(String, nullable=True)
    security_type = Column(String, nullable=True)  # "equity" | "etf" | "mutual fund" | "cash" | ...
    security_subtype = Column(String, nullable=True)
    close_price = Column(Numeric(18, 4), nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    account = relationship("Account", back_populates="holdings")
