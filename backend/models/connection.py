"""Connection model - an authenticated link to one aggregator institution."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Connection(Base):
    """A linked institution (a Plaid Item) owned by one user.

    Connections are created by the onboarding flow and are read-only to the
    sync engine. ``environment`` scopes which scheduled batch picks them up.
    """

    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    access_token = Column(String, nullable=False)
    environment = Column(String, nullable=False, default="sandbox")  # "sandbox" | "production"
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # "active" | "login_required"
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    accounts = relationship(
        "Account",
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
