"""CategorizationRules model - per-user free-text categorization rules."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid


class CategorizationRules(Base):
    """Custom rules passed to the AI categorizer for one user."""

    __tablename__ = "categorization_rules"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, unique=True, index=True, nullable=False)
    rules = Column(Text, nullable=False, default="")
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
