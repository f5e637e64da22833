"""Budget model - a user-defined transaction filter labelled by AI."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid


class Budget(Base):
    """A budget whose membership is decided by matching ``filter_prompt``.

    Processing state lives in ``background_jobs`` (job type
    ``budget_labeling``), not on the budget row.
    """

    __tablename__ = "budgets"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    filter_prompt = Column(Text, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
