"""BackgroundJob model - processing status of one job-bearing entity."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from database import Base
from models.utils import generate_uuid

JOB_STATUS_IDLE = "idle"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_READY = "ready"
JOB_STATUS_ERROR = "error"


class BackgroundJob(Base):
    """Status record for a (job type, entity) pair.

    Only the job runner mutates this row. ``processing`` acts as the
    exclusion lock for the entity.

    ``rerun_requested`` is set by a trigger that arrived while processing;
    the runner runs the work once more when the current pass finishes.
    """

    __tablename__ = "background_jobs"
    __table_args__ = (
        UniqueConstraint("job_type", "entity_id", name="uix_background_job_type_entity"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    job_type = Column(String, nullable=False)  # e.g. "budget_labeling", "recategorize"
    entity_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default=JOB_STATUS_IDLE)  # "idle" | "processing" | "ready" | "error"
    error_message = Column(Text, nullable=True)
    result_count = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    rerun_requested = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
