"""Pydantic schemas for background job status."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class JobStatusResponse(BaseModel):
    """Persisted status of a background job for one entity."""

    job_type: str
    entity_id: str
    status: str  # "idle" | "processing" | "ready" | "error"
    error_message: Optional[str] = None
    result_count: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rerun_requested: bool = False

    model_config = {"from_attributes": True}


class RecategorizeRequest(BaseModel):
    """Request body for a full recategorization."""

    user_id: str
