"""Background job API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from integrations.exceptions import JobAlreadyRunningError
from models import Budget
from schemas import JobStatusResponse, RecategorizeRequest
from services.categorization_service import CategorizationService
from services.job_runner import (
    JOB_TYPES,
    BackgroundJobRunner,
    JobStatusService,
    get_job_runner,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def get_categorization_service(
    runner: BackgroundJobRunner = Depends(get_job_runner),
) -> CategorizationService:
    """Get a CategorizationService wired to the process-wide job runner."""
    return CategorizationService(runner=runner)


def _require_configured(service: CategorizationService) -> None:
    if not service.is_configured():
        raise HTTPException(
            status_code=400,
            detail="AI categorization is not configured (ANTHROPIC_API_KEY).",
        )


@router.post("/budgets/{budget_id}", response_model=JobStatusResponse, status_code=202)
def trigger_budget_processing(
    budget_id: str,
    db: Session = Depends(get_db),
    service: CategorizationService = Depends(get_categorization_service),
):
    """Start (re)labelling transactions for a budget.

    Raises:
        HTTPException:
            - 400 Bad Request: AI categorization not configured
            - 404 Not Found: Unknown budget
            - 409 Conflict: The budget is already processing
    """
    if db.get(Budget, budget_id) is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    _require_configured(service)

    try:
        return service.start_budget_processing(db, budget_id)
    except JobAlreadyRunningError:
        raise HTTPException(status_code=409, detail="Budget is already processing.")


@router.post("/recategorize", response_model=JobStatusResponse, status_code=202)
def trigger_recategorization(
    request: RecategorizeRequest,
    db: Session = Depends(get_db),
    service: CategorizationService = Depends(get_categorization_service),
):
    """Start recategorizing all of a user's transactions.

    Raises:
        HTTPException:
            - 400 Bad Request: AI categorization not configured
            - 409 Conflict: A recategorization is already processing
    """
    _require_configured(service)
    try:
        return service.start_recategorization(db, request.user_id)
    except JobAlreadyRunningError:
        raise HTTPException(
            status_code=409, detail="Recategorization already in progress."
        )


@router.get("/{job_type}/{entity_id}", response_model=JobStatusResponse)
def get_job_status(job_type: str, entity_id: str, db: Session = Depends(get_db)):
    """Current status of a background job."""
    if job_type not in JOB_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown job type: {job_type}")
    job = JobStatusService.get_job(db, job_type, entity_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job has never run for this entity")
    return job
