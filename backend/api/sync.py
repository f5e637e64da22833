"""Sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from integrations.exceptions import ConfigurationError, JobAlreadyRunningError
from models import SyncRun
from models.sync_state import SYNC_DOMAIN_INVESTMENTS, SYNC_DOMAIN_TRANSACTIONS
from schemas import (
    AccountSyncStatusResponse,
    ConnectionSyncStatusResponse,
    JobStatusResponse,
    SyncRunResponse,
    SyncStateResponse,
)
from services.account_service import AccountService
from services.categorization_service import CategorizationService
from services.connection_sync_service import ConnectionSyncService
from services.job_runner import (
    JOB_BATCH_SYNC,
    JOB_CONNECTION_SYNC,
    BackgroundJobRunner,
    get_job_runner,
)
from services.sync_state_service import SyncStateService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_connection_sync_service(
    runner: BackgroundJobRunner = Depends(get_job_runner),
) -> ConnectionSyncService:
    """Get a ConnectionSyncService wired to the process-wide job runner."""
    return ConnectionSyncService(categorization=CategorizationService(runner=runner))


def _connection_sync_work(service: ConnectionSyncService, item_id: str):
    def work(session: Session) -> int:
        outcome = service.run_connection_sync(session, item_id)
        if outcome.status == "failed":
            raise RuntimeError("; ".join(outcome.all_errors) or "connection sync failed")
        return outcome.transactions.records if outcome.transactions else 0

    return work


def _batch_sync_work(service: ConnectionSyncService, environment: str):
    def work(session: Session) -> int:
        result = service.run_batch(environment)
        return result.attempted

    return work


@router.post(
    "/connections/{item_id}", response_model=JobStatusResponse, status_code=202
)
def trigger_connection_sync(
    item_id: str,
    db: Session = Depends(get_db),
    runner: BackgroundJobRunner = Depends(get_job_runner),
    service: ConnectionSyncService = Depends(get_connection_sync_service),
):
    """Start an on-demand sync of one connection.

    Returns as soon as the sync is scheduled; poll the job or the
    connection status for the outcome.

    Raises:
        HTTPException:
            - 400 Bad Request: Aggregator credentials are not configured
            - 404 Not Found: Unknown item id
            - 409 Conflict: A sync for this connection is already running
    """
    if AccountService.get_connection_by_item_id(db, item_id) is None:
        raise HTTPException(status_code=404, detail="Connection not found")

    if not service.client.is_configured():
        raise HTTPException(
            status_code=400,
            detail=f"{service.client.provider_name} credentials are not configured.",
        )

    try:
        return runner.submit(
            db, JOB_CONNECTION_SYNC, item_id, _connection_sync_work(service, item_id)
        )
    except JobAlreadyRunningError:
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress for this connection.",
        )


@router.post("/batch", response_model=JobStatusResponse, status_code=202)
def trigger_batch_sync(
    environment: str = Query(..., description="Only sync connections in this environment"),
    db: Session = Depends(get_db),
    runner: BackgroundJobRunner = Depends(get_job_runner),
    service: ConnectionSyncService = Depends(get_connection_sync_service),
):
    """Start a batch sync of every connection in ``environment``.

    Raises:
        HTTPException:
            - 400 Bad Request: Configuration error (credentials, environment)
            - 409 Conflict: A batch for this environment is already running
    """
    try:
        service.validate_batch(environment)
    except ConfigurationError as e:
        logger.warning("Batch sync rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return runner.submit(
            db, JOB_BATCH_SYNC, environment, _batch_sync_work(service, environment)
        )
    except JobAlreadyRunningError:
        raise HTTPException(
            status_code=409,
            detail="Batch sync already in progress for this environment.",
        )


@router.get("/connections/{item_id}/status", response_model=ConnectionSyncStatusResponse)
def get_connection_sync_status(item_id: str, db: Session = Depends(get_db)):
    """Per-account sync status (both domains) for a connection."""
    connection = AccountService.get_connection_by_item_id(db, item_id)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connection not found")

    states_by_account: dict[str, dict] = {}
    for state in SyncStateService.list_states_for_connection(db, connection.id):
        states_by_account.setdefault(state.account_id, {})[state.domain] = state

    accounts = []
    for account in AccountService.list_accounts_for_connection(db, connection.id):
        states = states_by_account.get(account.id, {})
        txn_state = states.get(SYNC_DOMAIN_TRANSACTIONS)
        inv_state = states.get(SYNC_DOMAIN_INVESTMENTS)
        accounts.append(
            AccountSyncStatusResponse(
                account_id=account.id,
                external_id=account.external_id,
                name=account.name,
                type=account.type,
                subtype=account.subtype,
                transactions=SyncStateResponse.model_validate(txn_state) if txn_state else None,
                investments=SyncStateResponse.model_validate(inv_state) if inv_state else None,
            )
        )

    return ConnectionSyncStatusResponse(
        item_id=connection.item_id,
        user_id=connection.user_id,
        environment=connection.environment,
        institution_name=connection.institution_name,
        accounts=accounts,
    )


@router.get("/runs", response_model=list[SyncRunResponse])
def list_sync_runs(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Recent batch sync runs, newest first."""
    return (
        db.query(SyncRun)
        .order_by(SyncRun.started_at.desc())
        .limit(limit)
        .all()
    )
