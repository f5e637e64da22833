"""Sync state service - durable per-account, per-domain sync progress.

Every status transition here is committed immediately so the state is
visible to other workers and survives a crash of the current one.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models import Account, SyncState
from models.sync_state import (
    SYNC_DOMAINS,
    SYNC_STATUS_COMPLETE,
    SYNC_STATUS_ERROR,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCING,
)

logger = logging.getLogger(__name__)


class SyncStateService:
    """Service for reading and transitioning SyncState rows."""

    @staticmethod
    def get_state(db: Session, account_id: str, domain: str) -> SyncState | None:
        """Get the sync state for an account/domain, if it exists."""
        return (
            db.query(SyncState)
            .filter(SyncState.account_id == account_id, SyncState.domain == domain)
            .first()
        )

    @staticmethod
    def ensure_state(db: Session, account_id: str, domain: str) -> SyncState:
        """Return the state row, creating it in ``pending`` if missing.

        A concurrent creator losing the unique-constraint race re-reads the
        winner's row instead of failing.
        """
        if domain not in SYNC_DOMAINS:
            raise ValueError(f"Unknown sync domain: {domain!r}")

        state = SyncStateService.get_state(db, account_id, domain)
        if state is not None:
            return state

        try:
            with db.begin_nested():
                state = SyncState(
                    account_id=account_id,
                    domain=domain,
                    status=SYNC_STATUS_PENDING,
                    total_synced=0,
                )
                db.add(state)
        except IntegrityError:
            logger.debug("Sync state for %s/%s created concurrently", account_id, domain)
            state = SyncStateService.get_state(db, account_id, domain)
        db.commit()
        return state

    @staticmethod
    def claim(
        db: Session,
        state: SyncState,
        stale_after_minutes: int | None = None,
    ) -> bool:
        """Atomically move a state to ``syncing``.

        Succeeds unless another attempt already holds a ``syncing`` claim
        that is younger than ``stale_after_minutes`` (a claim older than
        that is treated as abandoned by a crashed worker). The cursor and
        counters are untouched; the previous error is cleared.

        Returns:
            True if this caller now owns the account's sync attempt.
        """
        if stale_after_minutes is None:
            stale_after_minutes = settings.SYNC_STALE_AFTER_MINUTES
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=stale_after_minutes)

        result = db.execute(
            update(SyncState)
            .where(SyncState.id == state.id)
            .where(
                or_(
                    SyncState.status != SYNC_STATUS_SYNCING,
                    SyncState.updated_at < cutoff,
                )
            )
            .values(
                status=SYNC_STATUS_SYNCING,
                error_message=None,
                last_sync_count=0,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(state)
        claimed = result.rowcount == 1
        if not claimed:
            logger.warning(
                "%s sync already in progress for account %s (since %s)",
                state.domain, state.account_id, state.updated_at,
            )
        return claimed

    @staticmethod
    def checkpoint(db: Session, state: SyncState, cursor: str, applied: int) -> None:
        """Persist a new cursor and running total after a page is applied.

        Flushes only; the caller commits together with the page's writes so
        the cursor never moves past data that was not durably applied.
        """
        state.cursor = cursor
        state.total_synced = (state.total_synced or 0) + applied
        state.last_sync_count = (state.last_sync_count or 0) + applied
        state.updated_at = datetime.now(timezone.utc)
        db.flush()

    @staticmethod
    def mark_complete(
        db: Session,
        state: SyncState,
        *,
        cursor: str | None = None,
        count: int | None = None,
    ) -> None:
        """Mark a successful attempt and clear any previous error.

        Args:
            cursor: Final cursor (transactions domain); unchanged if None.
            count: Snapshot size (investments domain); recorded as
                ``last_sync_count`` and added to ``total_synced``.
        """
        now = datetime.now(timezone.utc)
        if cursor is not None:
            state.cursor = cursor
        if count is not None:
            state.last_sync_count = count
            state.total_synced = (state.total_synced or 0) + count
        state.status = SYNC_STATUS_COMPLETE
        state.error_message = None
        state.last_synced_at = now
        state.updated_at = now
        db.commit()

    @staticmethod
    def mark_error(db: Session, state: SyncState, message: str) -> None:
        """Record a failed attempt, keeping the last checkpointed cursor.

        The caller must have rolled back any uncommitted work first, so the
        cursor seen here is the last durable checkpoint.
        """
        state.status = SYNC_STATUS_ERROR
        state.error_message = message
        state.updated_at = datetime.now(timezone.utc)
        db.commit()

    @staticmethod
    def list_states_for_connection(db: Session, connection_id: str) -> list[SyncState]:
        """All sync states of every account under a connection."""
        return (
            db.query(SyncState)
            .join(Account, SyncState.account_id == Account.id)
            .filter(Account.connection_id == connection_id)
            .order_by(Account.name, SyncState.domain)
            .all()
        )
