"""Batch sync driver - fans a per-connection sync out across connections."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Literal

from sqlalchemy.orm import Session, sessionmaker

from config import settings
from integrations.exceptions import ConfigurationError
from models import Connection, SyncRun, SyncRunEntry
from services.account_service import AccountService
from services.transaction_sync_service import DomainSyncResult

logger = logging.getLogger(__name__)


@dataclass
class ConnectionSyncOutcome:
    """What happened to one connection within a batch (or on-demand) sync."""

    connection_id: str
    item_id: str
    user_id: str
    transactions: DomainSyncResult | None = None
    investments: DomainSyncResult | None = None
    errors: list[str] = field(default_factory=list)  # connection-level errors

    @property
    def all_errors(self) -> list[str]:
        errors = list(self.errors)
        for domain in (self.transactions, self.investments):
            if domain is not None:
                errors.extend(domain.errors)
        return errors

    @property
    def accounts_synced(self) -> int:
        return len(self.transactions.succeeded) if self.transactions else 0

    @property
    def accounts_error(self) -> int:
        return len(self.transactions.failed) if self.transactions else 0

    @property
    def status(self) -> Literal["success", "partial", "failed"]:
        if self.transactions is None or (
            self.transactions.accounts and not self.transactions.succeeded
        ):
            return "failed"
        if self.all_errors:
            return "partial"
        return "success"


SyncFn = Callable[[Session, Connection], ConnectionSyncOutcome]


@dataclass
class BatchResult:
    """Summary of one batch invocation."""

    run_id: str
    environment: str
    outcomes: list[ConnectionSyncOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> list[ConnectionSyncOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    @property
    def partial(self) -> list[ConnectionSyncOutcome]:
        return [o for o in self.outcomes if o.status == "partial"]

    @property
    def succeeded(self) -> list[ConnectionSyncOutcome]:
        return [o for o in self.outcomes if o.status == "success"]


class BatchSyncService:
    """Runs a sync function over every eligible connection.

    Each connection gets its own session so one connection's rollback
    never touches another's work. Errors are caught per connection and
    recorded in the run's audit trail; nothing is retried.
    """

    def __init__(self, session_factory: sessionmaker, max_workers: int | None = None):
        self._session_factory = session_factory
        self._max_workers = max_workers or settings.SYNC_MAX_WORKERS

    def run_batch(
        self,
        environment: str,
        sync_fn: SyncFn,
        ignored_user_ids: frozenset[str] | None = None,
    ) -> BatchResult:
        """Attempt ``sync_fn`` once for every connection in ``environment``.

        Raises:
            ConfigurationError: Propagated from ``sync_fn``; aborts the batch.
        """
        if ignored_user_ids is None:
            ignored_user_ids = settings.ignored_user_ids

        db = self._session_factory()
        try:
            run = SyncRun(environment=environment)
            db.add(run)
            connections = AccountService.list_connections(db, environment, ignored_user_ids)
            targets = [(c.id, c.item_id, c.user_id) for c in connections]
            db.commit()

            result = BatchResult(run_id=run.id, environment=environment)
            logger.info(
                "Batch sync %s: %d connection(s) in %s (max_workers=%d)",
                run.id, len(targets), environment, self._max_workers,
            )

            try:
                for outcome in self._execute(targets, sync_fn):
                    result.outcomes.append(outcome)
                    self._record_entry(db, run, outcome)
            except ConfigurationError as e:
                db.rollback()
                self._finalize(db, run, result, error=str(e))
                raise

            self._finalize(db, run, result)
            logger.info(
                "Batch sync %s finished: %d attempted, %d succeeded, %d partial, %d failed",
                run.id, result.attempted, len(result.succeeded), len(result.partial),
                len(result.failed),
            )
            return result
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, targets: list[tuple[str, str, str]], sync_fn: SyncFn):
        """Yield one outcome per target, sequentially or on a bounded pool."""
        if self._max_workers <= 1 or len(targets) <= 1:
            for target in targets:
                yield self._sync_one(target, sync_fn)
            return

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="batch-sync"
        ) as pool:
            futures = [pool.submit(self._sync_one, target, sync_fn) for target in targets]
            try:
                for future in as_completed(futures):
                    yield future.result()
            except ConfigurationError:
                for future in futures:
                    future.cancel()
                raise

    def _sync_one(self, target: tuple[str, str, str], sync_fn: SyncFn) -> ConnectionSyncOutcome:
        """Run ``sync_fn`` for one connection in its own session."""
        connection_id, item_id, user_id = target
        session = self._session_factory()
        try:
            connection = AccountService.get_connection(session, connection_id)
            if connection is None:
                return ConnectionSyncOutcome(
                    connection_id=connection_id,
                    item_id=item_id,
                    user_id=user_id,
                    errors=["connection no longer exists"],
                )
            return sync_fn(session, connection)
        except ConfigurationError:
            raise
        except Exception as e:
            session.rollback()
            logger.error(
                "Connection sync failed for %s (user %s): %s",
                item_id, user_id, e, exc_info=True,
            )
            return ConnectionSyncOutcome(
                connection_id=connection_id,
                item_id=item_id,
                user_id=user_id,
                errors=[str(e)],
            )
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    @staticmethod
    def _record_entry(db: Session, run: SyncRun, outcome: ConnectionSyncOutcome) -> None:
        db.add(
            SyncRunEntry(
                sync_run_id=run.id,
                connection_id=outcome.connection_id,
                item_id=outcome.item_id,
                user_id=outcome.user_id,
                status=outcome.status,
                error_messages=outcome.all_errors or None,
                accounts_synced=outcome.accounts_synced,
                accounts_error=outcome.accounts_error,
                transactions_synced=outcome.transactions.records if outcome.transactions else 0,
                holdings_synced=outcome.investments.records if outcome.investments else 0,
            )
        )
        db.commit()
        if outcome.status != "success":
            logger.warning(
                "%s: %s (%s)", outcome.item_id, outcome.status, "; ".join(outcome.all_errors),
            )

    @staticmethod
    def _finalize(
        db: Session, run: SyncRun, result: BatchResult, error: str | None = None
    ) -> None:
        run.connections_attempted = result.attempted
        run.connections_succeeded = len(result.succeeded)
        run.connections_partial = len(result.partial)
        run.connections_failed = len(result.failed)
        run.completed_at = datetime.now(timezone.utc)
        run.is_complete = error is None
        run.error_message = error
        db.commit()
