"""Background job runner - fire-and-forget work with a persisted status.

Triggering a job claims the entity's ``background_jobs`` row
(``processing``), commits, hands the work to a thread pool and returns.
The worker opens its own session and finishes the row as ``ready`` or
``error``. Callers learn the outcome only by reading the row.
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from config import settings
from integrations.exceptions import JobAlreadyRunningError
from models import BackgroundJob
from models.background_job import (
    JOB_STATUS_ERROR,
    JOB_STATUS_IDLE,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_READY,
)

logger = logging.getLogger(__name__)

JOB_CONNECTION_SYNC = "connection_sync"
JOB_BATCH_SYNC = "batch_sync"
JOB_BUDGET_LABELING = "budget_labeling"
JOB_RECATEGORIZE = "recategorize"
JOB_CATEGORIZE_UNCATEGORIZED = "categorize_uncategorized"
JOB_LABEL_NEW_TRANSACTIONS = "label_new_transactions"

JOB_TYPES = (
    JOB_CONNECTION_SYNC,
    JOB_BATCH_SYNC,
    JOB_BUDGET_LABELING,
    JOB_RECATEGORIZE,
    JOB_CATEGORIZE_UNCATEGORIZED,
    JOB_LABEL_NEW_TRANSACTIONS,
)

# Bounded retries when a trigger races a job that is just finishing
RERUN_REQUEST_ATTEMPTS = 3

# Work receives a fresh session and returns an optional result count.
JobWork = Callable[[Session], int | None]


class JobStatusService:
    """Reads and transitions BackgroundJob rows."""

    @staticmethod
    def get_job(db: Session, job_type: str, entity_id: str) -> BackgroundJob | None:
        return (
            db.query(BackgroundJob)
            .filter(BackgroundJob.job_type == job_type, BackgroundJob.entity_id == entity_id)
            .first()
        )

    @staticmethod
    def _ensure_job(db: Session, job_type: str, entity_id: str) -> BackgroundJob:
        job = JobStatusService.get_job(db, job_type, entity_id)
        if job is not None:
            return job
        try:
            with db.begin_nested():
                job = BackgroundJob(job_type=job_type, entity_id=entity_id, status=JOB_STATUS_IDLE)
                db.add(job)
        except IntegrityError:
            job = JobStatusService.get_job(db, job_type, entity_id)
        return job

    @staticmethod
    def claim(
        db: Session,
        job_type: str,
        entity_id: str,
        stale_after_minutes: int | None = None,
    ) -> BackgroundJob:
        """Atomically mark an entity ``processing`` and commit.

        A ``processing`` row older than ``stale_after_minutes`` is assumed
        abandoned (e.g. the process died) and may be taken over.

        Raises:
            JobAlreadyRunningError: If the entity is already processing.
        """
        if stale_after_minutes is None:
            stale_after_minutes = settings.JOB_STALE_AFTER_MINUTES
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=stale_after_minutes)

        job = JobStatusService._ensure_job(db, job_type, entity_id)
        result = db.execute(
            update(BackgroundJob)
            .where(BackgroundJob.id == job.id)
            .where(
                or_(
                    BackgroundJob.status != JOB_STATUS_PROCESSING,
                    BackgroundJob.started_at < cutoff,
                )
            )
            .values(
                status=JOB_STATUS_PROCESSING,
                error_message=None,
                result_count=None,
                started_at=now,
                completed_at=None,
                rerun_requested=False,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            logger.info("%s job for %s already processing, rejecting trigger", job_type, entity_id)
            raise JobAlreadyRunningError(job_type, entity_id)
        db.refresh(job)
        return job

    @staticmethod
    def request_rerun(db: Session, job_type: str, entity_id: str) -> bool:
        """Ask a processing job to run its work once more when it finishes.

        Returns:
            False if the entity is not processing, so there is nothing to flag.
        """
        result = db.execute(
            update(BackgroundJob)
            .where(BackgroundJob.job_type == job_type, BackgroundJob.entity_id == entity_id)
            .where(BackgroundJob.status == JOB_STATUS_PROCESSING)
            .values(rerun_requested=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def take_rerun_request(db: Session, job_id: str) -> bool:
        """Clear a pending rerun flag; True if one was set."""
        result = db.execute(
            update(BackgroundJob)
            .where(BackgroundJob.id == job_id, BackgroundJob.rerun_requested.is_(True))
            .values(rerun_requested=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def mark_ready(db: Session, job_id: str, result_count: int | None = None) -> None:
        job = db.get(BackgroundJob, job_id)
        job.status = JOB_STATUS_READY
        job.result_count = result_count
        job.error_message = None
        job.completed_at = datetime.now(timezone.utc)
        db.commit()

    @staticmethod
    def mark_error(db: Session, job_id: str, message: str) -> None:
        job = db.get(BackgroundJob, job_id)
        job.status = JOB_STATUS_ERROR
        job.error_message = message
        job.completed_at = datetime.now(timezone.utc)
        db.commit()


class BackgroundJobRunner:
    """Submits job work to an executor after claiming the entity."""

    def __init__(
        self,
        session_factory: sessionmaker,
        executor: Executor | None = None,
    ):
        self._session_factory = session_factory
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.JOB_MAX_WORKERS, thread_name_prefix="job"
        )

    def submit(
        self,
        db: Session,
        job_type: str,
        entity_id: str,
        work: JobWork,
    ) -> BackgroundJob:
        """Claim ``(job_type, entity_id)`` and schedule ``work``.

        Returns as soon as the work is scheduled, with the job row in
        ``processing``.

        Raises:
            JobAlreadyRunningError: If the entity is already processing;
                ``work`` is not scheduled.
        """
        job = JobStatusService.claim(db, job_type, entity_id)
        job_id = job.id
        try:
            self._executor.submit(self._run, job_id, job_type, entity_id, work)
        except RuntimeError as e:
            # Executor already shut down
            JobStatusService.mark_error(db, job_id, f"Could not schedule job: {e}")
            raise
        logger.info("Started %s job for %s (job %s)", job_type, entity_id, job_id)
        return job

    def submit_or_rerun(
        self,
        db: Session,
        job_type: str,
        entity_id: str,
        work: JobWork,
    ) -> BackgroundJob | None:
        """Like :meth:`submit`, but a busy entity is flagged instead of rejected.

        When the entity is already processing, the running job is asked to
        run its own work once more after it finishes, and None is returned.
        Only suitable for work that re-reads its input on every pass.

        Raises:
            JobAlreadyRunningError: If the job kept finishing and restarting
                between the claim and the flag on every attempt.
        """
        for _ in range(RERUN_REQUEST_ATTEMPTS):
            try:
                return self.submit(db, job_type, entity_id, work)
            except JobAlreadyRunningError:
                if JobStatusService.request_rerun(db, job_type, entity_id):
                    logger.info("%s job for %s busy; rerun requested", job_type, entity_id)
                    return None
        raise JobAlreadyRunningError(job_type, entity_id)

    def _run(self, job_id: str, job_type: str, entity_id: str, work: JobWork) -> None:
        """Worker body: run the work, then record ``ready`` or ``error``."""
        session = self._session_factory()
        try:
            try:
                count = work(session)
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(
                    "%s job for %s failed: %s", job_type, entity_id, e, exc_info=True,
                )
                JobStatusService.mark_error(session, job_id, str(e) or type(e).__name__)
            else:
                JobStatusService.mark_ready(session, job_id, count)
                logger.info("%s job for %s ready (%s)", job_type, entity_id, count)

            if JobStatusService.take_rerun_request(session, job_id):
                logger.info("Rerunning %s job for %s", job_type, entity_id)
                self.submit_or_rerun(session, job_type, entity_id, work)
        except Exception:
            # Nobody awaits this thread; a failed status write is only logged
            logger.exception("Failed to record status of %s job %s", job_type, job_id)
        finally:
            session.close()

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down background job runner")
        self._executor.shutdown(wait=wait)


_runner: BackgroundJobRunner | None = None
_runner_lock = threading.Lock()


def get_job_runner() -> BackgroundJobRunner:
    """Return the process-wide job runner, creating it on first use."""
    global _runner
    with _runner_lock:
        if _runner is None:
            from database import get_session_local

            _runner = BackgroundJobRunner(get_session_local())
        return _runner


def shutdown(wait: bool = True) -> None:
    """Shut down the process-wide runner, if one was created."""
    global _runner
    with _runner_lock:
        if _runner is not None:
            _runner.shutdown(wait=wait)
            _runner = None
