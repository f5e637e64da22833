#!/usr/bin/env python
"""Scheduled sync job runner.

Runs one named batch sync job, meant to be invoked by cron. Exits
non-zero on a configuration error or when any connection failed, so the
scheduler can alert.

Usage:
    python -m scripts.run_sync_job plaid-sync
    python -m scripts.run_sync_job plaid-sync-sandbox
    python -m scripts.run_sync_job --list
"""

import argparse
import logging
import sys
from dataclasses import dataclass

from database import init_db
from integrations.exceptions import ConfigurationError
from logging_config import setup_logging
from services import job_runner
from services.batch_sync_service import BatchResult
from services.categorization_service import CategorizationService
from services.connection_sync_service import ConnectionSyncService

logger = logging.getLogger(__name__)


@dataclass
class SyncJob:
    name: str
    environment: str
    description: str


JOBS: dict[str, SyncJob] = {
    job.name: job
    for job in (
        SyncJob("plaid-sync", "production", "Sync all production Plaid connections"),
        SyncJob("plaid-sync-sandbox", "sandbox", "Sync all sandbox Plaid connections"),
    )
}


def print_jobs() -> None:
    """Print the available job names."""
    print("Available jobs:")
    for job in JOBS.values():
        print(f"  {job.name:<22} {job.description} (environment={job.environment})")


def print_result(result: BatchResult) -> None:
    """Print a one-line-per-connection summary of a batch."""
    print(f"Run {result.run_id} ({result.environment})")
    print(
        f"  {result.attempted} attempted, {len(result.succeeded)} succeeded, "
        f"{len(result.partial)} partial, {len(result.failed)} failed"
    )
    for outcome in result.outcomes:
        if outcome.status == "success":
            continue
        print(f"  [{outcome.status}] {outcome.item_id} (user {outcome.user_id})")
        for err in outcome.all_errors:
            print(f"      {err}")


def run_job(job: SyncJob, service: ConnectionSyncService | None = None) -> int:
    """Run ``job`` and return the process exit code."""
    if service is None:
        service = ConnectionSyncService(
            categorization=CategorizationService(runner=job_runner.get_job_runner())
        )

    try:
        result = service.run_batch(job.environment)
    except ConfigurationError as e:
        logger.error("%s aborted: %s", job.name, e)
        print(f"Error: {e}")
        return 1

    print_result(result)
    if result.failed:
        logger.error("%s: %d connection(s) failed", job.name, len(result.failed))
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point: parse args and run the selected job."""
    parser = argparse.ArgumentParser(
        description="Run a scheduled sync job.",
    )
    parser.add_argument(
        "job",
        nargs="?",
        help="Job name (see --list)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List available jobs and exit",
    )
    args = parser.parse_args(argv)

    if args.list:
        print_jobs()
        return 0

    if not args.job:
        parser.print_usage()
        print_jobs()
        return 1

    job = JOBS.get(args.job)
    if job is None:
        print(f"Error: Unknown job '{args.job}'.")
        print_jobs()
        return 1

    setup_logging()
    init_db()
    try:
        return run_job(job)
    finally:
        # Let post-sync categorization jobs finish before exiting
        job_runner.shutdown(wait=True)


if __name__ == "__main__":
    sys.exit(main())
