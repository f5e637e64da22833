"""Tests for scripts/run_sync_job.py."""

from unittest.mock import MagicMock, patch

import pytest

from integrations.exceptions import ConfigurationError
from scripts import run_sync_job
from scripts.run_sync_job import JOBS, main, run_job
from services.batch_sync_service import BatchResult, ConnectionSyncOutcome
from services.transaction_sync_service import AccountSyncResult, DomainSyncResult


def _outcome(item_id, account_status="complete", errors=None):
    return ConnectionSyncOutcome(
        connection_id=f"conn-{item_id}",
        item_id=item_id,
        user_id="user-1",
        transactions=DomainSyncResult(
            item_id=item_id,
            domain="transactions",
            accounts=[
                AccountSyncResult(
                    "a1",
                    "Checking",
                    account_status,
                    error=None if account_status == "complete" else "ITEM_LOGIN_REQUIRED",
                )
            ],
        ),
        errors=errors or [],
    )


def _service(*outcomes):
    service = MagicMock()
    service.run_batch.return_value = BatchResult(
        run_id="run-1", environment="production", outcomes=list(outcomes)
    )
    return service


class TestJobs:
    def test_job_environments(self):
        assert JOBS["plaid-sync"].environment == "production"
        assert JOBS["plaid-sync-sandbox"].environment == "sandbox"


class TestRunJob:
    def test_success_exit_code(self, capsys):
        service = _service(_outcome("item-1"), _outcome("item-2"))

        assert run_job(JOBS["plaid-sync"], service) == 0

        service.run_batch.assert_called_once_with("production")
        assert "2 attempted, 2 succeeded" in capsys.readouterr().out

    def test_partial_connections_do_not_fail_job(self, capsys):
        service = _service(_outcome("item-1", errors=["investments: timed out"]))

        assert run_job(JOBS["plaid-sync"], service) == 0

        out = capsys.readouterr().out
        assert "[partial] item-1" in out
        assert "investments: timed out" in out

    def test_failed_connection_fails_job(self, capsys):
        service = _service(_outcome("item-1"), _outcome("item-2", account_status="error"))

        assert run_job(JOBS["plaid-sync"], service) == 1

        assert "[failed] item-2" in capsys.readouterr().out

    def test_configuration_error_fails_job(self, capsys):
        service = MagicMock()
        service.run_batch.side_effect = ConfigurationError("Plaid credentials are not configured")

        assert run_job(JOBS["plaid-sync-sandbox"], service) == 1

        assert "not configured" in capsys.readouterr().out


class TestMain:
    def test_list(self, capsys):
        assert main(["--list"]) == 0
        out = capsys.readouterr().out
        assert "plaid-sync" in out
        assert "plaid-sync-sandbox" in out

    def test_missing_job(self, capsys):
        assert main([]) == 1

    def test_unknown_job(self, capsys):
        assert main(["coinbase-sync"]) == 1
        assert "Unknown job 'coinbase-sync'" in capsys.readouterr().out

    def test_runs_job_and_drains_job_runner(self):
        with patch.object(run_sync_job, "setup_logging"), \
                patch.object(run_sync_job, "init_db") as mock_init, \
                patch.object(run_sync_job, "run_job", return_value=0) as mock_run, \
                patch.object(run_sync_job.job_runner, "shutdown") as mock_shutdown:
            assert main(["plaid-sync-sandbox"]) == 0

        mock_init.assert_called_once()
        mock_run.assert_called_once_with(JOBS["plaid-sync-sandbox"])
        mock_shutdown.assert_called_once_with(wait=True)

    def test_drains_job_runner_on_error(self):
        with patch.object(run_sync_job, "setup_logging"), \
                patch.object(run_sync_job, "init_db"), \
                patch.object(run_sync_job, "run_job", side_effect=RuntimeError("boom")), \
                patch.object(run_sync_job.job_runner, "shutdown") as mock_shutdown:
            with pytest.raises(RuntimeError):
                main(["plaid-sync"])

        mock_shutdown.assert_called_once_with(wait=True)
