"""Tests for CategorizationService (AI post-processing jobs)."""

from datetime import date

import pytest

from integrations.aggregator_protocol import TransactionsPage
from integrations.categorization_client import CategorizedTransaction
from integrations.exceptions import JobAlreadyRunningError
from models import Budget, CategorizationRules, Transaction
from services.categorization_service import CategorizationService, transaction_payload
from services.job_runner import (
    JOB_BUDGET_LABELING,
    JOB_CATEGORIZE_UNCATEGORIZED,
    JOB_LABEL_NEW_TRANSACTIONS,
    JOB_RECATEGORIZE,
    JobStatusService,
)
from services.transaction_service import TransactionService
from tests.fixtures import make_transaction
from tests.fixtures.mocks import MockCategorizationClient


@pytest.fixture
def stored_transactions(db, checking_account):
    """Three stored transactions for user-1."""
    page = TransactionsPage(
        added=[
            make_transaction("tx-coffee", name="Blue Bottle", txn_date=date(2026, 3, 3)),
            make_transaction("tx-rent", amount="1800.00", name="Rent", txn_date=date(2026, 3, 1)),
            make_transaction("tx-pay", amount="-2500.00", name="Payroll", txn_date=date(2026, 3, 2)),
        ],
        next_cursor="c1",
    )
    TransactionService.apply_page(db, checking_account, page)
    db.commit()
    return ["tx-coffee", "tx-rent", "tx-pay"]


def _txn(db, transaction_id):
    db.expire_all()
    return db.get(Transaction, transaction_id)


class CallbackCategorizationClient(MockCategorizationClient):
    """Runs ``before_first_call`` while the first batch is in flight."""

    def __init__(self, before_first_call, **kwargs):
        super().__init__(**kwargs)
        self.before_first_call = before_first_call

    def categorize(self, transactions, rules=None):
        if not self.categorize_calls:
            self.before_first_call()
        return super().categorize(transactions, rules)


class TestTransactionPayload:
    def test_payload_fields(self, db, stored_transactions):
        payload = transaction_payload(_txn(db, "tx-rent"))

        assert payload["transaction_id"] == "tx-rent"
        assert payload["description"] == "Rent"
        assert payload["amount"] == "1800.00"
        assert payload["direction"] == "debit"
        assert payload["date"] == "2026-03-01"
        assert payload["category"] == "Shops"
        assert payload["account_name"] == "Everyday Checking"


class TestCategorize:
    def test_categorizes_only_uncategorized(self, db, stored_transactions):
        txn = _txn(db, "tx-rent")
        txn.custom_category = "Housing"
        db.commit()
        client = MockCategorizationClient(category="Misc")

        count = CategorizationService(client=client).categorize_uncategorized(db, "user-1")
        db.commit()

        assert count == 2
        assert sorted(client.categorize_calls[0]) == ["tx-coffee", "tx-pay"]
        assert _txn(db, "tx-rent").custom_category == "Housing"
        assert _txn(db, "tx-coffee").custom_category == "Misc"
        assert _txn(db, "tx-coffee").categorized_at is not None

    def test_nothing_to_categorize_skips_ai_call(self, db, checking_account):
        client = MockCategorizationClient()

        count = CategorizationService(client=client).categorize_uncategorized(db, "user-1")

        assert count == 0
        assert client.categorize_calls == []

    def test_recategorize_overwrites_existing(self, db, stored_transactions):
        txn = _txn(db, "tx-rent")
        txn.custom_category = "Housing"
        db.commit()

        count = CategorizationService(
            client=MockCategorizationClient(category="Bills")
        ).recategorize_all(db, "user-1")
        db.commit()

        assert count == 3
        assert _txn(db, "tx-rent").custom_category == "Bills"

    def test_ignores_ids_not_requested(self, db, stored_transactions):
        class ChattyClient(MockCategorizationClient):
            def categorize(self, transactions, rules=None):
                results = super().categorize(transactions, rules)
                results.append(CategorizedTransaction(transaction_id="tx-invented", category="X"))
                return results

        count = CategorizationService(client=ChattyClient()).categorize_uncategorized(db, "user-1")

        assert count == 3
        assert _txn(db, "tx-invented") is None

    def test_passes_user_rules(self, db, stored_transactions):
        db.add(CategorizationRules(user_id="user-1", rules="Payroll is Income"))
        db.commit()
        seen = {}

        class RecordingClient(MockCategorizationClient):
            def categorize(self, transactions, rules=None):
                seen["rules"] = rules
                return super().categorize(transactions, rules)

        CategorizationService(client=RecordingClient()).categorize_uncategorized(db, "user-1")

        assert seen["rules"] == "Payroll is Income"


class TestLabelBudget:
    def test_overwrites_membership(self, db, stored_transactions, budget):
        other = Budget(user_id="user-1", title="Housing", filter_prompt="Rent")
        db.add(other)
        db.commit()
        rent = _txn(db, "tx-rent")
        rent.budget_ids = [budget.id, other.id]
        db.commit()
        client = MockCategorizationClient(matches={"tx-coffee"})

        matched = CategorizationService(client=client).label_budget(db, budget.id)
        db.commit()

        assert matched == 1
        assert _txn(db, "tx-coffee").budget_ids == [budget.id]
        assert _txn(db, "tx-rent").budget_ids == [other.id]
        assert _txn(db, "tx-pay").budget_ids == []
        assert client.filter_calls[0][1] == "Restaurants, cafes and food delivery"

    def test_rerun_is_idempotent(self, db, stored_transactions, budget):
        service = CategorizationService(client=MockCategorizationClient(matches={"tx-coffee"}))

        service.label_budget(db, budget.id)
        db.commit()
        service.label_budget(db, budget.id)
        db.commit()

        assert _txn(db, "tx-coffee").budget_ids == [budget.id]

    def test_unknown_budget(self, db):
        with pytest.raises(ValueError, match="not found"):
            CategorizationService(client=MockCategorizationClient()).label_budget(db, "missing")


class TestLabelNewTransactions:
    def test_adds_matches_for_every_budget(self, db, stored_transactions, budget):
        housing = Budget(user_id="user-1", title="Housing", filter_prompt="Rent")
        db.add(housing)
        db.commit()
        rent = _txn(db, "tx-rent")
        rent.budget_ids = [housing.id]
        db.commit()
        client = MockCategorizationClient(matches={"tx-coffee", "tx-rent"})

        count = CategorizationService(client=client).label_new_transactions(db, "user-1")
        db.commit()

        assert count == 3
        assert [prompt for _, prompt in client.filter_calls] == [
            "Restaurants, cafes and food delivery", "Rent",
        ]
        assert _txn(db, "tx-coffee").budget_ids == [budget.id, housing.id]
        assert _txn(db, "tx-rent").budget_ids == [housing.id, budget.id]
        assert _txn(db, "tx-pay").budget_ids == []
        assert _txn(db, "tx-pay").budgets_updated_at is not None

    def test_labelled_transactions_are_skipped(self, db, stored_transactions, budget):
        client = MockCategorizationClient(matches={"tx-coffee"})
        service = CategorizationService(client=client)
        service.label_new_transactions(db, "user-1")
        db.commit()

        assert service.label_new_transactions(db, "user-1") == 0
        assert len(client.filter_calls) == 1

    def test_single_budget_relabel_does_not_mark_labelled(self, db, stored_transactions, budget):
        service = CategorizationService(client=MockCategorizationClient(matches={"tx-coffee"}))

        service.label_budget(db, budget.id)
        db.commit()

        assert _txn(db, "tx-coffee").budgets_updated_at is None

    def test_no_budgets(self, db, stored_transactions):
        client = MockCategorizationClient()

        assert CategorizationService(client=client).label_new_transactions(db, "user-1") == 0
        assert client.filter_calls == []


class TestTriggers:
    def test_budget_processing_runs_as_job(self, db, stored_transactions, budget, job_runner, executor):
        client = MockCategorizationClient(matches={"tx-coffee", "tx-rent"})
        service = CategorizationService(client=client, runner=job_runner)

        job = service.start_budget_processing(db, budget.id)
        assert job.status == "processing"
        executor.run_all()

        db.expire_all()
        job = JobStatusService.get_job(db, JOB_BUDGET_LABELING, budget.id)
        assert job.status == "ready"
        assert job.result_count == 2
        assert budget.id in _txn(db, "tx-rent").budget_ids

    def test_second_budget_trigger_rejected_while_processing(
        self, db, stored_transactions, budget, job_runner, executor
    ):
        client = MockCategorizationClient(matches={"tx-coffee"})
        service = CategorizationService(client=client, runner=job_runner)
        service.start_budget_processing(db, budget.id)

        with pytest.raises(JobAlreadyRunningError):
            service.start_budget_processing(db, budget.id)

        executor.run_all()
        assert len(client.filter_calls) == 1

    def test_failed_ai_call_marks_job_error(self, db, stored_transactions, job_runner, executor):
        service = CategorizationService(
            client=MockCategorizationClient(should_fail=True), runner=job_runner
        )

        service.start_recategorization(db, "user-1")
        executor.run_all()

        db.expire_all()
        job = JobStatusService.get_job(db, JOB_RECATEGORIZE, "user-1")
        assert job.status == "error"
        assert job.error_message == "Mock categorization failure"
        assert _txn(db, "tx-coffee").custom_category is None

    def test_post_sync_trigger_on_busy_job_requests_rerun(
        self, db, stored_transactions, job_runner, executor
    ):
        client = MockCategorizationClient()
        service = CategorizationService(client=client, runner=job_runner)

        first = service.start_post_sync_categorization(db, "user-1")
        second = service.start_post_sync_categorization(db, "user-1")

        assert first is not None
        assert second is None
        assert executor.run_all() == 2
        # Second pass finds nothing left and skips the AI call
        assert len(client.categorize_calls) == 1
        db.expire_all()
        job = JobStatusService.get_job(db, JOB_CATEGORIZE_UNCATEGORIZED, "user-1")
        assert job.status == "ready"
        assert job.rerun_requested is False

    def test_rows_synced_during_running_job_are_categorized(
        self, db, stored_transactions, checking_account, job_runner, executor
    ):
        triggers = []

        def sync_lands():
            page = TransactionsPage(
                added=[make_transaction("tx-new", name="Sweetgreen")], next_cursor="c2"
            )
            TransactionService.apply_page(db, checking_account, page)
            db.commit()
            triggers.append(service.start_post_sync_categorization(db, "user-1"))

        client = CallbackCategorizationClient(sync_lands, category="Food")
        service = CategorizationService(client=client, runner=job_runner)

        assert service.start_post_sync_categorization(db, "user-1") is not None
        executor.run_all()

        assert triggers == [None]
        assert [sorted(ids) for ids in client.categorize_calls] == [
            sorted(stored_transactions), ["tx-new"],
        ]
        assert _txn(db, "tx-new").custom_category == "Food"
        job = JobStatusService.get_job(db, JOB_CATEGORIZE_UNCATEGORIZED, "user-1")
        assert job.status == "ready"
        assert job.result_count == 1

    def test_post_sync_trigger_skipped_when_not_configured(self, db, job_runner, executor):
        service = CategorizationService(
            client=MockCategorizationClient(configured=False), runner=job_runner
        )

        assert service.start_post_sync_categorization(db, "user-1") is None
        assert executor.pending == []

    def test_post_sync_budget_labeling_runs_as_job(
        self, db, stored_transactions, budget, job_runner, executor
    ):
        client = MockCategorizationClient(matches={"tx-coffee"})
        service = CategorizationService(client=client, runner=job_runner)

        job = service.start_post_sync_budget_labeling(db, "user-1")
        assert job.job_type == JOB_LABEL_NEW_TRANSACTIONS
        executor.run_all()

        db.expire_all()
        job = JobStatusService.get_job(db, JOB_LABEL_NEW_TRANSACTIONS, "user-1")
        assert job.status == "ready"
        assert job.result_count == 3
        assert _txn(db, "tx-coffee").budget_ids == [budget.id]

    def test_post_sync_budget_labeling_skipped_without_budgets(
        self, db, stored_transactions, job_runner, executor
    ):
        service = CategorizationService(client=MockCategorizationClient(), runner=job_runner)

        assert service.start_post_sync_budget_labeling(db, "user-1") is None
        assert executor.pending == []
