"""Categorization service - AI post-processing run as background jobs.

The work functions (``categorize_uncategorized``, ``recategorize_all``,
``label_budget``, ``label_new_transactions``) run on a job worker with
their own session. The ``start_*`` triggers claim the entity and return
immediately.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from integrations.categorization_client import CategorizationClient
from integrations.exceptions import JobAlreadyRunningError
from models import BackgroundJob, Budget, CategorizationRules, Transaction
from services.job_runner import (
    JOB_BUDGET_LABELING,
    JOB_CATEGORIZE_UNCATEGORIZED,
    JOB_LABEL_NEW_TRANSACTIONS,
    JOB_RECATEGORIZE,
    BackgroundJobRunner,
    get_job_runner,
)
from services.transaction_service import TransactionService

logger = logging.getLogger(__name__)


def transaction_payload(txn: Transaction) -> dict:
    """Fields of a transaction sent to the AI model."""
    return {
        "transaction_id": txn.transaction_id,
        "date": txn.date.isoformat() if txn.date else None,
        "description": txn.name,
        "merchant": txn.merchant_name,
        "amount": str(txn.amount),
        "direction": txn.direction,
        "category": " > ".join(txn.aggregator_category or []),
        "account_name": txn.account_name,
        "pending": txn.pending,
    }


class CategorizationService:
    """AI categorization and budget labelling of stored transactions."""

    def __init__(
        self,
        client: CategorizationClient | None = None,
        runner: BackgroundJobRunner | None = None,
    ):
        self._client = client or CategorizationClient()
        self._runner = runner

    @property
    def runner(self) -> BackgroundJobRunner:
        if self._runner is None:
            self._runner = get_job_runner()
        return self._runner

    def is_configured(self) -> bool:
        return self._client.is_configured()

    # ------------------------------------------------------------------
    # Job work
    # ------------------------------------------------------------------

    @staticmethod
    def get_rules(db: Session, user_id: str) -> str | None:
        row = db.query(CategorizationRules).filter(CategorizationRules.user_id == user_id).first()
        return row.rules if row and row.rules else None

    def _categorize(self, db: Session, user_id: str, transactions: list[Transaction]) -> int:
        if not transactions:
            return 0
        categorized = self._client.categorize(
            [transaction_payload(t) for t in transactions],
            self.get_rules(db, user_id),
        )
        known = {t.transaction_id for t in transactions}
        categories = {
            c.transaction_id: c.category for c in categorized if c.transaction_id in known
        }
        updated = TransactionService.set_categories(db, categories)
        if updated < len(transactions):
            logger.warning(
                "Categorized %d of %d transactions for user %s",
                updated, len(transactions), user_id,
            )
        return updated

    def categorize_uncategorized(self, db: Session, user_id: str) -> int:
        """Categorize every transaction of a user that has no category yet.

        Re-reads the uncategorized set on each call, so a rerun picks up
        rows inserted while an earlier pass was running.
        """
        transactions = TransactionService.list_uncategorized(db, user_id)
        logger.info("Categorizing %d new transaction(s) for user %s", len(transactions), user_id)
        return self._categorize(db, user_id, transactions)

    def recategorize_all(self, db: Session, user_id: str) -> int:
        """Re-run categorization over all of a user's transactions.

        Existing categories are overwritten.
        """
        transactions = TransactionService.list_for_user(db, user_id)
        logger.info("Recategorizing %d transaction(s) for user %s", len(transactions), user_id)
        return self._categorize(db, user_id, transactions)

    def label_budget(self, db: Session, budget_id: str) -> int:
        """Recompute which of the owner's transactions belong to a budget.

        Membership is overwritten: matched transactions gain the budget id,
        every other transaction loses it. ``budgets_updated_at`` is left
        alone; it marks evaluation against all budgets.

        Returns:
            Number of matching transactions.
        """
        budget = db.get(Budget, budget_id)
        if budget is None:
            raise ValueError(f"Budget {budget_id} not found")

        transactions = TransactionService.list_for_user(db, budget.user_id)
        matched = (
            self._client.filter_for_budget(
                [transaction_payload(t) for t in transactions], budget.filter_prompt
            )
            if transactions
            else set()
        )

        changed = 0
        for txn in transactions:
            current = list(txn.budget_ids or [])
            updated = [b for b in current if b != budget.id]
            if txn.transaction_id in matched:
                updated.append(budget.id)
            if updated != current:
                txn.budget_ids = updated
                changed += 1
        db.flush()

        logger.info(
            "Budget %s (%s): %d matching transaction(s), %d changed",
            budget.title, budget.id, len(matched), changed,
        )
        return len(matched)

    @staticmethod
    def list_budgets(db: Session, user_id: str) -> list[Budget]:
        return db.query(Budget).filter(Budget.user_id == user_id).order_by(Budget.title).all()

    def label_new_transactions(self, db: Session, user_id: str) -> int:
        """Label a user's not-yet-labelled transactions against all budgets.

        Matches are added to ``budget_ids``; existing memberships are kept.
        Every evaluated transaction gets ``budgets_updated_at`` so later
        passes skip it.

        Returns:
            Number of transactions evaluated.
        """
        budgets = self.list_budgets(db, user_id)
        if not budgets:
            return 0
        transactions = TransactionService.list_unlabeled(db, user_id)
        if not transactions:
            return 0

        logger.info(
            "Labelling %d new transaction(s) for user %s against %d budget(s)",
            len(transactions), user_id, len(budgets),
        )
        payload = [transaction_payload(t) for t in transactions]
        for budget in budgets:
            matched = self._client.filter_for_budget(payload, budget.filter_prompt)
            for txn in transactions:
                current = list(txn.budget_ids or [])
                if txn.transaction_id in matched and budget.id not in current:
                    txn.budget_ids = current + [budget.id]

        now = datetime.now(timezone.utc)
        for txn in transactions:
            txn.budgets_updated_at = now
        db.flush()
        return len(transactions)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start_post_sync_categorization(self, db: Session, user_id: str) -> BackgroundJob | None:
        """Kick off categorization of new transactions after a sync.

        If a job is already processing for the user, it is asked to run
        again once it finishes and None is returned.
        """
        if not self.is_configured():
            logger.debug("Categorization not configured; skipping post-sync job")
            return None
        try:
            return self.runner.submit_or_rerun(
                db,
                JOB_CATEGORIZE_UNCATEGORIZED,
                user_id,
                lambda session: self.categorize_uncategorized(session, user_id),
            )
        except JobAlreadyRunningError as e:
            logger.warning("Post-sync categorization not started: %s", e)
            return None

    def start_post_sync_budget_labeling(self, db: Session, user_id: str) -> BackgroundJob | None:
        """Kick off budget labelling of new transactions after a sync.

        Skipped when the user has no budgets. A busy job is asked to run
        again, as in :meth:`start_post_sync_categorization`.
        """
        if not self.is_configured():
            logger.debug("Categorization not configured; skipping post-sync labelling")
            return None
        if not self.list_budgets(db, user_id):
            return None
        try:
            return self.runner.submit_or_rerun(
                db,
                JOB_LABEL_NEW_TRANSACTIONS,
                user_id,
                lambda session: self.label_new_transactions(session, user_id),
            )
        except JobAlreadyRunningError as e:
            logger.warning("Post-sync budget labelling not started: %s", e)
            return None

    def start_recategorization(self, db: Session, user_id: str) -> BackgroundJob:
        """Start a full recategorization for a user.

        Raises:
            JobAlreadyRunningError: If one is already processing.
        """
        return self.runner.submit(
            db,
            JOB_RECATEGORIZE,
            user_id,
            lambda session: self.recategorize_all(session, user_id),
        )

    def start_budget_processing(self, db: Session, budget_id: str) -> BackgroundJob:
        """Start budget labelling for one budget.

        Raises:
            JobAlreadyRunningError: If the budget is already processing.
        """
        return self.runner.submit(
            db,
            JOB_BUDGET_LABELING,
            budget_id,
            lambda session: self.label_budget(session, budget_id),
        )
