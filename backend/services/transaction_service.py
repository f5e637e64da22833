"""Transaction service - primary-store writes for changefeed pages."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from integrations.aggregator_protocol import AggregatorTransaction, TransactionsPage
from models import Account, Transaction

logger = logging.getLogger(__name__)


@dataclass
class AppliedPage:
    """Outcome of applying one changefeed page."""

    inserted_ids: list[str] = field(default_factory=list)
    updated: int = 0
    removed: int = 0
    skipped: int = 0

    @property
    def applied(self) -> int:
        return len(self.inserted_ids) + self.updated


class TransactionService:
    """Service for upserting and deleting transactions by natural key."""

    @staticmethod
    def apply_page(db: Session, account: Account, page: TransactionsPage) -> AppliedPage:
        """Apply added/modified/removed records of one page for ``account``.

        Added and modified records are both upserted by ``transaction_id``,
        so replaying a page is harmless. Updates keep the AI-owned
        ``custom_category`` and ``budget_ids``. Flushes only; the caller
        commits together with the cursor checkpoint.
        """
        result = AppliedPage()
        incoming = [*page.added, *page.modified]
        ids = [t.transaction_id for t in incoming]
        existing: dict[str, Transaction] = {}
        if ids:
            existing = {
                t.transaction_id: t
                for t in db.query(Transaction).filter(Transaction.transaction_id.in_(ids)).all()
            }

        for remote in incoming:
            if remote.account_id != account.external_id:
                logger.warning(
                    "Skipping transaction %s for account %s while syncing %s",
                    remote.transaction_id, remote.account_id, account.external_id,
                )
                result.skipped += 1
                continue

            row = existing.get(remote.transaction_id)
            if row is None:
                row = Transaction(
                    transaction_id=remote.transaction_id,
                    account_id=account.id,
                    item_id=account.connection.item_id,
                    user_id=account.user_id,
                    budget_ids=[],
                )
                TransactionService._copy_fields(row, remote, account)
                db.add(row)
                existing[remote.transaction_id] = row
                result.inserted_ids.append(remote.transaction_id)
            else:
                TransactionService._copy_fields(row, remote, account)
                result.updated += 1

        if page.removed:
            result.removed = (
                db.query(Transaction)
                .filter(
                    Transaction.account_id == account.id,
                    Transaction.transaction_id.in_(page.removed),
                )
                .delete(synchronize_session=False)
            )

        db.flush()
        logger.debug(
            "Applied page for %s: %d inserted, %d updated, %d removed",
            account.name, len(result.inserted_ids), result.updated, result.removed,
        )
        return result

    @staticmethod
    def _copy_fields(row: Transaction, remote: AggregatorTransaction, account: Account) -> None:
        row.account_name = account.name
        row.date = remote.date
        row.authorized_date = remote.authorized_date
        row.name = remote.name
        row.merchant_name = remote.merchant_name
        row.amount = remote.amount
        row.direction = remote.direction
        row.iso_currency_code = remote.iso_currency_code
        row.aggregator_category = list(remote.category)
        row.pending = remote.pending

    @staticmethod
    def list_uncategorized(db: Session, user_id: str) -> list[Transaction]:
        """Transactions of a user that have no AI category yet."""
        return (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.custom_category.is_(None))
            .order_by(Transaction.date.desc())
            .all()
        )

    @staticmethod
    def list_unlabeled(db: Session, user_id: str) -> list[Transaction]:
        """Transactions of a user never evaluated against the budgets."""
        return (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.budgets_updated_at.is_(None))
            .order_by(Transaction.date.desc())
            .all()
        )

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> list[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.date.desc())
            .all()
        )

    @staticmethod
    def set_categories(db: Session, categories: dict[str, str]) -> int:
        """Overwrite ``custom_category`` for the given transaction ids."""
        if not categories:
            return 0
        now = datetime.now(timezone.utc)
        rows = (
            db.query(Transaction)
            .filter(Transaction.transaction_id.in_(list(categories)))
            .all()
        )
        for row in rows:
            row.custom_category = categories[row.transaction_id]
            row.categorized_at = now
        db.flush()
        return len(rows)
