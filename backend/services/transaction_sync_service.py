"""Transaction sync engine - drives the aggregator changefeed per account."""

import logging
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy.orm import Session

from config import settings
from integrations.aggregator_protocol import AggregatorClient
from integrations.exceptions import AggregatorError, SyncInProgressError
from models import Account, Connection
from models.sync_state import SYNC_DOMAIN_TRANSACTIONS
from services.account_service import AccountService
from services.sync_state_service import SyncStateService
from services.transaction_service import TransactionService

logger = logging.getLogger(__name__)


@dataclass
class AccountSyncResult:
    """Outcome of one account's sync attempt in one domain."""

    account_id: str
    account_name: str
    status: Literal["complete", "error", "skipped"]
    records: int = 0  # transactions applied / holdings written
    inserted_ids: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class DomainSyncResult:
    """Outcome of syncing every applicable account of a connection in one domain."""

    item_id: str
    domain: str
    accounts: list[AccountSyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[AccountSyncResult]:
        return [a for a in self.accounts if a.status == "complete"]

    @property
    def failed(self) -> list[AccountSyncResult]:
        return [a for a in self.accounts if a.status != "complete"]

    @property
    def records(self) -> int:
        return sum(a.records for a in self.accounts)

    @property
    def inserted_ids(self) -> list[str]:
        return [tid for a in self.accounts for tid in a.inserted_ids]

    @property
    def errors(self) -> list[str]:
        return [f"{a.account_name}: {a.error}" for a in self.failed if a.error]


class TransactionSyncService:
    """Incremental, cursor-checkpointed transaction sync.

    Each page is applied and its cursor checkpointed in one commit before
    the next page is requested, so a failure or crash resumes from the
    last applied page on the next attempt.
    """

    def __init__(self, client: AggregatorClient, page_size: int | None = None):
        self._client = client
        self._page_size = page_size or settings.TRANSACTIONS_PAGE_SIZE

    def sync_account(
        self,
        db: Session,
        connection: Connection,
        account: Account,
    ) -> AccountSyncResult:
        """Drive one account's changefeed until ``has_more`` is false.

        Never raises for aggregator or store failures: they are recorded on
        the account's sync state and returned as an ``error`` result.
        """
        account_id = account.id
        account_name = account.name
        state = SyncStateService.ensure_state(db, account_id, SYNC_DOMAIN_TRANSACTIONS)

        if not SyncStateService.claim(db, state):
            err = SyncInProgressError(account_id, SYNC_DOMAIN_TRANSACTIONS)
            return AccountSyncResult(
                account_id=account_id,
                account_name=account_name,
                status="skipped",
                error=str(err),
            )

        cursor = state.cursor
        applied_total = 0
        inserted: list[str] = []
        pages = 0
        logger.info(
            "Syncing transactions for %s (%s) from %s",
            account_name, connection.item_id,
            "saved cursor" if cursor else "beginning",
        )

        try:
            while True:
                page = self._client.fetch_transactions_page(
                    connection.access_token,
                    cursor,
                    account_id=account.external_id,
                    count=self._page_size,
                )
                applied = TransactionService.apply_page(db, account, page)
                SyncStateService.checkpoint(db, state, page.next_cursor, applied.applied)
                db.commit()

                pages += 1
                applied_total += applied.applied
                inserted.extend(applied.inserted_ids)
                cursor = page.next_cursor
                if not page.has_more:
                    break

            SyncStateService.mark_complete(db, state)
        except AggregatorError as e:
            db.rollback()
            logger.warning(
                "Transaction sync failed for %s after %d page(s): %s",
                account_name, pages, e,
            )
            SyncStateService.mark_error(db, state, str(e))
            return AccountSyncResult(
                account_id=account_id,
                account_name=account_name,
                status="error",
                records=applied_total,
                inserted_ids=inserted,
                error=str(e),
            )
        except Exception as e:
            db.rollback()
            logger.error(
                "Unexpected error syncing transactions for %s after %d page(s): %s",
                account_name, pages, e, exc_info=True,
            )
            SyncStateService.mark_error(db, state, str(e))
            return AccountSyncResult(
                account_id=account_id,
                account_name=account_name,
                status="error",
                records=applied_total,
                inserted_ids=inserted,
                error=str(e),
            )

        logger.info(
            "Transactions synced for %s: %d page(s), %d applied, %d new",
            account_name, pages, applied_total, len(inserted),
        )
        return AccountSyncResult(
            account_id=account_id,
            account_name=account_name,
            status="complete",
            records=applied_total,
            inserted_ids=inserted,
        )

    def sync_connection(self, db: Session, connection: Connection) -> DomainSyncResult:
        """Sync every account under a connection; one failure never stops the rest."""
        accounts = AccountService.list_accounts_for_connection(db, connection.id)
        result = DomainSyncResult(item_id=connection.item_id, domain=SYNC_DOMAIN_TRANSACTIONS)

        # Make every account's state visible as pending before the first fetch
        for account in accounts:
            SyncStateService.ensure_state(db, account.id, SYNC_DOMAIN_TRANSACTIONS)

        for account in accounts:
            result.accounts.append(self.sync_account(db, connection, account))

        logger.info(
            "%s: %d/%d accounts synced, %d transactions applied",
            connection.item_id, len(result.succeeded), len(accounts), result.records,
        )
        return result
