"""Investment sync engine - full-snapshot holdings reconciliation."""

import logging

from sqlalchemy.orm import Session

from integrations.aggregator_protocol import AggregatorClient, HoldingsSnapshot
from integrations.exceptions import AggregatorError, SyncInProgressError
from models import Account, Connection, SyncState
from models.sync_state import SYNC_DOMAIN_INVESTMENTS, SYNC_STATUS_SYNCING
from services.account_service import AccountService
from services.holding_service import HoldingService
from services.sync_state_service import SyncStateService
from services.transaction_sync_service import AccountSyncResult, DomainSyncResult

logger = logging.getLogger(__name__)

MISSING_FROM_SNAPSHOT = "account missing from holdings snapshot"


class InvestmentSyncService:
    """Holdings sync: one snapshot fetch per connection, one commit per account.

    There is no cursor; every successful sync replaces an account's
    holdings wholesale, and an ``error`` means the next run re-applies a
    fresh snapshot.
    """

    def __init__(self, client: AggregatorClient):
        self._client = client

    def sync_connection(self, db: Session, connection: Connection) -> DomainSyncResult:
        """Fetch the connection's holdings snapshot and apply it per account.

        Raises:
            AggregatorError: If the snapshot fetch itself fails. Every
                investment account is marked ``error`` first.
        """
        result = DomainSyncResult(item_id=connection.item_id, domain=SYNC_DOMAIN_INVESTMENTS)
        accounts = [
            a for a in AccountService.list_accounts_for_connection(db, connection.id)
            if a.is_investment
        ]
        if not accounts:
            logger.debug("%s: no investment accounts, skipping holdings sync", connection.item_id)
            return result

        states = {
            a.id: SyncStateService.ensure_state(db, a.id, SYNC_DOMAIN_INVESTMENTS)
            for a in accounts
        }

        try:
            snapshot = self._client.fetch_holdings(connection.access_token)
        except AggregatorError as e:
            logger.warning("Holdings fetch failed for %s: %s", connection.item_id, e)
            for state in states.values():
                # Leave accounts owned by a concurrent attempt alone
                if state.status != SYNC_STATUS_SYNCING:
                    SyncStateService.mark_error(db, state, str(e))
            raise

        for account in accounts:
            result.accounts.append(
                self._sync_account(db, account, states[account.id], snapshot)
            )

        logger.info(
            "%s: %d/%d investment accounts synced, %d holdings written",
            connection.item_id, len(result.succeeded), len(accounts), result.records,
        )
        return result

    def _sync_account(
        self,
        db: Session,
        account: Account,
        state: SyncState,
        snapshot: HoldingsSnapshot,
    ) -> AccountSyncResult:
        """Replace one account's holdings; failures stay with this account."""
        account_id = account.id
        account_name = account.name

        if not SyncStateService.claim(db, state):
            err = SyncInProgressError(account_id, SYNC_DOMAIN_INVESTMENTS)
            return AccountSyncResult(
                account_id=account_id,
                account_name=account_name,
                status="skipped",
                error=str(err),
            )

        # An account absent from the snapshot was not reported on; treating
        # that as liquidation would wipe its holdings.
        if account.external_id not in snapshot.account_ids:
            logger.warning("%s (%s): %s", account_name, account.external_id, MISSING_FROM_SNAPSHOT)
            SyncStateService.mark_error(db, state, MISSING_FROM_SNAPSHOT)
            return AccountSyncResult(
                account_id=account_id,
                account_name=account_name,
                status="error",
                error=MISSING_FROM_SNAPSHOT,
            )

        try:
            count = HoldingService.replace_holdings(
                db,
                account,
                snapshot.holdings_for(account.external_id),
                snapshot.securities_by_id,
            )
            SyncStateService.mark_complete(db, state, count=count)
        except Exception as e:
            db.rollback()
            logger.warning(
                "Holdings sync failed for %s: %s", account_name, e, exc_info=True,
            )
            SyncStateService.mark_error(db, state, str(e))
            return AccountSyncResult(
                account_id=account_id,
                account_name=account_name,
                status="error",
                error=str(e),
            )

        return AccountSyncResult(
            account_id=account_id,
            account_name=account_name,
            status="complete",
            records=count,
        )
