"""Connection sync service - composes the sync engines per connection."""

import logging

from sqlalchemy.orm import Session, sessionmaker

from config import PLAID_ENVIRONMENTS
from integrations.aggregator_protocol import AggregatorClient
from integrations.exceptions import AggregatorError, ConfigurationError
from models import Connection
from services.account_service import AccountService
from services.batch_sync_service import BatchResult, BatchSyncService, ConnectionSyncOutcome
from services.categorization_service import CategorizationService
from services.investment_sync_service import InvestmentSyncService
from services.transaction_sync_service import TransactionSyncService

logger = logging.getLogger(__name__)


class ConnectionSyncService:
    """Entry points for on-demand and scheduled syncs.

    For one connection: transactions first, then investments best-effort,
    then (if anything new arrived) fire-and-forget categorization and
    budget labelling jobs.
    """

    def __init__(
        self,
        client: AggregatorClient | None = None,
        session_factory: sessionmaker | None = None,
        categorization: CategorizationService | None = None,
        max_workers: int | None = None,
    ):
        self._client = client
        self._session_factory = session_factory
        self._categorization = categorization
        self._max_workers = max_workers

    @property
    def client(self) -> AggregatorClient:
        if self._client is None:
            from integrations.plaid_client import PlaidClient

            self._client = PlaidClient()
        return self._client

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            from database import get_session_local

            self._session_factory = get_session_local()
        return self._session_factory

    def _require_configured(self) -> None:
        if not self.client.is_configured():
            raise ConfigurationError(
                f"{self.client.provider_name} credentials are not configured "
                "(PLAID_CLIENT_ID / PLAID_SECRET)"
            )

    def sync_connection(self, db: Session, connection: Connection) -> ConnectionSyncOutcome:
        """Sync one connection. Account and investment failures are recorded, not raised."""
        outcome = ConnectionSyncOutcome(
            connection_id=connection.id,
            item_id=connection.item_id,
            user_id=connection.user_id,
        )
        item_id = connection.item_id
        user_id = connection.user_id

        outcome.transactions = TransactionSyncService(self.client).sync_connection(db, connection)

        try:
            outcome.investments = InvestmentSyncService(self.client).sync_connection(db, connection)
        except AggregatorError as e:
            db.rollback()
            logger.warning("Investment sync failed for %s (non-fatal): %s", item_id, e)
            outcome.errors.append(f"investments: {e}")
        except Exception as e:
            db.rollback()
            logger.error(
                "Unexpected investment sync error for %s (non-fatal): %s",
                item_id, e, exc_info=True,
            )
            outcome.errors.append(f"investments: {e}")

        if outcome.transactions.inserted_ids and self._categorization is not None:
            self._start_post_sync_jobs(db, user_id)

        return outcome

    def _start_post_sync_jobs(self, db: Session, user_id: str) -> None:
        """Queue categorization and budget labelling of new transactions (non-fatal)."""
        for start in (
            self._categorization.start_post_sync_categorization,
            self._categorization.start_post_sync_budget_labeling,
        ):
            try:
                start(db, user_id)
            except Exception as e:
                db.rollback()
                logger.error(
                    "Could not queue post-sync job for user %s (non-fatal): %s",
                    user_id, e, exc_info=True,
                )

    def run_connection_sync(self, db: Session, item_id: str) -> ConnectionSyncOutcome:
        """On-demand sync of a single connection by item id.

        Raises:
            ConfigurationError: If aggregator credentials are missing.
            LookupError: If no connection has this item id.
        """
        self._require_configured()
        connection = AccountService.get_connection_by_item_id(db, item_id)
        if connection is None:
            raise LookupError(f"Connection {item_id} not found")
        outcome = self.sync_connection(db, connection)
        logger.info(
            "Connection %s synced: %s (%d transactions, %d holdings)",
            item_id,
            outcome.status,
            outcome.transactions.records if outcome.transactions else 0,
            outcome.investments.records if outcome.investments else 0,
        )
        return outcome

    def validate_batch(self, environment: str) -> None:
        """Raise ConfigurationError if a batch for ``environment`` cannot run."""
        if environment not in PLAID_ENVIRONMENTS:
            raise ConfigurationError(
                f"Unknown environment {environment!r}; expected one of {PLAID_ENVIRONMENTS}"
            )
        self._require_configured()
        client_env = self.client.environment
        if client_env != environment:
            raise ConfigurationError(
                f"Batch for {environment!r} requires PLAID_ENVIRONMENT={environment}, "
                f"but the client is configured for {client_env!r}"
            )

    def run_batch(self, environment: str) -> BatchResult:
        """Sync every eligible connection in ``environment``.

        Raises:
            ConfigurationError: Before any connection is touched.
        """
        self.validate_batch(environment)
        driver = BatchSyncService(self.session_factory, max_workers=self._max_workers)
        return driver.run_batch(environment, self.sync_connection)
