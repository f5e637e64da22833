"""Account directory service - connections and their accounts."""

import logging

from sqlalchemy.orm import Session

from models import Account, Connection

logger = logging.getLogger(__name__)


class AccountService:
    """Read-side lookups of connections and accounts for the sync engines."""

    @staticmethod
    def get_connection(db: Session, connection_id: str) -> Connection | None:
        """Get a connection by its internal ID."""
        return db.query(Connection).filter(Connection.id == connection_id).first()

    @staticmethod
    def get_connection_by_item_id(db: Session, item_id: str) -> Connection | None:
        """Get a connection by the aggregator's item ID."""
        return db.query(Connection).filter(Connection.item_id == item_id).first()

    @staticmethod
    def list_connections(
        db: Session,
        environment: str | None = None,
        ignored_user_ids: frozenset[str] | set[str] = frozenset(),
    ) -> list[Connection]:
        """List connections eligible for a batch run.

        Args:
            environment: Only connections in this environment, if given.
            ignored_user_ids: Users whose connections are skipped.
        """
        query = db.query(Connection)
        if environment is not None:
            query = query.filter(Connection.environment == environment)
        if ignored_user_ids:
            query = query.filter(Connection.user_id.notin_(list(ignored_user_ids)))
        connections = query.order_by(Connection.created_at).all()
        if ignored_user_ids:
            logger.info(
                "Listing connections: ignoring %d user(s) from CRON_IGNORE_USER_IDS",
                len(ignored_user_ids),
            )
        return connections

    @staticmethod
    def list_accounts_for_connection(db: Session, connection_id: str) -> list[Account]:
        """List every account belonging to a connection."""
        return (
            db.query(Account)
            .filter(Account.connection_id == connection_id)
            .order_by(Account.name)
            .all()
        )
