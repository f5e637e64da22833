"""Holding service - wholesale replacement of an account's holdings."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from integrations.aggregator_protocol import AggregatorHolding, AggregatorSecurity
from models import Account, Holding

logger = logging.getLogger(__name__)


def _add(a: Decimal | None, b: Decimal | None) -> Decimal | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


class HoldingService:
    """Service for the investment holdings table."""

    @staticmethod
    def list_holdings(db: Session, account_id: str) -> list[Holding]:
        return (
            db.query(Holding)
            .filter(Holding.account_id == account_id)
            .order_by(Holding.security_id)
            .all()
        )

    @staticmethod
    def _consolidate(holdings: list[AggregatorHolding]) -> list[AggregatorHolding]:
        """Merge duplicate positions in the same security (one row per security)."""
        merged: dict[str, AggregatorHolding] = {}
        for h in holdings:
            prior = merged.get(h.security_id)
            if prior is None:
                merged[h.security_id] = AggregatorHolding(**vars(h))
                continue
            prior.quantity += h.quantity
            prior.cost_basis = _add(prior.cost_basis, h.cost_basis)
            prior.institution_value = _add(prior.institution_value, h.institution_value)
        return list(merged.values())

    @staticmethod
    def replace_holdings(
        db: Session,
        account: Account,
        holdings: list[AggregatorHolding],
        securities: dict[str, AggregatorSecurity],
    ) -> int:
        """Replace every holding of ``account`` with ``holdings``.

        An empty ``holdings`` list deletes all positions (full liquidation).
        Flushes only; the caller commits.

        Returns:
            Number of holdings written.
        """
        consolidated = HoldingService._consolidate(holdings)

        deleted = (
            db.query(Holding)
            .filter(Holding.account_id == account.id)
            .delete(synchronize_session=False)
        )
        # Drop stale identities so the relationship collection reloads
        db.expire(account, ["holdings"])

        for h in consolidated:
            security = securities.get(h.security_id)
            db.add(
                Holding(
                    account_id=account.id,
                    security_id=h.security_id,
                    quantity=h.quantity,
                    cost_basis=h.cost_basis,
                    institution_price=h.institution_price,
                    institution_value=h.institution_value,
                    institution_price_as_of=h.institution_price_as_of,
                    iso_currency_code=h.iso_currency_code
                    or (security.iso_currency_code if security else None),
                    ticker=security.ticker if security else None,
                    security_name=security.name if security else None,
                    security_type=security.type if security else None,
                    security_subtype=security.subtype if security else None,
                    close_price=security.close_price if security else None,
                )
            )
        db.flush()

        logger.info(
            "Replaced holdings for %s: %d removed, %d written",
            account.name, deleted, len(consolidated),
        )
        return len(consolidated)
