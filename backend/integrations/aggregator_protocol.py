"""Aggregator protocol definitions.

This module defines the normalized records the sync engines consume and
the interface an aggregator client must implement: a paginated
transactions changefeed with an opaque cursor, and a full holdings
snapshot per connection.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol


@dataclass
class AggregatorTransaction:
    """Normalized transaction from the changefeed."""

    transaction_id: str  # Aggregator's unique ID (natural key)
    account_id: str  # Aggregator's account ID
    date: date  # Posted date
    name: str  # Raw description
    amount: Decimal  # Aggregator sign: positive = money out
    iso_currency_code: str | None = None
    category: list[str] = field(default_factory=list)  # Aggregator's own category path
    pending: bool = False
    merchant_name: str | None = None
    authorized_date: date | None = None

    @property
    def direction(self) -> str:
        """``"debit"`` for outflows, ``"credit"`` for inflows."""
        return "debit" if self.amount > 0 else "credit"


@dataclass
class TransactionsPage:
    """One page of the transactions changefeed."""

    added: list[AggregatorTransaction] = field(default_factory=list)
    modified: list[AggregatorTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # transaction IDs
    next_cursor: str = ""
    has_more: bool = False


@dataclass
class AggregatorSecurity:
    """Security metadata returned alongside holdings."""

    security_id: str
    ticker: str | None = None
    name: str | None = None
    type: str | None = None  # e.g. "equity", "etf", "cash"
    subtype: str | None = None
    close_price: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class AggregatorHolding:
    """One position in a holdings snapshot."""

    account_id: str
    security_id: str
    quantity: Decimal
    cost_basis: Decimal | None = None  # Total, not per-unit
    institution_price: Decimal | None = None
    institution_value: Decimal | None = None
    institution_price_as_of: date | None = None
    iso_currency_code: str | None = None


@dataclass
class HoldingsSnapshot:
    """Full holdings snapshot for every account under one connection.

    ``account_ids`` lists the accounts the aggregator reported on. An
    account present there with no holdings has been fully liquidated; an
    account absent from it was not covered by this snapshot.
    """

    holdings: list[AggregatorHolding] = field(default_factory=list)
    securities: list[AggregatorSecurity] = field(default_factory=list)
    account_ids: set[str] = field(default_factory=set)

    def holdings_for(self, account_id: str) -> list[AggregatorHolding]:
        return [h for h in self.holdings if h.account_id == account_id]

    @property
    def securities_by_id(self) -> dict[str, AggregatorSecurity]:
        return {s.security_id: s for s in self.securities}


class AggregatorClient(Protocol):
    """Protocol the sync engines use to talk to the aggregator."""

    @property
    def provider_name(self) -> str:
        """Return the aggregator name (e.g., 'Plaid')."""
        ...

    @property
    def environment(self) -> str:
        """Return the aggregator environment the client talks to (e.g. "production")."""
        ...

    def is_configured(self) -> bool:
        """Check if this aggregator has credentials configured."""
        ...

    def fetch_transactions_page(
        self,
        access_token: str,
        cursor: str | None,
        account_id: str | None = None,
        count: int | None = None,
    ) -> TransactionsPage:
        """Fetch the next changefeed page since ``cursor``.

        Args:
            access_token: The connection's access token.
            cursor: Last checkpointed cursor, or None for a first sync.
            account_id: Restrict the feed to one aggregator account.
            count: Maximum records per page.

        Raises:
            AggregatorError: On any API, network or payload failure.
        """
        ...

    def fetch_holdings(self, access_token: str) -> HoldingsSnapshot:
        """Fetch the full holdings snapshot for one connection.

        Raises:
            AggregatorError: On any API, network or payload failure.
        """
        ...
