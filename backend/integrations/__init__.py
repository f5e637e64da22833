"""External API integrations.

This package contains:
- Aggregator protocol: normalized changefeed / holdings records
- Plaid client: Integration with the Plaid API
- Categorization client: AI categorization via the Anthropic API
"""

from integrations.aggregator_protocol import (
    AggregatorClient,
    AggregatorHolding,
    AggregatorSecurity,
    AggregatorTransaction,
    HoldingsSnapshot,
    TransactionsPage,
)

__all__ = [
    "AggregatorClient",
    "AggregatorHolding",
    "AggregatorSecurity",
    "AggregatorTransaction",
    "HoldingsSnapshot",
    "TransactionsPage",
]
