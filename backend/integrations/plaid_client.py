"""Plaid API client.

This module implements the AggregatorClient protocol for Plaid via the
plaid-python SDK: the ``/transactions/sync`` changefeed and the
``/investments/holdings/get`` snapshot.

Plaid uses per-institution access tokens (Items); the caller passes the
token of the connection being synced.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.investments_holdings_get_request import InvestmentsHoldingsGetRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions

from config import settings
from integrations.aggregator_protocol import (
    AggregatorHolding,
    AggregatorSecurity,
    AggregatorTransaction,
    HoldingsSnapshot,
    TransactionsPage,
)
from integrations.exceptions import (
    AggregatorAPIError,
    AggregatorAuthError,
    AggregatorConnectionError,
    AggregatorDataError,
    AggregatorError,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

# Plaid error codes that mean the user must re-authenticate the Item.
_AUTH_ERROR_CODES = frozenset(
    {
        "INVALID_ACCESS_TOKEN",
        "ITEM_LOGIN_REQUIRED",
        "ACCESS_NOT_GRANTED",
        "INVALID_API_KEYS",
    }
)


class PlaidClient:
    """Wrapper around the Plaid API.

    Implements the AggregatorClient protocol.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = (environment or settings.PLAID_ENVIRONMENT).lower()

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            host = _ENVIRONMENT_MAP.get(self._environment)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                self._environment,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        return PROVIDER_NAME

    @property
    def environment(self) -> str:
        return self._environment

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Transactions changefeed
    # ------------------------------------------------------------------

    def fetch_transactions_page(
        self,
        access_token: str,
        cursor: str | None,
        account_id: str | None = None,
        count: int | None = None,
    ) -> TransactionsPage:
        """Fetch one ``/transactions/sync`` page since ``cursor``."""
        kwargs: dict = {
            "access_token": access_token,
            "count": count or settings.TRANSACTIONS_PAGE_SIZE,
        }
        # An omitted cursor asks Plaid for the full history
        if cursor:
            kwargs["cursor"] = cursor
        if account_id:
            kwargs["options"] = TransactionsSyncRequestOptions(account_id=account_id)

        response = self._call(self._get_api().transactions_sync, TransactionsSyncRequest(**kwargs))

        try:
            page = TransactionsPage(
                added=[self._map_transaction(t) for t in response.get("added", []) or []],
                modified=[self._map_transaction(t) for t in response.get("modified", []) or []],
                removed=[
                    r.get("transaction_id")
                    for r in response.get("removed", []) or []
                    if r.get("transaction_id")
                ],
                next_cursor=response["next_cursor"],
                has_more=bool(response.get("has_more", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AggregatorDataError(
                f"Malformed transactions page from Plaid: {e}", PROVIDER_NAME
            ) from e

        logger.debug(
            "Plaid transactions page: %d added, %d modified, %d removed, has_more=%s",
            len(page.added), len(page.modified), len(page.removed), page.has_more,
        )
        return page

    def _map_transaction(self, txn: dict) -> AggregatorTransaction:
        """Map a Plaid transaction to an AggregatorTransaction.

        Raises:
            KeyError / ValueError: If required fields are missing.
        """
        transaction_id = txn["transaction_id"]
        amount = self._to_decimal(txn.get("amount"))
        if amount is None:
            raise ValueError(f"transaction {transaction_id} has no amount")
        txn_date = self._to_date(txn.get("date"))
        if txn_date is None:
            raise ValueError(f"transaction {transaction_id} has no date")

        return AggregatorTransaction(
            transaction_id=transaction_id,
            account_id=txn["account_id"],
            date=txn_date,
            name=txn.get("name") or txn.get("merchant_name") or "",
            amount=amount,
            iso_currency_code=txn.get("iso_currency_code"),
            category=self._category_path(txn),
            pending=bool(txn.get("pending", False)),
            merchant_name=txn.get("merchant_name"),
            authorized_date=self._to_date(txn.get("authorized_date")),
        )

    @staticmethod
    def _category_path(txn: dict) -> list[str]:
        """``[primary, detailed]`` from ``personal_finance_category``.

        Falls back to the legacy ``category`` list.
        """
        pfc = txn.get("personal_finance_category")
        if pfc:
            path = [p for p in (pfc.get("primary"), pfc.get("detailed")) if p]
            if path:
                return path
        return list(txn.get("category") or [])

    # ------------------------------------------------------------------
    # Holdings snapshot
    # ------------------------------------------------------------------

    def fetch_holdings(self, access_token: str) -> HoldingsSnapshot:
        """Fetch ``/investments/holdings/get`` for every account of an Item."""
        request = InvestmentsHoldingsGetRequest(access_token=access_token)
        response = self._call(self._get_api().investments_holdings_get, request)

        try:
            securities = [
                self._map_security(sec)
                for sec in response.get("securities", []) or []
                if sec.get("security_id")
            ]
            holdings = [
                self._map_holding(h)
                for h in response.get("holdings", []) or []
                if h.get("account_id") and h.get("security_id")
            ]
            account_ids = {
                acct.get("account_id")
                for acct in response.get("accounts", []) or []
                if acct.get("account_id")
            }
        except (KeyError, TypeError, ValueError) as e:
            raise AggregatorDataError(
                f"Malformed holdings response from Plaid: {e}", PROVIDER_NAME
            ) from e

        logger.info(
            "Plaid holdings: %d accounts, %d holdings, %d securities",
            len(account_ids), len(holdings), len(securities),
        )
        return HoldingsSnapshot(
            holdings=holdings,
            securities=securities,
            account_ids=account_ids,
        )

    def _map_security(self, sec: dict) -> AggregatorSecurity:
        return AggregatorSecurity(
            security_id=sec["security_id"],
            ticker=sec.get("ticker_symbol"),
            name=sec.get("name"),
            type=sec.get("type"),
            subtype=sec.get("subtype"),
            close_price=self._to_decimal(sec.get("close_price")),
            iso_currency_code=sec.get("iso_currency_code"),
        )

    def _map_holding(self, holding: dict) -> AggregatorHolding:
        return AggregatorHolding(
            account_id=holding["account_id"],
            security_id=holding["security_id"],
            quantity=self._to_decimal(holding.get("quantity")) or Decimal("0"),
            cost_basis=self._to_decimal(holding.get("cost_basis")),
            institution_price=self._to_decimal(holding.get("institution_price")),
            institution_value=self._to_decimal(holding.get("institution_value")),
            institution_price_as_of=self._to_date(holding.get("institution_price_as_of")),
            iso_currency_code=holding.get("iso_currency_code"),
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def _call(self, method, request):
        """Invoke an SDK method, translating failures into AggregatorError."""
        try:
            return method(request)
        except ApiException as e:
            raise self._map_plaid_error(e) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise AggregatorConnectionError(
                f"Plaid request failed: {e}", PROVIDER_NAME
            ) from e

    @staticmethod
    def _map_plaid_error(exc: ApiException) -> AggregatorError:
        """Map a Plaid ApiException to the aggregator exception hierarchy."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (ValueError, AttributeError):
            pass

        if status in (401, 403) or error_code in _AUTH_ERROR_CODES:
            return AggregatorAuthError(message, PROVIDER_NAME)
        return AggregatorAPIError(
            message,
            PROVIDER_NAME,
            status_code=status or None,
            error_code=error_code or None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def _to_date(value) -> date | None:
        """Accept SDK ``date`` objects or ISO strings."""
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None
