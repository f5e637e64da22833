"""Tests for InvestmentSyncService (holdings snapshot replacement)."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from integrations.aggregator_protocol import HoldingsSnapshot
from integrations.exceptions import AggregatorConnectionError
from models import Holding
from models.sync_state import (
    SYNC_DOMAIN_INVESTMENTS,
    SYNC_STATUS_COMPLETE,
    SYNC_STATUS_ERROR,
    SYNC_STATUS_SYNCING,
)
from services.holding_service import HoldingService
from services.investment_sync_service import MISSING_FROM_SNAPSHOT, InvestmentSyncService
from services.sync_state_service import SyncStateService
from tests.fixtures import make_holding, make_security
from tests.fixtures.mocks import MockAggregatorClient


def _snapshot(holdings, account_ids=("acc-brokerage", "acc-ira")):
    securities = {h.security_id: make_security(h.security_id, h.security_id.upper()) for h in holdings}
    return HoldingsSnapshot(
        holdings=list(holdings),
        securities=list(securities.values()),
        account_ids=set(account_ids),
    )


def _positions(db, account):
    db.expire_all()
    return {
        h.security_id: h.quantity
        for h in db.query(Holding).filter(Holding.account_id == account.id).all()
    }


def _state(db, account):
    db.expire_all()
    return SyncStateService.get_state(db, account.id, SYNC_DOMAIN_INVESTMENTS)


@pytest.fixture
def synced_once(db, connection, investment_account, retirement_account):
    """Both investment accounts synced with an initial snapshot."""
    client = MockAggregatorClient(
        holdings=_snapshot(
            [
                make_holding("acc-brokerage", "vti", quantity="10"),
                make_holding("acc-ira", "bnd", quantity="5"),
            ]
        )
    )
    InvestmentSyncService(client).sync_connection(db, connection)
    return client


class TestSyncConnection:
    def test_writes_holdings_per_account(
        self, db, connection, investment_account, retirement_account, synced_once
    ):
        assert _positions(db, investment_account) == {"vti": Decimal("10")}
        assert _positions(db, retirement_account) == {"bnd": Decimal("5")}
        state = _state(db, investment_account)
        assert state.status == SYNC_STATUS_COMPLETE
        assert state.cursor is None
        assert state.last_sync_count == 1
        assert state.total_synced == 1

    def test_denormalizes_security_metadata(
        self, db, investment_account, synced_once
    ):
        holding = db.query(Holding).filter(Holding.account_id == investment_account.id).one()

        assert holding.ticker == "VTI"
        assert holding.security_name == "VTI"
        assert holding.security_type == "equity"
        assert holding.institution_value == Decimal("1000")

    def test_fetches_snapshot_once_per_connection(self, db, connection, synced_once):
        assert [c[0] for c in synced_once.calls] == ["holdings"]
        assert synced_once.calls[0][1] == connection.access_token

    def test_replaces_holdings_wholesale(
        self, db, connection, investment_account, retirement_account, synced_once
    ):
        synced_once.holdings = _snapshot(
            [
                make_holding("acc-brokerage", "vxus", quantity="3"),
                make_holding("acc-ira", "bnd", quantity="6"),
            ]
        )

        result = InvestmentSyncService(synced_once).sync_connection(db, connection)

        assert len(result.succeeded) == 2
        assert _positions(db, investment_account) == {"vxus": Decimal("3")}
        assert _positions(db, retirement_account) == {"bnd": Decimal("6")}

    def test_write_failure_keeps_prior_snapshot_for_that_account_only(
        self, db, connection, investment_account, retirement_account, synced_once
    ):
        synced_once.holdings = _snapshot(
            [
                make_holding("acc-brokerage", "vxus", quantity="3"),
                make_holding("acc-ira", "bndx", quantity="8"),
            ]
        )
        original = HoldingService.replace_holdings

        def failing_for_brokerage(session, account, holdings, securities):
            written = original(session, account, holdings, securities)
            if account.external_id == "acc-brokerage":
                raise RuntimeError("constraint violated")
            return written

        with patch(
            "services.investment_sync_service.HoldingService.replace_holdings",
            side_effect=failing_for_brokerage,
        ):
            result = InvestmentSyncService(synced_once).sync_connection(db, connection)

        assert [a.account_name for a in result.failed] == ["Brokerage"]
        assert [a.account_name for a in result.succeeded] == ["Roth IRA"]
        assert _positions(db, investment_account) == {"vti": Decimal("10")}
        assert _positions(db, retirement_account) == {"bndx": Decimal("8")}
        broker_state = _state(db, investment_account)
        assert broker_state.status == SYNC_STATUS_ERROR
        assert broker_state.error_message == "constraint violated"
        assert _state(db, retirement_account).status == SYNC_STATUS_COMPLETE

    def test_empty_holdings_means_liquidation(
        self, db, connection, investment_account, retirement_account, synced_once
    ):
        synced_once.holdings = _snapshot([make_holding("acc-ira", "bnd", quantity="5")])

        result = InvestmentSyncService(synced_once).sync_connection(db, connection)

        assert len(result.succeeded) == 2
        assert _positions(db, investment_account) == {}
        state = _state(db, investment_account)
        assert state.status == SYNC_STATUS_COMPLETE
        assert state.last_sync_count == 0

    def test_account_missing_from_snapshot_keeps_holdings(
        self, db, connection, investment_account, retirement_account, synced_once
    ):
        synced_once.holdings = _snapshot(
            [make_holding("acc-ira", "bnd", quantity="7")], account_ids=("acc-ira",)
        )

        result = InvestmentSyncService(synced_once).sync_connection(db, connection)

        assert result.failed[0].error == MISSING_FROM_SNAPSHOT
        assert _positions(db, investment_account) == {"vti": Decimal("10")}
        assert _state(db, investment_account).status == SYNC_STATUS_ERROR
        assert _positions(db, retirement_account) == {"bnd": Decimal("7")}

    def test_fetch_failure_marks_accounts_and_raises(
        self, db, connection, investment_account, retirement_account, synced_once
    ):
        synced_once.holdings = AggregatorConnectionError("timed out", "Plaid")

        with pytest.raises(AggregatorConnectionError):
            InvestmentSyncService(synced_once).sync_connection(db, connection)

        for account in (investment_account, retirement_account):
            state = _state(db, account)
            assert state.status == SYNC_STATUS_ERROR
            assert state.error_message == "timed out"
        assert _positions(db, investment_account) == {"vti": Decimal("10")}

    def test_fetch_failure_leaves_claimed_account_alone(
        self, db, connection, investment_account
    ):
        state = SyncStateService.ensure_state(db, investment_account.id, SYNC_DOMAIN_INVESTMENTS)
        state.status = SYNC_STATUS_SYNCING
        db.commit()
        client = MockAggregatorClient(holdings=AggregatorConnectionError("timed out", "Plaid"))

        with pytest.raises(AggregatorConnectionError):
            InvestmentSyncService(client).sync_connection(db, connection)

        assert _state(db, investment_account).status == SYNC_STATUS_SYNCING

    def test_skips_non_investment_accounts(self, db, connection, checking_account):
        client = MockAggregatorClient()

        result = InvestmentSyncService(client).sync_connection(db, connection)

        assert result.accounts == []
        assert client.calls == []

    def test_merges_duplicate_positions(self, db, connection, investment_account):
        client = MockAggregatorClient(
            holdings=_snapshot(
                [
                    make_holding("acc-brokerage", "vti", quantity="10", price="200"),
                    make_holding("acc-brokerage", "vti", quantity="2.5", price="200"),
                ],
                account_ids=("acc-brokerage",),
            )
        )

        result = InvestmentSyncService(client).sync_connection(db, connection)

        assert result.records == 1
        holding = db.query(Holding).filter(Holding.account_id == investment_account.id).one()
        assert holding.quantity == Decimal("12.5")
        assert holding.institution_value == Decimal("2500")
