"""Tests for AccountService (connection and account lookups)."""

from services.account_service import AccountService
from tests.fixtures import create_account, create_connection


class TestConnections:
    def test_get_connection_by_item_id(self, db, connection):
        assert AccountService.get_connection_by_item_id(db, "item-1").id == connection.id
        assert AccountService.get_connection_by_item_id(db, "item-404") is None

    def test_get_connection(self, db, connection):
        assert AccountService.get_connection(db, connection.id).item_id == "item-1"

    def test_list_connections_by_environment(self, db):
        create_connection(db, item_id="sb-1")
        create_connection(db, item_id="prod-1", environment="production")

        production = AccountService.list_connections(db, "production")

        assert [c.item_id for c in production] == ["prod-1"]
        assert len(AccountService.list_connections(db)) == 2

    def test_list_connections_skips_ignored_users(self, db):
        create_connection(db, item_id="real", user_id="user-1")
        create_connection(db, item_id="demo", user_id="demo-user")

        result = AccountService.list_connections(db, "sandbox", frozenset({"demo-user"}))

        assert [c.item_id for c in result] == ["real"]


class TestAccounts:
    def test_list_accounts_for_connection(
        self, db, connection, checking_account, savings_account, investment_account
    ):
        other = create_connection(db, item_id="item-2", user_id="user-2")
        create_account(db, other, "acc-elsewhere", "Elsewhere")

        accounts = AccountService.list_accounts_for_connection(db, connection.id)

        assert [a.name for a in accounts] == ["Brokerage", "Everyday Checking", "Rainy Day Savings"]

    def test_is_investment(self, checking_account, investment_account):
        assert investment_account.is_investment is True
        assert checking_account.is_investment is False
