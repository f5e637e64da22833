"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from integrations.aggregator_protocol import (
    AggregatorHolding,
    AggregatorSecurity,
    AggregatorTransaction,
)
from models import Account, Budget, Connection
from sqlalchemy.orm import Session


def create_connection(
    db: Session,
    item_id: str = "item-1",
    user_id: str = "user-1",
    environment: str = "sandbox",
    institution_name: str = "First Platypus Bank",
) -> Connection:
    """Create and commit a Connection."""
    conn = Connection(
        item_id=item_id,
        user_id=user_id,
        access_token=f"access-{environment}-{item_id}",
        environment=environment,
        institution_name=institution_name,
    )
    db.add(conn)
    db.commit()
    db.refresh(conn)
    return conn


def create_account(
    db: Session,
    connection: Connection,
    external_id: str,
    name: str,
    type: str = "depository",
    subtype: str | None = "checking",
) -> Account:
    """Create and commit an Account under ``connection``."""
    account = Account(
        connection_id=connection.id,
        external_id=external_id,
        user_id=connection.user_id,
        name=name,
        type=type,
        subtype=subtype,
        iso_currency_code="USD",
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def make_transaction(
    transaction_id: str,
    account_id: str = "acc-checking",
    amount: str = "12.50",
    name: str | None = None,
    txn_date: date = date(2026, 3, 1),
    pending: bool = False,
) -> AggregatorTransaction:
    """Build an aggregator transaction (positive amount = money out)."""
    return AggregatorTransaction(
        transaction_id=transaction_id,
        account_id=account_id,
        date=txn_date,
        name=name or f"Purchase {transaction_id}",
        amount=Decimal(amount),
        iso_currency_code="USD",
        category=["Shops"],
        pending=pending,
    )


def make_holding(
    account_id: str,
    security_id: str,
    quantity: str = "10",
    price: str = "100",
) -> AggregatorHolding:
    """Build an aggregator holding valued at quantity * price."""
    qty = Decimal(quantity)
    px = Decimal(price)
    return AggregatorHolding(
        account_id=account_id,
        security_id=security_id,
        quantity=qty,
        cost_basis=qty * px,
        institution_price=px,
        institution_value=qty * px,
        iso_currency_code="USD",
    )


def make_security(security_id: str, ticker: str, name: str | None = None) -> AggregatorSecurity:
    return AggregatorSecurity(
        security_id=security_id,
        ticker=ticker,
        name=name or ticker,
        type="equity",
        iso_currency_code="USD",
    )


@pytest.fixture
def connection(db: Session) -> Connection:
    """A sandbox connection owned by user-1."""
    return create_connection(db)


@pytest.fixture
def checking_account(db: Session, connection: Connection) -> Account:
    """A checking account under ``connection``."""
    return create_account(db, connection, "acc-checking", "Everyday Checking")


@pytest.fixture
def savings_account(db: Session, connection: Connection) -> Account:
    """A savings account under ``connection``."""
    return create_account(db, connection, "acc-savings", "Rainy Day Savings", subtype="savings")


@pytest.fixture
def investment_account(db: Session, connection: Connection) -> Account:
    """A brokerage account under ``connection``."""
    return create_account(
        db, connection, "acc-brokerage", "Brokerage", type="investment", subtype="brokerage"
    )


@pytest.fixture
def retirement_account(db: Session, connection: Connection) -> Account:
    """An IRA under ``connection``."""
    return create_account(db, connection, "acc-ira", "Roth IRA", type="investment", subtype="roth")


@pytest.fixture
def budget(db: Session, connection: Connection) -> Budget:
    """A dining budget for the connection's user."""
    b = Budget(
        user_id=connection.user_id,
        title="Dining Out",
        filter_prompt="Restaurants, cafes and food delivery",
    )
    db.add(b)
    db.commit()
    db.refresh(b)
    return b
