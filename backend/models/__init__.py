"""SQLAlchemy ORM models."""

from .account import Account
from .background_job import BackgroundJob
from .budget import Budget
from .categorization_rules import CategorizationRules
from .connection import Connection
from .holding import Holding
from .sync_run import SyncRun, SyncRunEntry
from .sync_state import SyncState
from .transaction import Transaction
from .utils import generate_uuid

__all__ = ["Account", "BackgroundJob", "Budget", "CategorizationRules", "Connection", "Holding", "SyncRun", "SyncRunEntry", "SyncState", "Transaction", "generate_uuid"]
