"""Pydantic schemas for sync status and sync triggers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SyncStateResponse(BaseModel):
    """Sync progress of one account in one domain."""

    domain: str
    status: str
    has_cursor: bool
    error_message: Optional[str] = None
    total_synced: int
    last_sync_count: Optional[int] = None
    last_synced_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AccountSyncStatusResponse(BaseModel):
    """Both sync domains of one account."""

    account_id: str
    external_id: str
    name: str
    type: Optional[str] = None
    subtype: Optional[str] = None
    transactions: Optional[SyncStateResponse] = None
    investments: Optional[SyncStateResponse] = None


class ConnectionSyncStatusResponse(BaseModel):
    """Per-account sync status for a connection."""

    item_id: str
    user_id: str
    environment: str
    institution_name: Optional[str] = None
    accounts: list[AccountSyncStatusResponse]


class SyncRunEntryResponse(BaseModel):
    """Result of one connection within a batch run."""

    item_id: str
    user_id: str
    status: str
    error_messages: Optional[list[str]] = None
    accounts_synced: int = 0
    accounts_error: int = 0
    transactions_synced: int = 0
    holdings_synced: int = 0
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SyncRunResponse(BaseModel):
    """A batch sync run and its per-connection entries."""

    id: str
    environment: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_complete: bool
    connections_attempted: int
    connections_succeeded: int
    connections_partial: int
    connections_failed: int
    error_message: Optional[str] = None
    entries: list[SyncRunEntryResponse] = []

    model_config = {"from_attributes": True}
