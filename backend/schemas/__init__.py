"""Pydantic schemas for API request/response validation."""

from .jobs import JobStatusResponse, RecategorizeRequest
from .sync import (
    AccountSyncStatusResponse,
    ConnectionSyncStatusResponse,
    SyncRunEntryResponse,
    SyncRunResponse,
    SyncStateResponse,
)

__all__ = [
    "AccountSyncStatusResponse",
    "ConnectionSyncStatusResponse",
    "JobStatusResponse",
    "RecategorizeRequest",
    "SyncRunEntryResponse",
    "SyncRunResponse",
    "SyncStateResponse",
]
