"""API route handlers."""
from . import jobs, sync

__all__ = ["jobs", "sync"]
