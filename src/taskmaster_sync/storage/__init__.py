"""Storage backends for projects and sync history."""

from .base import StorageBackend, SyncStore, backend_for_url, get_store
from .sqlite import SQLiteSyncStore

__all__ = [
    "SQLiteSyncStore",
    "StorageBackend",
    "SyncStore",
    "backend_for_url",
    "get_store",
]
