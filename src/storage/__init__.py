"""
Storage abstraction layer for EventShare.

This package provides pluggable persistence for settlement records:

- Memory (default; tests and demo)
- JSON file (single-process deployments)
- PostgreSQL (for production scalability)

Usage:
    from storage import get_settlement_store

    store = get_settlement_store(config)

    with store.atomic():
        store.insert_ticket(ticket)
        store.update_event(event)
"""

from typing import TYPE_CHECKING

from storage.base import (
    SettlementStore,
    StorageConnectionError,
    StorageError,
    StorageIntegrityError,
    StorageReadError,
    StorageWriteError,
)
from storage.json_file import JSONFileStore
from storage.memory import MemoryStore

# Lazy import for PostgreSQL to avoid requiring psycopg2
if TYPE_CHECKING:
    from config import SettlementConfig
    from storage.postgresql import PostgreSQLStore

__all__ = [
    "JSONFileStore",
    "MemoryStore",
    "SettlementStore",
    "StorageConnectionError",
    "StorageError",
    "StorageIntegrityError",
    "StorageReadError",
    "StorageWriteError",
    "get_settlement_store",
]


def get_settlement_store(config: "SettlementConfig") -> SettlementStore:
    """
    Get the store selected by ``config.storage_backend``.

    Returns:
        Configured SettlementStore instance
    """
    backend_type = config.storage_backend

    if backend_type == "memory":
        return MemoryStore()

    if backend_type == "json":
        return JSONFileStore(config.data_file)

    if backend_type in ("postgresql", "postgres"):
        if not config.database_url:
            raise ValueError(
                "DATABASE_URL environment variable required for PostgreSQL backend"
            )
        from storage.postgresql import PostgreSQLStore

        return PostgreSQLStore(config.database_url)

    raise ValueError(
        f"Unknown storage backend: {backend_type}. "
        "Use 'memory', 'json', or 'postgresql'."
    )
