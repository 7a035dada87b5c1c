"""
Storage layer for the dispute engine.

Provides:
- DisputeStore abstraction (InMemory for dev, Postgres for prod)
- Configuration and store selection

The PostgreSQL store is imported from .postgres on demand so that the
in-memory mode does not need a database driver loaded.
"""

from .config import DatabaseConfig, StoreDriver, get_database_url, get_store_driver
from .factory import create_postgres_store, create_store
from .store import (
    ChainHead,
    ClaimStore,
    CommitResult,
    ComplianceStore,
    DisputeStore,
    InMemoryDisputeStore,
    StoreError,
    WriteContext,
)

__all__ = [
    "ChainHead",
    "ClaimStore",
    "CommitResult",
    "ComplianceStore",
    "DisputeStore",
    "InMemoryDisputeStore",
    "StoreError",
    "WriteContext",
    "DatabaseConfig",
    "StoreDriver",
    "get_database_url",
    "get_store_driver",
    "create_store",
    "create_postgres_store",
]
