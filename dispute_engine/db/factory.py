"""
Store selection.

Mode is determined by environment variables:
- DISPUTE_ENGINE_STORE_DRIVER: Explicit driver selection (memory, psycopg2)
- DATABASE_URL or DATABASE_HOST: Database connection (auto-selects psycopg2)
- Neither set: in-memory (default for development)

Outside production a PostgreSQL store that cannot connect falls back to
memory with a warning. In production it is fatal.
"""

from ..observability import get_logger, is_production
from .config import DatabaseConfig, StoreDriver, get_store_driver
from .store import DisputeStore, InMemoryDisputeStore

logger = get_logger(__name__)


def create_store() -> DisputeStore:
    driver = get_store_driver()

    if driver == StoreDriver.MEMORY:
        logger.info("Using in-memory dispute store (no persistence)")
        return InMemoryDisputeStore()

    try:
        return create_postgres_store(DatabaseConfig.from_env())
    except Exception as e:
        if is_production():
            raise
        logger.warning(
            "Could not open PostgreSQL store, falling back to in-memory",
            error=str(e),
        )
        return InMemoryDisputeStore()


def create_postgres_store(config: DatabaseConfig) -> DisputeStore:
    """Create a PostgresDisputeStore and check the connection once."""
    import psycopg2
    from .postgres import PostgresDisputeStore

    def connection_factory():
        return psycopg2.connect(config.to_dsn())

    connection_factory().close()

    store = PostgresDisputeStore(
        connection_factory,
        lock_timeout_ms=config.lock_timeout_ms,
        statement_timeout_ms=config.statement_timeout_ms,
    )
    logger.info(
        "PostgreSQL dispute store ready",
        host=config.host,
        port=config.port,
        database=config.database,
    )
    return store
