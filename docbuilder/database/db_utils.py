import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Optional

import asyncpg

from docbuilder.utils.config_loader import DatabaseConfig
from docbuilder.utils.logger import LOGGER as logger

if TYPE_CHECKING:
    from docbuilder.metrics.registry import MetricsRegistry


class DatabaseManager:
    """
    Manages database connections using asyncpg connection pooling.
    Also serves as the pool-state source for the metrics gather.
    """

    def __init__(self, db_config: DatabaseConfig, metrics: Optional["MetricsRegistry"] = None) -> None:
        self.db_config = db_config
        self.metrics = metrics
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    def _record_failed_connection(self) -> None:
        if self.metrics is not None:
            self.metrics.failed_db_connections.inc()

    async def initialize(self) -> None:
        """
        Initializes the database connection pool.
        Must be called once at application startup.
        """
        async with self._lock:
            if self._pool is not None:
                logger.warning("DatabaseManager.initialize called, but pool is already initialized.")
                return

            db_config = self.db_config
            logger.info(
                f"Attempting to create connection pool for database '{db_config.dbname}' at {db_config.host}:{db_config.port}"
            )
            try:
                self._pool = await asyncpg.create_pool(
                    user=db_config.user,
                    password=db_config.password,
                    host=db_config.host,
                    port=db_config.port,
                    database=db_config.dbname,
                    min_size=db_config.min_connections,
                    max_size=db_config.max_connections,
                    timeout=db_config.timeout,
                )
                logger.info("Database connection pool initialized successfully.")
            except (
                asyncpg.exceptions.InvalidPasswordError,
                asyncpg.exceptions.InvalidAuthorizationSpecificationError,
            ) as e:
                self._record_failed_connection()
                logger.critical(
                    f"CRITICAL: Database authentication failed for user '{db_config.user}'. Check credentials. Error: {e}"
                )
                raise RuntimeError("Database authentication failed.") from e
            except OSError as e:
                self._record_failed_connection()
                logger.critical(
                    f"CRITICAL: Database connection refused at {db_config.host}:{db_config.port}. Is the database running and accessible? Error: {e}"
                )
                raise RuntimeError("Database connection was refused.") from e
            except Exception as e:
                self._record_failed_connection()
                logger.critical(f"CRITICAL: Failed to create database connection pool. Error: {e}")
                raise RuntimeError("Database initialization failed due to an unexpected error.") from e

    async def close(self) -> None:
        """
        Closes the database connection pool gracefully.
        """
        async with self._lock:
            if self._pool is None:
                logger.info("Database connection pool was not initialized or already closed.")
                return

            logger.info("Closing database connection pool...")
            try:
                await self._pool.close()
                logger.info("Database connection pool closed successfully.")
            except Exception as e:
                logger.error(f"An error occurred while closing the database pool: {e}")
            finally:
                self._pool = None

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """
        Acquires a connection from the pool and releases it automatically.
        """
        if self._pool is None:
            logger.critical("CRITICAL: Attempted to get a DB connection from an uninitialized pool.")
            raise RuntimeError("DatabaseManager is not initialized. Call initialize() at application startup.")

        try:
            conn = await self._pool.acquire()
        except Exception as e:
            self._record_failed_connection()
            logger.error(f"Failed to acquire a database connection from the pool: {e}")
            raise

        try:
            yield conn
        finally:
            await self._pool.release(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """
        Runs the enclosed statements on one connection inside a transaction.
        Commits when the block exits normally and rolls back if it raises.
        """
        async with self.get_connection() as conn:
            logger.debug("Starting a new database transaction.")
            try:
                async with conn.transaction():
                    yield conn
            except Exception as e:
                logger.error(f"Transaction rolled back due to an error: {e}")
                raise
            logger.debug("Transaction committed successfully.")

    async def fetch_row(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        async with self.get_connection() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.get_connection() as conn:
            return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        """
        Executes a query that does not return rows and returns the command status.
        """
        async with self.get_connection() as conn:
            result = await conn.execute(query, *args)
            return str(result)

    # Pool state, read by MetricsRegistry.gather

    def idle_connections(self) -> int:
        if self._pool is None:
            return 0
        return self._pool.get_idle_size()

    def used_connections(self) -> int:
        if self._pool is None:
            return 0
        return self._pool.get_size() - self._pool.get_idle_size()

    def max_size(self) -> int:
        if self._pool is None:
            return self.db_config.max_connections
        return self._pool.get_max_size()
