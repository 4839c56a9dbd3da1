"""
Database-backed queue of crates waiting for a documentation build.

Crates with a higher priority are built first; a crate is "prioritized" while
its priority is positive. A crate stays pending until it has been attempted
max_attempts times, after which it counts as failed and is no longer picked up.
"""

from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

import asyncpg

from docbuilder.database.db_utils import DatabaseManager
from docbuilder.utils.config_loader import BuildQueueConfig
from docbuilder.utils.logger import LOGGER as logger

if TYPE_CHECKING:
    from docbuilder.metrics.registry import MetricsRegistry

CREATE_QUEUE_TABLE = """
CREATE TABLE IF NOT EXISTS queue (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0,
    attempt INTEGER NOT NULL DEFAULT 0,
    date_added TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (name, version)
)
"""
INSERT_CRATE = """
INSERT INTO queue (name, version, priority) VALUES ($1, $2, $3)
ON CONFLICT (name, version) DO NOTHING
"""
COUNT_PENDING = "SELECT COUNT(*) FROM queue WHERE attempt < $1"
COUNT_PRIORITIZED = "SELECT COUNT(*) FROM queue WHERE attempt < $1 AND priority > 0"
COUNT_FAILED = "SELECT COUNT(*) FROM queue WHERE attempt >= $1"
SELECT_NEXT = """
SELECT id, name, version, priority, attempt FROM queue
WHERE attempt < $1
ORDER BY priority DESC, date_added ASC, id ASC
LIMIT 1
FOR UPDATE SKIP LOCKED
"""
DELETE_CRATE = "DELETE FROM queue WHERE id = $1"
INCREMENT_ATTEMPT = "UPDATE queue SET attempt = attempt + 1 WHERE id = $1"


class BuildOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NON_LIBRARY = "non_library"


@dataclass(frozen=True)
class QueuedCrate:
    id: int
    name: str
    version: str
    priority: int
    attempt: int


Builder = Callable[[str, str], Awaitable[BuildOutcome]]


class BuildQueueError(RuntimeError):
    """The queue's backing store could not be read or written."""


# Failures of the backing store; anything else is a bug and propagates as-is
_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError)


class BuildQueue:
    def __init__(self, db: DatabaseManager, metrics: "MetricsRegistry", queue_config: BuildQueueConfig) -> None:
        self.db = db
        self.metrics = metrics
        self.max_attempts = queue_config.max_attempts

    async def _fetchval(self, query: str, *args: Any) -> Any:
        try:
            return await self.db.fetchval(query, *args)
        except _STORE_ERRORS as e:
            raise BuildQueueError(f"Build queue is unavailable: {e}") from e

    async def _execute(self, query: str, *args: Any) -> str:
        try:
            return await self.db.execute(query, *args)
        except _STORE_ERRORS as e:
            raise BuildQueueError(f"Build queue is unavailable: {e}") from e

    async def ensure_schema(self) -> None:
        await self._execute(CREATE_QUEUE_TABLE)

    async def add_crate(self, name: str, version: str, priority: int = 0) -> None:
        await self._execute(INSERT_CRATE, name, version, priority)
        logger.info(f"Queued {name} {version} with priority {priority}")

    async def pending_count(self) -> int:
        return int(await self._fetchval(COUNT_PENDING, self.max_attempts))

    async def prioritized_count(self) -> int:
        return int(await self._fetchval(COUNT_PRIORITIZED, self.max_attempts))

    async def failed_count(self) -> int:
        return int(await self._fetchval(COUNT_FAILED, self.max_attempts))

    async def process_next_crate(self, builder: Builder) -> Optional[QueuedCrate]:
        """
        Build the highest-priority pending crate.

        The crate is claimed with a row lock for the duration of the build, so
        concurrent workers skip it and pick the next one. A completed build,
        whatever its outcome, removes the crate from the queue. If the builder
        raises, the attempt is recorded and the builder's error propagates; the
        crate is retried until it reaches max_attempts.

        Returns:
            The crate that was processed, or None if nothing is pending.
        """
        crate: Optional[QueuedCrate] = None
        outcome: Optional[BuildOutcome] = None
        build_error: Optional[Exception] = None
        try:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(SELECT_NEXT, self.max_attempts)
                if row is None:
                    logger.debug("Build queue is empty")
                    return None
                crate = QueuedCrate(
                    id=row["id"],
                    name=row["name"],
                    version=row["version"],
                    priority=row["priority"],
                    attempt=row["attempt"],
                )

                logger.info(f"Building {crate.name} {crate.version} (attempt {crate.attempt + 1}/{self.max_attempts})")
                try:
                    outcome = await builder(crate.name, crate.version)
                except Exception as e:
                    build_error = e

                if build_error is not None:
                    await conn.execute(INCREMENT_ATTEMPT, crate.id)
                else:
                    await conn.execute(DELETE_CRATE, crate.id)
        except _STORE_ERRORS as e:
            if build_error is not None:
                logger.error(f"Could not record failed attempt for {crate.name} {crate.version}: {e}")
                raise build_error
            raise BuildQueueError(f"Build queue is unavailable: {e}") from e

        if build_error is not None:
            if crate.attempt + 1 >= self.max_attempts:
                logger.error(
                    f"Giving up on {crate.name} {crate.version} after {self.max_attempts} attempts: {build_error}"
                )
            else:
                logger.warning(f"Build of {crate.name} {crate.version} errored, will retry: {build_error}")
            raise build_error

        self.metrics.total_builds.inc()
        if outcome is BuildOutcome.SUCCESS:
            self.metrics.successful_builds.inc()
        elif outcome is BuildOutcome.FAILURE:
            self.metrics.failed_builds.inc()
        elif outcome is BuildOutcome.NON_LIBRARY:
            self.metrics.non_library_builds.inc()

        logger.info(f"Finished {crate.name} {crate.version}: {outcome.value}")
        return crate
