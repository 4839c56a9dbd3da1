import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from docbuilder.api.server import create_app
from docbuilder.build_queue.queue import BuildQueue
from docbuilder.database.db_utils import DatabaseManager
from docbuilder.metrics.registry import MetricsRegistry
from docbuilder.utils.config_loader import AppConfig, ConfigLoader
from docbuilder.utils.logger import LOGGER as logger
from docbuilder.utils.logger import LoggerSetup


def build_app(config: AppConfig) -> FastAPI:
    """
    Construct every long-lived collaborator exactly once and wire them together.
    """
    if config.database is None:
        raise ValueError("Database configuration is required to start the server")

    metrics = MetricsRegistry(config.metrics)
    db = DatabaseManager(config.database, metrics=metrics)
    queue = BuildQueue(db, metrics, config.build_queue)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        await db.initialize()
        await queue.ensure_schema()
        logger.info("docbuilder started")
        try:
            yield
        finally:
            await db.close()
            logger.info("docbuilder stopped")

    return create_app(metrics, db, queue, config.metrics, lifespan=lifespan)


def main() -> None:
    config_loader = ConfigLoader(os.getenv("DOCBUILDER_CONFIG", "config/config.yaml"))
    config = config_loader.get_config()
    LoggerSetup.setup_logger(config.logging)

    app = build_app(config)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
