"""
FastAPI dependencies resolving the collaborators stored on app.state by create_app
"""

from typing import Any

from fastapi import HTTPException, Request

from docbuilder.build_queue.queue import BuildQueue
from docbuilder.metrics.registry import MetricsRegistry
from docbuilder.utils.logger import logger


def _from_state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        logger.error(f"Application state '{name}' not initialized")
        raise HTTPException(status_code=500, detail=f"Application state '{name}' not initialized")
    return value


def get_metrics(request: Request) -> MetricsRegistry:
    return _from_state(request, "metrics")


def get_pool(request: Request) -> Any:
    """The database manager, used here only as a pool-state source"""
    return _from_state(request, "db")


def get_queue(request: Request) -> BuildQueue:
    return _from_state(request, "queue")
