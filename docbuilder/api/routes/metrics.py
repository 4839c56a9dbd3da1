"""
Prometheus scrape endpoint
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from docbuilder.metrics.registry import MetricsRegistry
from docbuilder.utils.logger import logger

from ..dependencies import get_metrics, get_pool, get_queue


def create_metrics_router(endpoint_path: str) -> APIRouter:
    router = APIRouter(tags=["metrics"])

    @router.get(endpoint_path, include_in_schema=False)
    async def scrape_metrics(
        metrics: MetricsRegistry = Depends(get_metrics),
        pool: Any = Depends(get_pool),
        queue: Any = Depends(get_queue),
    ) -> Response:
        """Refresh pulled gauges and return every metric in the text exposition format"""
        try:
            snapshot = await metrics.gather(pool, queue)
        except Exception as e:
            # A failed scrape must be visible as such, never served as stale data
            logger.error(f"Failed to gather metrics: {e}")
            raise HTTPException(status_code=500, detail="Failed to gather metrics") from e

        return Response(content=snapshot.render(), media_type=CONTENT_TYPE_LATEST)

    return router
