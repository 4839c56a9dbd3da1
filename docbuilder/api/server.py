import time
from typing import Any, Optional

from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from docbuilder.api.routes.metrics import create_metrics_router
from docbuilder.build_queue.queue import BuildQueue
from docbuilder.metrics.registry import MetricsRegistry
from docbuilder.utils.config_loader import MetricsConfig
from docbuilder.utils.logger import logger

UNMATCHED_ROUTE = "<unmatched>"


class RouteMetricsMiddleware(BaseHTTPMiddleware):
    """
    Counts visits and response times per route template.
    Raw paths are never used as labels so cardinality stays bounded.
    """

    def __init__(self, app: Any, metrics: MetricsRegistry) -> None:
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        start_time = time.perf_counter()
        try:
            return await call_next(request)
        finally:
            elapsed = time.perf_counter() - start_time
            route = request.scope.get("route")
            route_name = getattr(route, "path", None) or UNMATCHED_ROUTE
            self.metrics.routes_visited.labels(route=route_name).inc()
            self.metrics.response_time.labels(route=route_name).observe(elapsed)
            logger.debug(f"{request.method} {request.url.path} ({route_name}) - {elapsed:.3f}s")


async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(f"HTTP {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail, "status_code": exc.status_code})


def create_app(
    metrics: MetricsRegistry,
    db: Any,
    queue: BuildQueue,
    metrics_config: Optional[MetricsConfig] = None,
    lifespan: Any = None,
) -> FastAPI:
    """
    Build the web application around already-constructed collaborators.
    `db` only needs the pool-state accessors MetricsRegistry.gather reads.
    """
    metrics_config = metrics_config or MetricsConfig()

    app = FastAPI(title="docbuilder", lifespan=lifespan)
    app.state.metrics = metrics
    app.state.db = db
    app.state.queue = queue

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_middleware(RouteMetricsMiddleware, metrics=metrics)
    app.include_router(create_metrics_router(metrics_config.endpoint_path))

    logger.info(f"Metrics exposed at {metrics_config.endpoint_path}")
    return app
