"""FastAPI app factory."""

import logging
import time
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from adaptive import __version__
from adaptive.api.routers import ingest, insights, system
from adaptive.config import AppConfig
from adaptive.infrastructure.error_handling import ConfigError, PersistenceError, UpstreamError
from adaptive.infrastructure.metrics_store import MetricsStore, create_metrics_store
from adaptive.integrations.meta_client import AccountAuth, ClientConfig, MetaClient
from adaptive.utils import Clock, RealClock

logger = logging.getLogger("adaptive.api")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start
        logger.info(
            "%s %s -> %d (%.2fs)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError):
        logger.warning("%s %s: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        logger.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc.message)
        return _error(500, exc.message)

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return _error(400, f"invalid request: {problems}")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s %s: %s (type=%s)",
            request.method,
            request.url.path,
            str(exc),
            type(exc).__name__,
        )
        logger.debug(traceback.format_exc())
        return _error(500, "internal error")


def create_app(
    config: AppConfig,
    client: Optional[MetaClient] = None,
    store: Optional[MetricsStore] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """Build the app around explicit services; missing ones are created from `config`."""
    if client is None:
        client = MetaClient(
            AccountAuth(config.ad_account_id, config.access_token),
            ClientConfig.from_app_config(config),
        )
    if store is None:
        store = create_metrics_store(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Adaptive API starting up (store=%s)", store.name if store is not None else None)
        try:
            yield
        finally:
            close = getattr(store, "close", None)
            if callable(close):
                close()
            logger.info("Adaptive API shutting down")

    app = FastAPI(
        title="Adaptive Ads API",
        description="Ranks Meta ads by efficiency or profit and persists performance metrics",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.client = client
    app.state.store = store
    app.state.clock = clock or RealClock()

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(insights.router)
    app.include_router(ingest.router)
    app.include_router(system.router)
    return app
