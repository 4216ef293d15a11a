"""FastAPI server exposing probe status."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from pulsemon.api.status_routes import status_router
from pulsemon.health.scheduler import ProbeScheduler
from pulsemon.health.state import CacheWatermark
from pulsemon.notifications import NotificationDispatcher
from pulsemon.probes.registry import ProbeRegistry
from pulsemon.version import APP_NAME, __version__, version_payload

logger = logging.getLogger(__name__)


# ── Middleware ───────────────────────────────────────────────────────────────


class ServerHeaderMiddleware(BaseHTTPMiddleware):
    """Stamp every response with the Server identifier."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        response.headers["Server"] = APP_NAME
        return response


# ── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the probe loops with the server, stop them on shutdown."""
    dispatcher = NotificationDispatcher()
    scheduler = ProbeScheduler(app.state.registry, dispatcher)
    app.state.scheduler = scheduler

    await scheduler.start()

    yield

    await scheduler.stop()


# ── App factory ──────────────────────────────────────────────────────────────


def create_app(registry: ProbeRegistry | None = None) -> FastAPI:
    """Create the status application around a shared probe registry."""
    app = FastAPI(
        title="pulsemon",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.registry = registry if registry is not None else ProbeRegistry()
    app.state.version = version_payload()
    app.state.started = CacheWatermark().value

    app.add_middleware(ServerHeaderMiddleware)
    app.include_router(status_router)

    return app
