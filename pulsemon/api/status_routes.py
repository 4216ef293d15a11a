"""Status API — probe states and version document with conditional GET.

Endpoints:
  GET /status   — every probe's {name, web|shell, failed, since, error}
  GET /version  — {app, runtime, os, arch}

Both answer ``304 Not Modified`` when ``If-None-Match`` carries the current
validator. The /status validator moves on every probe transition; the
/version validator is fixed at startup.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, Response

logger = logging.getLogger(__name__)

status_router = APIRouter()

JSON_HEADERS = {
    "Cache-Control": "no-cache",
    "Access-Control-Allow-Origin": "*",
    "X-Content-Type-Options": "nosniff",
}


def not_modified(request: Request, validator: str) -> bool:
    return request.headers.get("if-none-match") == validator


def json_response(payload: Any, validator: str) -> Response:
    """Serialize ``payload``; a serialization failure yields an empty 500."""
    try:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        logger.exception("Cannot serialize status document")
        return Response(status_code=500)
    return Response(
        content=body,
        media_type="application/json; charset=utf-8",
        headers={"ETag": validator, **JSON_HEADERS},
    )


@status_router.get("/status")
def get_status(request: Request) -> Response:
    """Current state of every probe, in probe-file order."""
    registry = request.app.state.registry
    # Validator is read before the snapshot: it may lag the body, never lead it
    validator = registry.watermark.value
    if not_modified(request, validator):
        return Response(status_code=304, headers={"ETag": validator})
    return json_response(registry.snapshot(), validator)


@status_router.get("/version")
def get_version(request: Request) -> Response:
    """Application version and runtime details."""
    validator = request.app.state.started
    if not_modified(request, validator):
        return Response(status_code=304, headers={"ETag": validator})
    return json_response(request.app.state.version, validator)
