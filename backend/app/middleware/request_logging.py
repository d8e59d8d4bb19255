"""Per-request access log line and HTTP metrics for the retrieval API."""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.logging import get_logger
from ..utils.metrics import observe_request

logger = get_logger(__name__)

# Set on request.state by the search endpoint.
_SEARCH_STATE = ("search_strategy", "degraded", "result_count")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every non-exempt request and observe HTTP metrics for all of them.

    Search requests also log which retrieval strategy answered and whether
    the lexical fallback was used.
    """

    def __init__(self, app, exempt_paths: Iterable[str] | None = None) -> None:
        super().__init__(app)
        self.exempt_paths = frozenset(exempt_paths or ())

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:  # noqa: BLE001
            duration = time.perf_counter() - start
            logger.exception("request_error", extra=_fields(request, request_id, 500, duration))
            observe_request(request.method, _route_path(request), 500, duration)
            raise

        duration = time.perf_counter() - start
        if request.url.path not in self.exempt_paths:
            logger.info(
                "request", extra=_fields(request, request_id, response.status_code, duration)
            )
        observe_request(request.method, _route_path(request), response.status_code, duration)

        response.headers.setdefault("X-Request-ID", request_id)
        return response


def _fields(request: Request, request_id: str, status: int, duration: float) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": status,
        "duration_ms": round(duration * 1000, 3),
    }
    for name in _SEARCH_STATE:
        value = getattr(request.state, name, None)
        if value is not None:
            fields[name] = value
    return fields


def _route_path(request: Request) -> str:
    # Route templates keep label cardinality bounded.
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


__all__ = ["RequestLoggingMiddleware"]
