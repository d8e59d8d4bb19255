"""
Health check router for uptime monitoring.

``/healthz`` answers without touching any dependency, so it stays fast when
the database is degraded. ``/readyz`` round-trips to PostgreSQL and is meant
for readiness probes.

Example Usage:
    ```bash
    curl http://localhost:8000/v1/healthz
    # Response: {"ok": true}
    ```
"""

import asyncpg
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..db.postgres_async import get_pg
from ..utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/healthz", response_model=dict[str, bool])
def healthz() -> dict[str, bool]:
    """
    Liveness check.

    Returns:
        Dictionary with single "ok" key set to True
    """
    return {"ok": True}


@router.get("/readyz", response_model=dict[str, bool])
async def readyz(conn: asyncpg.Connection = Depends(get_pg)) -> JSONResponse:
    """
    Readiness check against the vector store database.

    Status Codes:
        200: Database answered
        503: Database query failed
    """
    try:
        await conn.fetchval("SELECT 1")
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
        logger.warning("readiness_failed", extra={"error": str(exc)})
        return JSONResponse({"ok": False}, status_code=503)
    return JSONResponse({"ok": True})
