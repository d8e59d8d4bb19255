"""Prometheus exposition endpoint."""

from fastapi import APIRouter, Response

from ..utils.metrics import metrics_response

router = APIRouter(tags=["monitoring"])


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    payload, content_type = metrics_response()
    return Response(content=payload, media_type=content_type)
