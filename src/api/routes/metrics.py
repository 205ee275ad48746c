"""Prometheus scrape endpoint for relay session metrics."""

from __future__ import annotations

from fastapi import APIRouter, Response

from src.observability.metrics import get_content_type, get_metrics

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Expose commits, response requests, timeline delivery and session counts.

    Returns:
        Response in Prometheus text exposition format.
    """
    return Response(content=get_metrics(), media_type=get_content_type())
