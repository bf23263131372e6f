"""API routes for the health report.

Endpoints (mounted under settings.health_path, default /health):
  GET  /health        — aggregated report (local probes + remote instances)
  GET  /health/local  — local probes only
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Request, Response

from src.health.models import HealthReport, HealthStatus
from src.health.remote import TRACE_HEADER
from src.health.renderer import MEDIA_TYPE, render
from src.health.service import HealthService

logger = logging.getLogger(__name__)

health_router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.25

# Degraded still answers 200 so load balancers keep routing
STATUS_CODES = {
    HealthStatus.HEALTHY: 200,
    HealthStatus.DEGRADED: 200,
    HealthStatus.UNKNOWN: 200,
    HealthStatus.UNHEALTHY: 503,
}


def _report_response(report: HealthReport) -> Response:
    return Response(
        content=render(report),
        media_type=MEDIA_TYPE,
        status_code=STATUS_CODES[report.status],
        headers={"Cache-Control": "no-store", TRACE_HEADER: report.trace_id},
    )


@contextlib.asynccontextmanager
async def _cancel_on_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """Cancel event that fires when the client goes away mid-pass."""
    cancel = asyncio.Event()

    async def watch() -> None:
        while not cancel.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected — cancelling health pass")
                cancel.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(watch())
    try:
        yield cancel
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher


@health_router.get("")
async def aggregated_health(request: Request) -> Response:
    """Run one aggregation pass and render it."""
    service: HealthService = request.app.state.health_service
    async with _cancel_on_disconnect(request) as cancel:
        report = await service.run(cancel=cancel, trace_id=request.headers.get(TRACE_HEADER))
    return _report_response(report)


@health_router.get("/local")
async def local_health(request: Request) -> Response:
    """Local probes only — what a remote aggregator would see without federation."""
    service: HealthService = request.app.state.health_service
    async with _cancel_on_disconnect(request) as cancel:
        report = await service.run_local(cancel=cancel, trace_id=request.headers.get(TRACE_HEADER))
    return _report_response(report)
