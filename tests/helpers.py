"""Test helpers — canned probes, reports and remote transports."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import httpx

from src.health.models import HealthReport, HealthStatus, ProbeResult, worst_status
from src.health.probes import Probe


class StaticProbe(Probe):
    """Returns a fixed result, optionally after a delay."""

    def __init__(self, result: ProbeResult | HealthStatus, delay: float = 0.0, **attrs: Any) -> None:
        self._result = result if isinstance(result, ProbeResult) else ProbeResult(result)
        self._delay = delay
        self.calls = 0
        for key, value in attrs.items():
            setattr(self, key, value)

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._result


class FailingProbe(Probe):
    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        raise self._exc


def make_report(
    entries: dict[str, tuple[HealthStatus, float]],
    status: HealthStatus | None = None,
    trace_id: str = "trace-local",
) -> HealthReport:
    """Report from {name: (status, duration_ms)}."""
    results = {
        name: ProbeResult(st, duration=timedelta(milliseconds=ms))
        for name, (st, ms) in entries.items()
    }
    if status is None:
        status = worst_status(r.status for r in results.values())
    return HealthReport(status=status, entries=results, trace_id=trace_id)


def remote_document(status: str = "Healthy", entries: dict[str, str] | None = None) -> dict[str, Any]:
    """Minimal rendered document as another instance would serve it."""
    return {
        "status": status,
        "timestamp": "2025-01-01T00:00:00Z",
        "duration": "PT0.01S",
        "durationMs": 10.0,
        "traceId": "remote-trace",
        "entries": {
            name: {"status": st, "duration": "PT0.005S", "durationMs": 5.0, "tags": []}
            for name, st in (entries or {}).items()
        },
    }


def json_transport(routes: dict[str, Callable[[httpx.Request], httpx.Response]]) -> httpx.MockTransport:
    """MockTransport dispatching on host."""

    async def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(request.url.host)
        if route is None:
            raise httpx.ConnectError("Connection refused", request=request)
        response = route(request)
        if asyncio.iscoroutine(response):
            response = await response
        return response

    return httpx.MockTransport(handler)


def json_response(payload: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    def route(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=json.dumps(payload).encode(),
                              headers={"Content-Type": "application/json"})
    return route


