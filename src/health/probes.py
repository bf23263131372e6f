"""Probe contract and the built-in probes.

Supports: HTTP(S) endpoint, TCP connect, DNS resolve, arbitrary callables.
Every probe returns a ProbeResult; the collector measures duration and
converts anything a probe raises into an Unhealthy entry.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import socket
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Union

import httpx

from .models import HealthStatus, ProbeResult

logger = logging.getLogger(__name__)


# ── Contract ─────────────────────────────────────────────────────────────────


class Probe(ABC):
    """A unit of work that tests one dependency and reports its health.

    ``execute`` receives the aggregation request's cancel event; long-running
    probes should stop early once it is set. ``timeout`` (seconds) overrides
    the collector's per-probe deadline.
    """

    tags: frozenset[str] = frozenset()
    timeout: float | None = None

    @abstractmethod
    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        ...


class SyncProbe(Probe):
    """Base for blocking probes — ``run`` executes in a worker thread."""

    @abstractmethod
    def run(self) -> ProbeResult:
        ...

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.run)


ProbeOutcome = Union[ProbeResult, HealthStatus, bool]


class CallableProbe(Probe):
    """Adapts a plain function (sync or async) to the probe contract.

    The function may return a ProbeResult, a HealthStatus, or a bool
    (True → Healthy, False → Unhealthy).
    """

    def __init__(
        self,
        fn: Callable[[], ProbeOutcome | Awaitable[ProbeOutcome]],
        tags: Iterable[str] = (),
        timeout: float | None = None,
    ) -> None:
        self._fn = fn
        self.tags = frozenset(tags)
        self.timeout = timeout

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        if inspect.iscoroutinefunction(self._fn):
            outcome = await self._fn()
        else:
            loop = asyncio.get_running_loop()
            outcome = await loop.run_in_executor(None, self._fn)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        return _coerce(outcome)


def _coerce(outcome: Any) -> ProbeResult:
    if isinstance(outcome, ProbeResult):
        return outcome
    if isinstance(outcome, HealthStatus):
        return ProbeResult(outcome)
    if isinstance(outcome, bool):
        return ProbeResult(HealthStatus.HEALTHY if outcome else HealthStatus.UNHEALTHY)
    raise TypeError(f"Probe returned unsupported value of type {type(outcome).__name__}")


# ── Network probes ───────────────────────────────────────────────────────────


class HttpProbe(Probe):
    """HTTP(S) endpoint check — status code + latency budget."""

    def __init__(
        self,
        url: str,
        method: str = "GET",
        expected_status: int = 200,
        degraded_after_ms: float = 3000,
        tags: Iterable[str] = (),
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.method = method
        self.expected_status = expected_status
        self.degraded_after_ms = degraded_after_ms
        self.tags = frozenset(tags)
        self.timeout = timeout
        self._transport = transport

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        t0 = time.perf_counter()
        async with httpx.AsyncClient(
            timeout=self.timeout or 10.0, follow_redirects=True, transport=self._transport,
        ) as client:
            resp = await client.request(self.method, self.url)
        latency = (time.perf_counter() - t0) * 1000

        data: dict[str, Any] = {
            "url": self.url,
            "statusCode": resp.status_code,
            "latencyMs": round(latency, 1),
        }
        if resp.status_code != self.expected_status:
            return ProbeResult.unhealthy(
                f"Expected {self.expected_status}, got {resp.status_code}", data=data,
            )
        # Latency budget — degrade if the endpoint is slow
        if latency > self.degraded_after_ms:
            return ProbeResult.degraded(
                f"{resp.status_code} OK but slow ({latency:.0f}ms > {self.degraded_after_ms:.0f}ms)",
                data=data,
            )
        return ProbeResult.healthy(f"{resp.status_code} OK", data=data)


class TcpProbe(Probe):
    """Raw TCP port connectivity check."""

    def __init__(
        self,
        host: str,
        port: int,
        tags: Iterable[str] = (),
        timeout: float | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.tags = frozenset(tags)
        self.timeout = timeout

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        try:
            _, writer = await asyncio.open_connection(self.host, self.port)
        except OSError as e:
            return ProbeResult.unhealthy(
                f"TCP connect to {self.host}:{self.port} failed: {e}",
                failure_cause=str(e),
                error_type=type(e).__name__,
                data={"host": self.host, "port": self.port},
            )
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            logger.debug("Error closing probe connection to %s:%d", self.host, self.port)
        return ProbeResult.healthy(
            f"Port {self.port} open", data={"host": self.host, "port": self.port},
        )


class DnsProbe(Probe):
    """DNS resolution check."""

    def __init__(
        self,
        hostname: str,
        tags: Iterable[str] = (),
        timeout: float | None = None,
    ) -> None:
        self.hostname = hostname
        self.tags = frozenset(tags)
        self.timeout = timeout

    async def execute(self, cancel: asyncio.Event) -> ProbeResult:
        loop = asyncio.get_running_loop()
        try:
            addrs = await loop.getaddrinfo(self.hostname, None)
        except socket.gaierror as e:
            return ProbeResult.unhealthy(
                f"DNS resolution failed: {e}",
                failure_cause=str(e),
                error_type="socket.gaierror",
                data={"hostname": self.hostname},
            )

        ips = sorted({a[4][0] for a in addrs})
        return ProbeResult.healthy(
            f"Resolved to {', '.join(ips[:3])}",
            data={"hostname": self.hostname, "ips": ips},
        )
