"""Remote fetcher — pulls another instance's rendered report over HTTP.

Every failure (timeout, transport, unreadable body) is folded into the
returned RemoteFetchOutcome; ``fetch`` and ``fetch_all`` never raise to
their caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import urlsplit

import httpx

from .cancellation import join_until_cancelled
from .models import ConfigurationError, HealthReport
from .renderer import MEDIA_TYPE, ReportParseError, parse_report

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "remote"
DEFAULT_TIMEOUT = 5.0  # seconds
TRACE_HEADER = "X-Trace-Id"


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RemoteSource:
    """A remote instance whose report is merged under ``prefix``."""

    url: str
    prefix: str = DEFAULT_PREFIX
    timeout: float | None = None  # seconds, overrides the default

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ConfigurationError("Remote url must be provided")
        parts = urlsplit(self.url.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(f"Remote url must be an absolute HTTP/HTTPS URL: {self.url!r}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"Remote timeout must be positive, got {self.timeout}")
        object.__setattr__(self, "url", self.url.strip())
        if not self.prefix or not self.prefix.strip():
            object.__setattr__(self, "prefix", DEFAULT_PREFIX)


@dataclass(frozen=True)
class RemoteFetchOutcome:
    """Result of one remote call. ``status_code`` is 0 when no response arrived."""

    source: RemoteSource
    report: HealthReport | None = None
    status_code: int = 0
    duration: timedelta = timedelta(0)
    error: str | None = None
    error_type: str | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.report is not None and self.error is None


class _Attempt:
    """Mutable scratch state so a timeout still knows the observed status."""

    def __init__(self) -> None:
        self.status_code = 0


# ── Fetcher ──────────────────────────────────────────────────────────────────


class RemoteFetcher:
    """Async httpx client for remote health endpoints."""

    def __init__(
        self,
        default_timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.default_timeout = default_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, follow_redirects=True)

    async def fetch(
        self,
        source: RemoteSource,
        *,
        client: httpx.AsyncClient | None = None,
        trace_id: str = "",
    ) -> RemoteFetchOutcome:
        """Fetch and parse one source's report."""
        if client is None:
            async with self._client() as own:
                return await self.fetch(source, client=own, trace_id=trace_id)

        timeout = source.timeout if source.timeout is not None else self.default_timeout
        attempt = _Attempt()
        t0 = time.perf_counter()
        report: HealthReport | None = None
        error: str | None = None
        error_type: str | None = None

        try:
            report = await asyncio.wait_for(
                self._retrieve(client, source, timeout, attempt, trace_id), timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            error = f"Request to {source.url} timed out after {timeout}s"
            error_type = type(e).__name__
        except httpx.ConnectError as e:
            error = f"Connection error: {e}"
            error_type = type(e).__name__
        except ReportParseError as e:
            error = f"Failed to parse remote health report: {e}"
            error_type = type(e).__name__
        except httpx.HTTPError as e:
            error = f"HTTP error: {type(e).__name__}: {e}"
            error_type = type(e).__name__
        except Exception as e:
            error = f"Error: {type(e).__name__}: {e}"
            error_type = type(e).__name__

        elapsed = timedelta(seconds=time.perf_counter() - t0)
        if error:
            logger.warning(
                "Remote health fetch [%s] %s failed (status=%d, %.0fms): %s",
                source.prefix, source.url, attempt.status_code,
                elapsed.total_seconds() * 1000, error,
            )
        else:
            logger.debug(
                "Remote health fetch [%s] %s: %d (%.0fms)",
                source.prefix, source.url, attempt.status_code, elapsed.total_seconds() * 1000,
            )
        return RemoteFetchOutcome(
            source=source,
            report=report,
            status_code=attempt.status_code,
            duration=elapsed,
            error=error,
            error_type=error_type,
        )

    async def _retrieve(
        self,
        client: httpx.AsyncClient,
        source: RemoteSource,
        timeout: float,
        attempt: _Attempt,
        trace_id: str,
    ) -> HealthReport:
        headers = {"Accept": MEDIA_TYPE}
        if trace_id:
            headers[TRACE_HEADER] = trace_id
        async with client.stream("GET", source.url, headers=headers, timeout=timeout) as resp:
            attempt.status_code = resp.status_code
            body = await resp.aread()
        # Unhealthy instances answer 503 with a valid report, so parse regardless
        return parse_report(body)

    async def fetch_all(
        self,
        sources: Sequence[RemoteSource],
        *,
        trace_id: str = "",
        cancel: asyncio.Event | None = None,
    ) -> list[RemoteFetchOutcome]:
        """Fetch every source concurrently; outcomes follow ``sources`` order."""
        if not sources:
            return []

        t0 = time.perf_counter()
        async with self._client() as client:
            tasks = [
                asyncio.create_task(
                    self.fetch(src, client=client, trace_id=trace_id),
                    name=f"remote-{src.prefix}",
                )
                for src in sources
            ]
            abandoned = await join_until_cancelled(tasks, cancel)

        outcomes = []
        for src, task in zip(sources, tasks):
            if task in abandoned:
                outcomes.append(RemoteFetchOutcome(
                    source=src,
                    duration=timedelta(seconds=time.perf_counter() - t0),
                    cancelled=True,
                ))
            else:
                outcomes.append(task.result())
        return outcomes
