"""Aggregation engine — merges the local report with remote instances' reports.

Merge rules:
- local entries first, in registration order
- remote entries as "{prefix}:{name}", sources in configuration order
- name collisions (ignoring case) get "#1", "#2", … appended; nothing is
  overwritten or dropped
- optional synthetic entry per source, keyed by the prefix, describing the
  fetch itself
- the top-level status stays the local status; remote outages only show up
  as entries and in the summary
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .models import HealthReport, HealthStatus, ProbeResult
from .remote import DEFAULT_TIMEOUT, RemoteFetcher, RemoteFetchOutcome, RemoteSource

logger = logging.getLogger(__name__)


# ── Options ──────────────────────────────────────────────────────────────────


@dataclass
class AggregationOptions:
    """Remote endpoints plus the knobs that shape the merged report."""

    remote_endpoints: list[RemoteSource] = field(default_factory=list)
    http_timeout: float = DEFAULT_TIMEOUT  # seconds
    include_remote_summary_entry: bool = True

    def add_endpoint(self, prefix: str, url: str, timeout: float | None = None) -> AggregationOptions:
        """Append a remote source (validated immediately) and return self."""
        self.remote_endpoints.append(RemoteSource(url=url, prefix=prefix, timeout=timeout))
        return self


# ── Entry set ────────────────────────────────────────────────────────────────


class EntrySet:
    """Ordered entries whose names are unique ignoring case."""

    def __init__(self) -> None:
        self._entries: dict[str, ProbeResult] = {}
        self._taken: set[str] = set()

    def __contains__(self, name: str) -> bool:
        return name.casefold() in self._taken

    def __len__(self) -> int:
        return len(self._entries)

    def free_name(self, base: str) -> str:
        """``base`` if unused, else the first free ``base#N``."""
        name, i = base, 1
        while name in self:
            name = f"{base}#{i}"
            i += 1
        return name

    def add(self, base: str, result: ProbeResult) -> str:
        name = self.free_name(base)
        self._entries[name] = result
        self._taken.add(name.casefold())
        return name

    def to_dict(self) -> dict[str, ProbeResult]:
        return dict(self._entries)


# ── Merge ────────────────────────────────────────────────────────────────────


def summary_entry(outcome: RemoteFetchOutcome) -> ProbeResult:
    """Synthetic entry describing one remote fetch."""
    description: str | None = None
    if outcome.error is not None:
        status = HealthStatus.UNHEALTHY
        description = outcome.error
    elif outcome.report is not None:
        status = outcome.report.status
    elif outcome.status_code != 0:
        status = HealthStatus.HEALTHY if 200 <= outcome.status_code < 300 else HealthStatus.UNHEALTHY
    else:
        status = HealthStatus.UNKNOWN

    if outcome.cancelled:
        description = "Remote fetch cancelled before completion"

    return ProbeResult(
        status=status,
        description=description,
        duration=outcome.duration,
        data={
            "Endpoint": outcome.source.url,
            "StatusCode": outcome.status_code,
            "DurationMs": round(outcome.duration.total_seconds() * 1000, 3),
        },
        failure_cause=outcome.error,
        error_type=outcome.error_type,
    )


def merge_reports(
    local_report: HealthReport,
    outcomes: Sequence[RemoteFetchOutcome],
    options: AggregationOptions,
    *,
    elapsed: timedelta = timedelta(0),
) -> HealthReport:
    """Merge fetched outcomes (in configuration order) into the local report."""
    merged = EntrySet()
    for name, result in local_report.entries.items():
        merged.add(name, result)

    for outcome in outcomes:
        prefix = outcome.source.prefix
        if outcome.report is not None:
            for name, result in outcome.report.entries.items():
                key = merged.add(f"{prefix}:{name}", result)
                if key != f"{prefix}:{name}":
                    logger.debug("Entry '%s:%s' renamed to '%s' to avoid a collision", prefix, name, key)

        if options.include_remote_summary_entry:
            merged.add(prefix, summary_entry(outcome))

    return HealthReport(
        status=local_report.status,
        entries=merged.to_dict(),
        total_duration=local_report.total_duration + elapsed,
        trace_id=local_report.trace_id,
        timestamp=datetime.now(timezone.utc),
    )


async def aggregate(
    local_report: HealthReport,
    sources: Sequence[RemoteSource] | None,
    options: AggregationOptions,
    *,
    fetcher: RemoteFetcher | None = None,
    cancel: asyncio.Event | None = None,
) -> HealthReport:
    """Fetch every remote source concurrently and merge into ``local_report``.

    With no sources the local report comes back as-is (a copy). A source
    that fails only ever degrades to an entry.
    """
    if sources is None:
        sources = options.remote_endpoints
    if not sources:
        return HealthReport(
            status=local_report.status,
            entries=dict(local_report.entries),
            total_duration=local_report.total_duration,
            trace_id=local_report.trace_id,
            timestamp=local_report.timestamp,
        )

    t0 = time.perf_counter()
    fetcher = fetcher or RemoteFetcher(default_timeout=options.http_timeout)
    outcomes = await fetcher.fetch_all(sources, trace_id=local_report.trace_id, cancel=cancel)

    failed = sum(1 for o in outcomes if not o.ok)
    if failed:
        logger.info("%d of %d remote source(s) unavailable", failed, len(outcomes))

    return merge_reports(
        local_report,
        outcomes,
        options,
        elapsed=timedelta(seconds=time.perf_counter() - t0),
    )
