"""Local collector — runs every registered probe concurrently into one report."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone

from .cancellation import join_until_cancelled
from .models import (
    ConfigurationError,
    HealthReport,
    HealthStatus,
    ProbeResult,
    ReportEntry,
    to_json_data,
    worst_status,
)
from .probes import Probe

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Registration:
    name: str
    probe: Probe
    tags: frozenset[str] = frozenset()


def check_unique_names(names: Iterable[str]) -> None:
    """Reject blank names and names equal ignoring case."""
    seen: dict[str, str] = {}
    for name in names:
        if not name or not name.strip():
            raise ConfigurationError("Probe name must be provided")
        key = name.casefold()
        if key in seen:
            raise ConfigurationError(
                f"Duplicate probe name '{name}' (already registered as '{seen[key]}')"
            )
        seen[key] = name


class LocalCollector:
    """Holds the ordered probe registrations of this process."""

    def __init__(self, per_probe_timeout: float | None = None) -> None:
        self.per_probe_timeout = per_probe_timeout
        self._registrations: list[Registration] = []

    def register(self, name: str, probe: Probe, tags: Iterable[str] = ()) -> LocalCollector:
        check_unique_names([r.name for r in self._registrations] + [name])
        self._registrations.append(Registration(name, probe, frozenset(tags)))
        logger.debug("Registered probe '%s' (%s)", name, type(probe).__name__)
        return self

    @property
    def registrations(self) -> list[Registration]:
        return list(self._registrations)

    def __len__(self) -> int:
        return len(self._registrations)

    async def collect(
        self,
        cancel: asyncio.Event | None = None,
        trace_id: str = "",
    ) -> HealthReport:
        return await _collect_registrations(
            self._registrations, self.per_probe_timeout, cancel, trace_id,
        )


async def collect(
    probes: Sequence[tuple[str, Probe]],
    per_probe_timeout: float | None = None,
    *,
    cancel: asyncio.Event | None = None,
    trace_id: str = "",
) -> HealthReport:
    """Run ``probes`` once and return the local report."""
    check_unique_names(name for name, _ in probes)
    registrations = [Registration(name, probe) for name, probe in probes]
    return await _collect_registrations(registrations, per_probe_timeout, cancel, trace_id)


async def _collect_registrations(
    registrations: Sequence[Registration],
    per_probe_timeout: float | None,
    cancel: asyncio.Event | None,
    trace_id: str,
) -> HealthReport:
    t0 = time.perf_counter()
    signal = cancel or asyncio.Event()

    tasks = [
        asyncio.create_task(_run_probe(reg, per_probe_timeout, signal), name=f"probe-{reg.name}")
        for reg in registrations
    ]
    abandoned = await join_until_cancelled(tasks, cancel)

    entries: dict[str, ProbeResult] = {}
    for reg, task in zip(registrations, tasks):
        if task in abandoned:
            entries[reg.name] = ProbeResult(
                HealthStatus.UNKNOWN,
                "Probe cancelled before completion",
                duration=timedelta(seconds=time.perf_counter() - t0),
                tags=reg.tags | reg.probe.tags,
            )
        else:
            entries[reg.name] = task.result().result

    status = worst_status(r.status for r in entries.values())
    elapsed = timedelta(seconds=time.perf_counter() - t0)
    logger.debug(
        "Collected %d local probe(s): %s (%.1fms)",
        len(entries), status.value, elapsed.total_seconds() * 1000,
    )
    return HealthReport(
        status=status,
        entries=entries,
        total_duration=elapsed,
        trace_id=trace_id,
        timestamp=datetime.now(timezone.utc),
    )


async def _run_probe(
    reg: Registration,
    per_probe_timeout: float | None,
    cancel: asyncio.Event,
) -> ReportEntry:
    """Execute one probe; nothing it raises escapes this wrapper."""
    timeout = reg.probe.timeout if reg.probe.timeout is not None else per_probe_timeout
    t0 = time.perf_counter()
    try:
        result = await asyncio.wait_for(reg.probe.execute(cancel), timeout)
        if not isinstance(result, ProbeResult):
            raise TypeError(f"Probe returned {type(result).__name__}, expected ProbeResult")
    except asyncio.TimeoutError:
        logger.warning("Probe '%s' timed out after %ss", reg.name, timeout)
        message = f"Health check timed out after {timeout}s"
        result = ProbeResult.unhealthy(message, failure_cause=message, error_type="TimeoutError")
    except Exception as e:
        logger.warning("Probe '%s' failed: %s: %s", reg.name, type(e).__name__, e)
        result = _failure_result(e)

    elapsed = timedelta(seconds=time.perf_counter() - t0)
    result = dataclasses.replace(
        result,
        duration=elapsed,
        tags=reg.tags | reg.probe.tags | result.tags,
    )
    return ReportEntry(reg.name, result)


def _failure_result(exc: Exception) -> ProbeResult:
    message = str(exc) or type(exc).__name__
    data = getattr(exc, "data", None)
    return ProbeResult.unhealthy(
        message,
        failure_cause=message,
        error_type=_qualified_name(type(exc)),
        data=to_json_data(data) if isinstance(data, Mapping) and data else None,
    )


def _qualified_name(cls: type) -> str:
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"
