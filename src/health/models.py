"""Health report models — statuses, probe results, reports and summaries.

Everything here is a plain value: reports are built fresh per aggregation
pass and the summary is derived from the entries on every access.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, NamedTuple

from pydantic import JsonValue


class ConfigurationError(ValueError):
    """Raised eagerly when probes or remote sources are misconfigured."""


# ── Status ───────────────────────────────────────────────────────────────────


class HealthStatus(str, Enum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNHEALTHY = "Unhealthy"
    UNKNOWN = "Unknown"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def parse(cls, value: Any) -> HealthStatus:
        """Case-insensitive lookup; anything unrecognised is Unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        return cls.UNKNOWN


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.UNKNOWN: 1,
    HealthStatus.DEGRADED: 2,
    HealthStatus.UNHEALTHY: 3,
}


def worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Most severe status in ``statuses``; Healthy when there are none."""
    return max(statuses, key=lambda s: s.severity, default=HealthStatus.HEALTHY)


# ── JSON coercion ────────────────────────────────────────────────────────────


def to_json_value(value: Any) -> JsonValue:
    """Coerce arbitrary probe data into something the wire format can carry."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, BaseException):
        return str(value) or type(value).__name__
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Enum):
        return to_json_value(value.value)
    if isinstance(value, Mapping):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return [to_json_value(v) for v in items]
    return str(value)


def to_json_data(data: Mapping[str, Any] | None) -> dict[str, JsonValue] | None:
    if data is None:
        return None
    return {str(k): to_json_value(v) for k, v in data.items()}


def duration_ms(duration: timedelta) -> float:
    return round(duration.total_seconds() * 1000, 2)


# ── Results & reports ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe execution."""

    status: HealthStatus
    description: str | None = None
    duration: timedelta = timedelta(0)
    data: dict[str, JsonValue] | None = None
    failure_cause: str | None = None
    error_type: str | None = None
    tags: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.status is None:
            raise ValueError("ProbeResult.status must not be None")
        if not isinstance(self.status, HealthStatus):
            object.__setattr__(self, "status", HealthStatus.parse(self.status))
        if self.duration < timedelta(0):
            raise ValueError(f"ProbeResult.duration must be >= 0, got {self.duration}")
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))
        if self.data is not None:
            object.__setattr__(self, "data", to_json_data(self.data))

    @property
    def duration_ms(self) -> float:
        return duration_ms(self.duration)

    @classmethod
    def healthy(cls, description: str | None = None, **kwargs: Any) -> ProbeResult:
        return cls(HealthStatus.HEALTHY, description, **kwargs)

    @classmethod
    def degraded(cls, description: str | None = None, **kwargs: Any) -> ProbeResult:
        return cls(HealthStatus.DEGRADED, description, **kwargs)

    @classmethod
    def unhealthy(cls, description: str | None = None, **kwargs: Any) -> ProbeResult:
        return cls(HealthStatus.UNHEALTHY, description, **kwargs)


class ReportEntry(NamedTuple):
    name: str
    result: ProbeResult


@dataclass(frozen=True)
class Summary:
    total_checks: int = 0
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0
    unknown: int = 0
    total_duration_ms: float = 0.0
    average_duration_ms: float = 0.0
    max_duration_ms: float = 0.0

    @classmethod
    def from_entries(cls, results: Iterable[ProbeResult]) -> Summary:
        counts = {status: 0 for status in HealthStatus}
        durations: list[float] = []
        for result in results:
            counts[result.status] += 1
            durations.append(result.duration.total_seconds() * 1000)

        total = sum(durations)
        return cls(
            total_checks=len(durations),
            healthy=counts[HealthStatus.HEALTHY],
            degraded=counts[HealthStatus.DEGRADED],
            unhealthy=counts[HealthStatus.UNHEALTHY],
            unknown=counts[HealthStatus.UNKNOWN],
            total_duration_ms=round(total, 2),
            average_duration_ms=round(total / len(durations), 2) if durations else 0.0,
            max_duration_ms=round(max(durations), 2) if durations else 0.0,
        )


@dataclass
class HealthReport:
    """One collected or merged report. ``summary`` is always derived."""

    status: HealthStatus
    entries: dict[str, ProbeResult] = field(default_factory=dict)
    total_duration: timedelta = timedelta(0)
    trace_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def summary(self) -> Summary:
        return Summary.from_entries(self.entries.values())

    @property
    def duration_ms(self) -> float:
        return duration_ms(self.total_duration)

    def iter_entries(self) -> Iterable[ReportEntry]:
        for name, result in self.entries.items():
            yield ReportEntry(name, result)
