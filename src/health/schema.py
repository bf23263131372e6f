"""Pydantic models for the rendered health report document.

Field names are the wire names. On ingest, field matching is
case-insensitive and optional fields may be missing.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, JsonValue, field_validator, model_validator

from .models import HealthStatus

# Clock-style durations: [-][d.]hh:mm:ss[.fffffff]
_TIMESPAN_RE = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<h>\d{1,2}):(?P<m>\d{2}):(?P<s>\d{2})(?:\.(?P<frac>\d+))?$"
)

_FRACTION_RE = re.compile(r"(\.\d+)")


def _parse_timespan(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    match = _TIMESPAN_RE.match(value.strip())
    if not match:
        return value
    frac = match["frac"] or "0"
    span = timedelta(
        days=int(match["days"] or 0),
        hours=int(match["h"]),
        minutes=int(match["m"]),
        seconds=int(match["s"]) + int(frac) / 10 ** len(frac),
    )
    return -span if match["sign"] else span


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _fold_field_names(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        names = {name.lower(): name for name in cls.model_fields}
        return {names.get(str(k).lower(), k): v for k, v in value.items()}

    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def _parse_status(cls, value: Any) -> HealthStatus:
        return HealthStatus.parse(value)

    @field_validator("duration", mode="before", check_fields=False)
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        return _parse_timespan(value)

    @model_validator(mode="after")
    def _duration_from_ms(self) -> Any:
        if getattr(self, "duration", 0) is None and getattr(self, "durationMs", None) is not None:
            self.duration = timedelta(milliseconds=self.durationMs)
        return self


class EntryDocument(_WireModel):
    status: HealthStatus = HealthStatus.UNKNOWN
    description: str | None = None
    duration: timedelta | None = None
    durationMs: float | None = None
    data: dict[str, JsonValue] | None = None
    exception: str | None = None
    tags: list[str] = []

    @field_validator("tags", mode="before")
    @classmethod
    def _null_tags(cls, value: Any) -> Any:
        return [] if value is None else value


class SummaryDocument(_WireModel):
    totalChecks: int = 0
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0
    unknown: int = 0
    totalDurationMilliseconds: float = 0.0
    averageDurationMilliseconds: float = 0.0
    maxDurationMilliseconds: float = 0.0


class ReportDocument(_WireModel):
    status: HealthStatus
    timestamp: datetime | None = None
    duration: timedelta | None = None
    durationMs: float | None = None
    traceId: str = ""
    entries: dict[str, EntryDocument] = {}
    summary: SummaryDocument | None = None

    @field_validator("entries", mode="before")
    @classmethod
    def _null_entries(cls, value: Any) -> Any:
        if value is None:
            return {}
        # a null entry reads as an entry with nothing known about it
        if isinstance(value, dict):
            return {name: {} if entry is None else entry for name, entry in value.items()}
        return value

    @field_validator("traceId", mode="before")
    @classmethod
    def _null_trace(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _trim_fraction(cls, value: Any) -> Any:
        # Peers may send 7 fractional digits; keep microsecond precision
        if isinstance(value, str):
            return _FRACTION_RE.sub(lambda m: m[1][:7], value)
        return value
