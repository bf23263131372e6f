"""Report renderer — HealthReport ⇄ canonical JSON document."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from .models import HealthReport, ProbeResult, duration_ms
from .schema import EntryDocument, ReportDocument, SummaryDocument

logger = logging.getLogger(__name__)

MEDIA_TYPE = "application/json"


class ReportParseError(ValueError):
    """Raised when a body cannot be read as a health report document."""


# ── Rendering ────────────────────────────────────────────────────────────────


def to_document(report: HealthReport) -> ReportDocument:
    summary = report.summary
    return ReportDocument(
        status=report.status,
        timestamp=report.timestamp,
        duration=report.total_duration,
        durationMs=report.duration_ms,
        traceId=report.trace_id,
        entries={name: _entry_document(result) for name, result in report.entries.items()},
        summary=SummaryDocument(
            totalChecks=summary.total_checks,
            healthy=summary.healthy,
            degraded=summary.degraded,
            unhealthy=summary.unhealthy,
            unknown=summary.unknown,
            totalDurationMilliseconds=summary.total_duration_ms,
            averageDurationMilliseconds=summary.average_duration_ms,
            maxDurationMilliseconds=summary.max_duration_ms,
        ),
    )


def _entry_document(result: ProbeResult) -> EntryDocument:
    return EntryDocument(
        status=result.status,
        description=result.description if result.description is not None else result.failure_cause,
        duration=result.duration,
        durationMs=result.duration_ms,
        data=result.data,
        exception=result.error_type,
        tags=sorted(result.tags),
    )


def render(report: HealthReport, indent: int | None = 2) -> str:
    """Serialize ``report``; identical input gives identical output."""
    return to_document(report).model_dump_json(indent=indent)


# ── Parsing ──────────────────────────────────────────────────────────────────


def parse_report(body: str | bytes) -> HealthReport:
    """Read another instance's rendered report."""
    if not body or not body.strip():
        raise ReportParseError("Empty response body")
    try:
        doc = ReportDocument.model_validate_json(body)
    except ValidationError as e:
        raise ReportParseError(f"Invalid health report document: {_first_error(e)}") from e
    return from_document(doc)


def from_document(doc: ReportDocument) -> HealthReport:
    entries = {
        name: ProbeResult(
            status=entry.status,
            description=entry.description,
            duration=_non_negative(entry.duration),
            data=entry.data,
            error_type=entry.exception,
            tags=frozenset(entry.tags),
        )
        for name, entry in doc.entries.items()
    }
    return HealthReport(
        status=doc.status,
        entries=entries,
        total_duration=_non_negative(doc.duration),
        trace_id=doc.traceId,
        timestamp=_aware(doc.timestamp),
    )


def _non_negative(value: timedelta | None) -> timedelta:
    if value is None or value < timedelta(0):
        return timedelta(0)
    return value


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
    return f"{loc}: {err.get('msg', 'invalid')}"
