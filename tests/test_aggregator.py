"""Tests for the Aggregation Engine — merge, collisions, summary, status policy."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from src.health.aggregator import AggregationOptions, EntrySet, aggregate, merge_reports, summary_entry
from src.health.models import ConfigurationError, HealthStatus, ProbeResult
from src.health.remote import RemoteFetcher, RemoteFetchOutcome, RemoteSource
from src.health.renderer import parse_report
from tests.helpers import json_response, json_transport, make_report, remote_document

H, D, U, X = (
    HealthStatus.HEALTHY,
    HealthStatus.DEGRADED,
    HealthStatus.UNHEALTHY,
    HealthStatus.UNKNOWN,
)


def outcome_with(source: RemoteSource, status: str, entries: dict[str, str], code: int = 200) -> RemoteFetchOutcome:
    report = parse_report(json.dumps(remote_document(status, entries)))
    return RemoteFetchOutcome(source=source, report=report, status_code=code, duration=timedelta(milliseconds=7))


def run_aggregate(local, options, transport):
    fetcher = RemoteFetcher(default_timeout=options.http_timeout, transport=transport)
    return asyncio.run(aggregate(local, options.remote_endpoints, options, fetcher=fetcher))


# ── Options ──────────────────────────────────────────────────────────────────


class TestOptions:
    def test_defaults(self) -> None:
        opts = AggregationOptions()
        assert opts.remote_endpoints == []
        assert opts.http_timeout == 5.0
        assert opts.include_remote_summary_entry is True

    def test_add_endpoint_is_fluent_and_validates(self) -> None:
        opts = AggregationOptions().add_endpoint("api", "http://api/health").add_endpoint("w", "https://w/health", 1.5)
        assert [s.prefix for s in opts.remote_endpoints] == ["api", "w"]
        assert opts.remote_endpoints[1].timeout == 1.5
        with pytest.raises(ConfigurationError):
            opts.add_endpoint("bad", "not a url")


# ── Entry set ────────────────────────────────────────────────────────────────


class TestEntrySet:
    def test_suffixes_until_free(self) -> None:
        entries = EntrySet()
        assert entries.add("api:db", ProbeResult(H)) == "api:db"
        assert entries.add("api:db", ProbeResult(H)) == "api:db#1"
        assert entries.add("API:DB", ProbeResult(H)) == "API:DB#2"
        assert len(entries) == 3

    def test_suffixed_name_already_taken(self) -> None:
        entries = EntrySet()
        entries.add("x", ProbeResult(H))
        entries.add("x#1", ProbeResult(H))
        assert entries.add("x", ProbeResult(H)) == "x#2"


# ── Synthetic summary entry ──────────────────────────────────────────────────


class TestSummaryEntry:
    SRC = RemoteSource(url="http://w/health", prefix="w")

    def test_error_is_unhealthy(self) -> None:
        entry = summary_entry(RemoteFetchOutcome(self.SRC, status_code=200, error="boom", error_type="X"))
        assert entry.status == U
        assert entry.description == "boom"
        assert entry.error_type == "X"

    def test_report_status_used(self) -> None:
        entry = summary_entry(outcome_with(self.SRC, "Degraded", {}))
        assert entry.status == D

    @pytest.mark.parametrize("code, expected", [(200, H), (204, H), (302, U), (500, U), (0, X)])
    def test_inferred_from_status_code(self, code: int, expected: HealthStatus) -> None:
        assert summary_entry(RemoteFetchOutcome(self.SRC, status_code=code)).status == expected

    def test_data_fields(self) -> None:
        entry = summary_entry(RemoteFetchOutcome(self.SRC, status_code=503, duration=timedelta(microseconds=1234)))
        assert entry.data == {"Endpoint": "http://w/health", "StatusCode": 503, "DurationMs": 1.234}
        assert entry.duration == timedelta(microseconds=1234)
        assert entry.tags == frozenset()

    def test_cancelled_is_unknown(self) -> None:
        entry = summary_entry(RemoteFetchOutcome(self.SRC, cancelled=True))
        assert entry.status == X
        assert "cancelled" in entry.description


# ── merge_reports ────────────────────────────────────────────────────────────


class TestMerge:
    def test_scenario_worker_queue(self) -> None:
        local = make_report({"sql": (H, 10), "cache": (D, 5)})
        assert local.status == D
        src = RemoteSource(url="http://worker/health", prefix="worker")
        merged = merge_reports(local, [outcome_with(src, "Unhealthy", {"queue": "Unhealthy"})], AggregationOptions([src]))

        assert merged.status == D
        assert list(merged.entries) == ["sql", "cache", "worker:queue", "worker"]
        assert merged.entries["worker"].status == U
        assert merged.summary.total_checks == 4
        assert merged.summary.unhealthy == 2

    def test_collision_numbering(self) -> None:
        local = make_report({"db": (H, 1)})
        first = RemoteSource(url="http://a/health", prefix="api")
        second = RemoteSource(url="http://b/health", prefix="api")
        opts = AggregationOptions([first, second], include_remote_summary_entry=False)
        merged = merge_reports(
            local,
            [outcome_with(first, "Healthy", {"db": "Healthy"}), outcome_with(second, "Healthy", {"db": "Healthy"})],
            opts,
        )
        assert list(merged.entries) == ["db", "api:db", "api:db#1"]

    def test_shared_prefix_ping(self) -> None:
        a = RemoteSource(url="http://a/health", prefix="api")
        b = RemoteSource(url="http://b/health", prefix="api")
        merged = merge_reports(
            make_report({}),
            [outcome_with(a, "Healthy", {"ping": "Healthy"}), outcome_with(b, "Degraded", {"ping": "Degraded"})],
            AggregationOptions([a, b]),
        )
        assert list(merged.entries) == ["api:ping", "api", "api:ping#1", "api#1"]
        assert merged.entries["api:ping"].status == H
        assert merged.entries["api:ping#1"].status == D

    def test_collision_ignores_case(self) -> None:
        local = make_report({"Worker:Queue": (H, 1)})
        src = RemoteSource(url="http://w/health", prefix="worker")
        merged = merge_reports(
            local,
            [outcome_with(src, "Healthy", {"queue": "Healthy"})],
            AggregationOptions([src], include_remote_summary_entry=False),
        )
        assert list(merged.entries) == ["Worker:Queue", "worker:queue#1"]

    def test_summary_entry_collides_with_local_name(self) -> None:
        local = make_report({"worker": (H, 1)})
        src = RemoteSource(url="http://w/health", prefix="worker")
        merged = merge_reports(local, [outcome_with(src, "Healthy", {})], AggregationOptions([src]))
        assert list(merged.entries) == ["worker", "worker#1"]

    def test_failed_source_never_escalates(self) -> None:
        local = make_report({"sql": (H, 1)})
        src = RemoteSource(url="http://down/health", prefix="down")
        failed = RemoteFetchOutcome(src, error="Connection error", error_type="ConnectError")
        merged = merge_reports(local, [failed], AggregationOptions([src]))
        assert merged.status == H
        assert merged.entries["down"].status == U
        assert merged.summary.unhealthy == 1

    def test_summary_entry_optional(self) -> None:
        src = RemoteSource(url="http://down/health", prefix="down")
        merged = merge_reports(
            make_report({"sql": (H, 1)}),
            [RemoteFetchOutcome(src, error="x")],
            AggregationOptions([src], include_remote_summary_entry=False),
        )
        assert list(merged.entries) == ["sql"]

    def test_summary_covers_all_entries(self) -> None:
        src = RemoteSource(url="http://w/health", prefix="w")
        merged = merge_reports(
            make_report({"a": (H, 10), "b": (H, 30)}),
            [outcome_with(src, "Healthy", {"c": "Healthy"})],
            AggregationOptions([src]),
        )
        s = merged.summary
        # a=10, b=30, w:c=5, w(summary)=7
        assert s.total_checks == 4
        assert s.total_duration_ms == 52.0
        assert s.max_duration_ms == 30.0
        assert s.average_duration_ms == 13.0

    def test_trace_id_and_duration_belong_to_pass(self) -> None:
        local = make_report({"a": (H, 1)}, trace_id="pass-1")
        local.total_duration = timedelta(milliseconds=20)
        src = RemoteSource(url="http://w/health", prefix="w")
        merged = merge_reports(
            local, [outcome_with(src, "Healthy", {})], AggregationOptions([src]),
            elapsed=timedelta(milliseconds=5),
        )
        assert merged.trace_id == "pass-1"
        assert merged.total_duration == timedelta(milliseconds=25)
        assert merged.timestamp >= local.timestamp


# ── aggregate (fetch + merge) ────────────────────────────────────────────────


class TestAggregate:
    def test_no_sources_is_identity(self) -> None:
        local = make_report({"sql": (H, 10), "cache": (D, 5)})
        result = asyncio.run(aggregate(local, [], AggregationOptions()))
        assert result is not local
        assert result.entries == local.entries
        assert list(result.entries) == list(local.entries)
        assert result.status == local.status
        assert result.trace_id == local.trace_id
        assert result.summary == local.summary

    def test_sources_default_to_options(self) -> None:
        opts = AggregationOptions().add_endpoint("w", "http://w/health")
        transport = json_transport({"w": json_response(remote_document("Healthy", {"q": "Healthy"}))})
        fetcher = RemoteFetcher(transport=transport)
        result = asyncio.run(aggregate(make_report({}), None, opts, fetcher=fetcher))
        assert list(result.entries) == ["w:q", "w"]

    def test_timeout_scenario(self) -> None:
        async def hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        opts = AggregationOptions(http_timeout=0.1).add_endpoint("slow", "http://slow/health")
        local = make_report({"sql": (H, 1)})
        merged = run_aggregate(local, opts, json_transport({"slow": hang}))

        assert merged.status == H
        assert merged.entries["slow"].status == U
        assert merged.entries["slow"].data["StatusCode"] == 0
        assert "timed out" in merged.entries["slow"].description

    def test_mixed_sources(self) -> None:
        opts = (
            AggregationOptions()
            .add_endpoint("ok", "http://ok/health")
            .add_endpoint("html", "http://html/health")
            .add_endpoint("gone", "http://gone/health")
        )
        transport = json_transport({
            "ok": json_response(remote_document("Healthy", {"db": "Healthy"})),
            "html": lambda r: httpx.Response(502, text="Bad Gateway"),
        })
        merged = run_aggregate(make_report({"db": (D, 2)}), opts, transport)

        assert merged.status == D
        assert list(merged.entries) == ["db", "ok:db", "ok", "html", "gone"]
        assert merged.entries["ok"].status == H
        assert merged.entries["html"].status == U
        assert merged.entries["html"].data["StatusCode"] == 502
        assert merged.entries["gone"].status == U
        assert merged.entries["gone"].data["StatusCode"] == 0

    def test_trace_id_propagated_to_remotes(self) -> None:
        seen = []

        def route(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("X-Trace-Id"))
            return json_response(remote_document())(request)

        opts = AggregationOptions().add_endpoint("a", "http://a/health").add_endpoint("b", "http://b/health")
        merged = run_aggregate(make_report({}, trace_id="trace-9"), opts, json_transport({"a": route, "b": route}))
        assert seen == ["trace-9", "trace-9"]
        assert merged.trace_id == "trace-9"
