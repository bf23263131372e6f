"""Health subsystem — probes, local collector, remote fetcher, aggregation, rendering."""

from .aggregator import AggregationOptions, aggregate, merge_reports
from .collector import LocalCollector, collect
from .models import (
    ConfigurationError,
    HealthReport,
    HealthStatus,
    ProbeResult,
    ReportEntry,
    Summary,
    worst_status,
)
from .probes import CallableProbe, DnsProbe, HttpProbe, Probe, SyncProbe, TcpProbe
from .remote import RemoteFetcher, RemoteFetchOutcome, RemoteSource
from .renderer import ReportParseError, parse_report, render
from .service import HealthService
