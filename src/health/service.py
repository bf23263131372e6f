"""One aggregation pass: local collection followed by the remote merge."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from .aggregator import AggregationOptions, aggregate
from .collector import LocalCollector
from .models import HealthReport
from .remote import RemoteFetcher, RemoteSource

if TYPE_CHECKING:
    from src.config import Settings

    from .registry import HealthRegistry

logger = logging.getLogger(__name__)


def new_trace_id() -> str:
    return uuid.uuid4().hex


class HealthService:
    """Owns the collector and the immutable remote configuration."""

    def __init__(
        self,
        collector: LocalCollector,
        options: AggregationOptions | None = None,
        fetcher: RemoteFetcher | None = None,
    ) -> None:
        self.collector = collector
        self.options = options or AggregationOptions()
        self.fetcher = fetcher or RemoteFetcher(default_timeout=self.options.http_timeout)

    async def run_local(
        self,
        cancel: asyncio.Event | None = None,
        trace_id: str | None = None,
    ) -> HealthReport:
        return await self.collector.collect(cancel=cancel, trace_id=trace_id or new_trace_id())

    async def run(
        self,
        cancel: asyncio.Event | None = None,
        trace_id: str | None = None,
    ) -> HealthReport:
        """Collect locally, then merge every configured remote source."""
        local = await self.run_local(cancel=cancel, trace_id=trace_id)
        report = await aggregate(
            local,
            self.options.remote_endpoints,
            self.options,
            fetcher=self.fetcher,
            cancel=cancel,
        )
        logger.info(
            "Health pass %s: %s (%d entries, %.1fms)",
            report.trace_id, report.status.value, len(report.entries), report.duration_ms,
        )
        return report

    @classmethod
    def from_registry(cls, registry: HealthRegistry, settings: Settings) -> HealthService:
        """Build the service from the YAML registry plus environment settings."""
        config = registry.load()

        collector = LocalCollector(per_probe_timeout=settings.probe_timeout)
        for reg in config.probes:
            collector.register(reg.name, reg.probe, reg.tags)

        endpoints = list(config.remotes)
        # Single-endpoint shortcut from the environment
        if not endpoints and settings.remote_health_endpoint.strip():
            endpoints.append(RemoteSource(
                url=settings.remote_health_endpoint,
                prefix=settings.remote_entry_prefix,
            ))

        options = AggregationOptions(
            remote_endpoints=endpoints,
            http_timeout=config.http_timeout or settings.http_timeout,
            include_remote_summary_entry=(
                config.include_remote_summary_entry
                if config.include_remote_summary_entry is not None
                else settings.include_remote_summary_entry
            ),
        )
        logger.info(
            "Health service ready: %d local probe(s), %d remote source(s)",
            len(collector), len(endpoints),
        )
        return cls(collector, options)
