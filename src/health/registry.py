"""Health registry — loads health.yaml into probe registrations and remote sources.

Example::

    http_timeout_ms: 5000
    include_remote_summary_entry: true
    probes:
      - name: api
        type: http
        url: https://api.example.com/ping
        tags: [external]
      - name: Resource Utilization
        type: resource
        cpu_degraded_percent: 70
    remotes:
      - prefix: worker
        url: http://worker:8000/health
        timeout_ms: 2000
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .collector import Registration, check_unique_names
from .models import ConfigurationError
from .probes import DnsProbe, HttpProbe, Probe, TcpProbe
from .remote import DEFAULT_PREFIX, RemoteSource
from .resources import ResourceUtilizationProbe

logger = logging.getLogger(__name__)

REGISTRY_PATH = Path("health.yaml")


@dataclass
class HealthConfig:
    """Parsed contents of the registry file."""

    probes: list[Registration] = field(default_factory=list)
    remotes: list[RemoteSource] = field(default_factory=list)
    http_timeout: float | None = None  # seconds
    include_remote_summary_entry: bool | None = None


class HealthRegistry:
    """Loads and caches the probe / remote configuration."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or REGISTRY_PATH
        self._config = HealthConfig()
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> HealthConfig:
        """Parse the registry file. Misconfiguration raises ConfigurationError."""
        if self._loaded and not force:
            return self._config

        if not self._path.exists():
            logger.warning("Health registry file not found: %s", self._path)
            self._config = HealthConfig()
            self._loaded = True
            return self._config

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse {self._path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{self._path}: top level must be a mapping")

        self._config = parse_config(raw)
        self._loaded = True
        logger.info(
            "Loaded %d probe(s) and %d remote source(s) from %s",
            len(self._config.probes), len(self._config.remotes), self._path,
        )
        return self._config

    def reload(self) -> HealthConfig:
        """Force reload from disk."""
        return self.load(force=True)


# ── Parsers ──────────────────────────────────────────────────────────────────


def parse_config(raw: dict[str, Any]) -> HealthConfig:
    probes = [_parse_probe(p) for p in raw.get("probes") or []]
    check_unique_names(p.name for p in probes)

    remotes = [_parse_remote(r) for r in raw.get("remotes") or []]

    http_timeout = _seconds(raw.get("http_timeout_ms"))
    include = raw.get("include_remote_summary_entry")
    return HealthConfig(
        probes=probes,
        remotes=remotes,
        http_timeout=http_timeout,
        include_remote_summary_entry=None if include is None else bool(include),
    )


def _seconds(ms: Any) -> float | None:
    if ms is None:
        return None
    try:
        value = float(ms) / 1000
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid millisecond value: {ms!r}") from e
    if value <= 0:
        raise ConfigurationError(f"Timeout must be positive, got {ms!r}ms")
    return value


def _http(raw: dict[str, Any], tags: list[str], timeout: float | None) -> Probe:
    if not raw.get("url"):
        raise ConfigurationError(f"HTTP probe '{raw.get('name')}' needs a url")
    return HttpProbe(
        url=raw["url"],
        method=raw.get("method", "GET"),
        expected_status=raw.get("expected_status", 200),
        degraded_after_ms=raw.get("degraded_after_ms", 3000),
        tags=tags,
        timeout=timeout,
    )


def _tcp(raw: dict[str, Any], tags: list[str], timeout: float | None) -> Probe:
    if not raw.get("host") or not raw.get("port"):
        raise ConfigurationError(f"TCP probe '{raw.get('name')}' needs host and port")
    return TcpProbe(host=raw["host"], port=int(raw["port"]), tags=tags, timeout=timeout)


def _dns(raw: dict[str, Any], tags: list[str], timeout: float | None) -> Probe:
    if not raw.get("hostname"):
        raise ConfigurationError(f"DNS probe '{raw.get('name')}' needs a hostname")
    return DnsProbe(hostname=raw["hostname"], tags=tags, timeout=timeout)


def _resource(raw: dict[str, Any], tags: list[str], timeout: float | None) -> Probe:
    return ResourceUtilizationProbe(
        memory_degraded_percent=raw.get("memory_degraded_percent", 80.0),
        cpu_degraded_percent=raw.get("cpu_degraded_percent", 70.0),
        tags=tags,
        timeout=timeout,
    )


# Dispatcher
PROBE_BUILDERS: dict[str, Callable[[dict[str, Any], list[str], float | None], Probe]] = {
    "http": _http,
    "tcp": _tcp,
    "dns": _dns,
    "resource": _resource,
}


def _parse_probe(raw: dict[str, Any]) -> Registration:
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ConfigurationError("Every probe needs a name")
    probe_type = raw.get("type", "http")
    builder = PROBE_BUILDERS.get(probe_type)
    if builder is None:
        raise ConfigurationError(f"Unknown probe type '{probe_type}' for '{name}'")
    tags = list(raw.get("tags") or [])
    probe = builder(raw, tags, _seconds(raw.get("timeout_ms")))
    return Registration(name=name, probe=probe, tags=frozenset(tags))


def _parse_remote(raw: dict[str, Any]) -> RemoteSource:
    return RemoteSource(
        url=str(raw.get("url") or ""),
        prefix=str(raw.get("prefix") or DEFAULT_PREFIX),
        timeout=_seconds(raw.get("timeout_ms")),
    )
