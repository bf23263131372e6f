"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.health.models import HealthStatus
from tests.helpers import StaticProbe


@pytest.fixture
def healthy_probe() -> StaticProbe:
    return StaticProbe(HealthStatus.HEALTHY)


@pytest.fixture
def registry_yaml(tmp_path: Path) -> Path:
    """A health.yaml with one probe of each type and two remotes."""
    data = {
        "http_timeout_ms": 2500,
        "include_remote_summary_entry": False,
        "probes": [
            {"name": "api", "type": "http", "url": "https://api.example.com/ping", "tags": ["external"]},
            {"name": "db-port", "type": "tcp", "host": "db.internal", "port": 5432, "timeout_ms": 1000},
            {"name": "resolver", "type": "dns", "hostname": "localhost"},
            {"name": "Resource Utilization", "type": "resource", "cpu_degraded_percent": 90},
        ],
        "remotes": [
            {"prefix": "worker", "url": "http://worker:8000/health", "timeout_ms": 2000},
            {"url": "https://billing.example.com/health"},
        ],
    }
    path = tmp_path / "health.yaml"
    path.write_text(yaml.dump(data, sort_keys=False), encoding="utf-8")
    return path
