"""FastAPI server exposing the federated health report."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from src.api.health_routes import health_router
from src.config import settings
from src.health.registry import HealthRegistry
from src.health.service import HealthService

logger = logging.getLogger(__name__)


def _registry_path() -> Path:
    path = Path(settings.health_config_file)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the health service on startup unless one was injected."""
    if getattr(app.state, "health_service", None) is None:
        # ConfigurationError propagates — a bad registry must fail startup
        registry = HealthRegistry(path=_registry_path())
        app.state.health_service = HealthService.from_registry(registry, settings)

    yield


def create_app(service: HealthService | None = None) -> FastAPI:
    app = FastAPI(
        title="Health Aggregator",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.health_service = service

    app.include_router(health_router, prefix=settings.health_path.rstrip("/") or "/health")

    return app
