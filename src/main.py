"""Entry point for the health aggregator."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.panel import Panel

from src.config import settings
from src.health.models import ConfigurationError, HealthStatus
from src.health.registry import HealthRegistry
from src.health.renderer import render
from src.health.service import HealthService

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Health Aggregator", style="bold green"))
    uvicorn.run(
        "src.api.server:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_check(config_file: str, local_only: bool) -> int:
    """Run one aggregation pass and print the rendered report."""
    try:
        service = HealthService.from_registry(HealthRegistry(path=Path(config_file)), settings)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2

    report = asyncio.run(service.run_local() if local_only else service.run())
    console.print_json(render(report))

    summary = report.summary
    console.print(
        f"\n[dim]{report.status.value}: {summary.healthy} healthy / {summary.degraded} degraded / "
        f"{summary.unhealthy} unhealthy / {summary.unknown} unknown in {report.duration_ms:.0f}ms[/dim]"
    )
    return 1 if report.status == HealthStatus.UNHEALTHY else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Federated Health Aggregator")
    sub = parser.add_subparsers(dest="command")

    # Server mode
    sub.add_parser("serve", help="Start the API server")

    # One-shot mode
    check_parser = sub.add_parser("check", help="Run one health pass and print the report")
    check_parser.add_argument(
        "--config", default=settings.health_config_file, help="Path to the health registry YAML",
    )
    check_parser.add_argument("--local", action="store_true", help="Skip remote sources")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check(args.config, args.local))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
