from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    health_path: str = "/health"

    # Probe + remote definitions (absolute or relative to CWD)
    health_config_file: str = "health.yaml"

    # Local probes
    probe_timeout: float | None = 30.0  # seconds per probe, None = no deadline

    # Remote aggregation
    http_timeout: float = 5.0  # default per-call deadline, seconds
    include_remote_summary_entry: bool = True
    # Single remote endpoint shortcut (used when health.yaml lists no remotes)
    remote_health_endpoint: str = ""
    remote_entry_prefix: str = "api"

    # Logging
    log_level: str = "INFO"


settings = Settings()
