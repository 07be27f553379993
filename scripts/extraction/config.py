"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev, .env files)
  - AWS Secrets Manager (aws-secret://name#key)
  - GCP Secret Manager (gcp-secret://name)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from scripts.extraction.secrets import resolve_database_url

FORGES = ("github", "gitlab")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 2
    max_connections: int = 10


@dataclass(frozen=True)
class QueueConfig:
    queue_url: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None  # LocalStack in development
    event_bus_name: str = "default"
    wait_time_seconds: int = 20


@dataclass(frozen=True)
class SourceControlConfig:
    # forge -> token or secret reference
    tokens: dict[str, str] = field(default_factory=dict)
    token_template: str = ""
    github_api_base_url: str = "https://api.github.com"
    gitlab_api_base_url: str = "https://gitlab.com/api/v4"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class SchedulerConfig:
    reconcile_interval_min: int = 60
    deployment_sweep_interval_min: int = 30
    misfire_grace_time: int = 300


@dataclass(frozen=True)
class ExtractionConfig:
    tenant_id: int
    database: DatabaseConfig
    queue: QueueConfig
    source_control: SourceControlConfig = field(default_factory=SourceControlConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    per_page: int = 30
    window_days: int = 198


def load_config() -> ExtractionConfig:
    """Load configuration from environment variables.

    Secrets (database URL, provider tokens) are resolved lazily through
    ``scripts.extraction.secrets`` so references stay unresolved until used.
    """
    load_dotenv()

    tenant_raw = os.environ.get("TENANT_ID", "")
    if not tenant_raw:
        raise ValueError("TENANT_ID environment variable is required")

    database = DatabaseConfig(
        url=resolve_database_url(),
        min_connections=int(os.environ.get("DB_MIN_CONNECTIONS", "2")),
        max_connections=int(os.environ.get("DB_MAX_CONNECTIONS", "10")),
    )

    queue = QueueConfig(
        queue_url=os.environ.get("EXTRACT_QUEUE_URL", ""),
        region=os.environ.get("AWS_REGION", "us-east-1"),
        endpoint_url=os.environ.get("AWS_ENDPOINT_URL") or None,
        event_bus_name=os.environ.get("EVENT_BUS_NAME", "default"),
        wait_time_seconds=int(os.environ.get("QUEUE_WAIT_TIME_SECONDS", "20")),
    )

    tokens = {}
    for forge in FORGES:
        token = os.environ.get(f"{forge.upper()}_TOKEN", "")
        if token:
            tokens[forge] = token

    source_control = SourceControlConfig(
        tokens=tokens,
        token_template=os.environ.get("SOURCE_CONTROL_TOKEN_TEMPLATE", ""),
        github_api_base_url=os.environ.get(
            "GITHUB_API_BASE_URL", "https://api.github.com"
        ),
        gitlab_api_base_url=os.environ.get(
            "GITLAB_API_BASE_URL", "https://gitlab.com/api/v4"
        ),
        timeout_seconds=float(os.environ.get("SOURCE_CONTROL_TIMEOUT", "30")),
    )

    scheduler = SchedulerConfig(
        reconcile_interval_min=int(os.environ.get("RECONCILE_INTERVAL_MIN", "60")),
        deployment_sweep_interval_min=int(
            os.environ.get("DEPLOYMENT_SWEEP_INTERVAL_MIN", "30")
        ),
        misfire_grace_time=int(os.environ.get("MISFIRE_GRACE_TIME", "300")),
    )

    return ExtractionConfig(
        tenant_id=int(tenant_raw),
        database=database,
        queue=queue,
        source_control=source_control,
        scheduler=scheduler,
        per_page=int(os.environ.get("PER_PAGE", "30")),
        window_days=int(os.environ.get("EXTRACT_WINDOW_DAYS", "198")),
    )
