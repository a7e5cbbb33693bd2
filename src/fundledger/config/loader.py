"""
Configuration loader for fundledger.

What it does:
- Reads static settings from `config/config.yaml`.
- Resolves the administrator identity, allowing an environment override named
  after the configured environment: `FUNDLEDGER_{environment.replace('-', '_').upper()}_ADMINISTRATOR`.
  Example: `FUNDLEDGER_LOCAL_ADMINISTRATOR`.
- Validates the resulting configuration using Pydantic models.

Where it is used:
- Called by `fundledger.main` to build the `CampaignLedger` and its sinks.
"""

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class EventsConfig(BaseModel):
    """Where ledger events go besides the in-process sinks."""
    publish: bool = False
    audit_log: bool = True


class LedgerSettings(BaseModel):
    """Runtime settings assembled from YAML + environment variables."""
    environment: str = "local"
    administrator: str
    seconds_per_day: int = Field(default=86_400, gt=0)
    store_path: Optional[str] = None
    export_dir: str = "data/export"
    audit_log_path: str = "data/audit/events.jsonl"
    events: EventsConfig = EventsConfig()

    @field_validator("administrator")
    @classmethod
    def not_empty(cls, v, info):
        if not v:
            raise ValueError(f"Missing required identity: {info.field_name}")
        return v


def env_prefix(environment: str) -> str:
    return f"FUNDLEDGER_{environment.replace('-', '_').upper()}"


def load_settings(path: str = "config/config.yaml") -> LedgerSettings:
    """Load YAML config, resolve env-var overrides, and return LedgerSettings."""
    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}
    environment = config.get("environment", "local")
    prefix = env_prefix(environment)
    administrator = os.getenv(f"{prefix}_ADMINISTRATOR", "") or config.get("administrator", "")
    if not administrator:
        raise ValueError(
            f"Missing administrator identity. Set `administrator` in {path} or env var {prefix}_ADMINISTRATOR"
        )
    store_path = os.getenv(f"{prefix}_STORE_PATH", "") or config.get("store_path")
    return LedgerSettings(
        environment=environment,
        administrator=administrator,
        seconds_per_day=config.get("seconds_per_day", 86_400),
        store_path=store_path or None,
        export_dir=config.get("export_dir", "data/export"),
        audit_log_path=config.get("audit_log_path", "data/audit/events.jsonl"),
        events=EventsConfig(**(config.get("events") or {})),
    )
