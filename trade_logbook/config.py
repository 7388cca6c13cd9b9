from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from trade_logbook.provider import DEFAULT_API_BASE
from trade_logbook.store import DEFAULT_DATABASE_URL


class LogbookConfig(BaseModel):
    api_base: str = DEFAULT_API_BASE
    api_key: Optional[str] = None
    database_url: str = DEFAULT_DATABASE_URL
    key_prefix: str = "tdtl"
    timezone: Optional[str] = None

    # Rate gate (seconds)
    min_interval_s: float = Field(1.3, gt=0)  # ~45 requests/minute
    backoff_base_s: float = Field(1.0, ge=0)
    backoff_cap_s: float = Field(30.0, ge=0)
    backoff_jitter_s: float = Field(1.2, ge=0)
    max_throttle_retries: Optional[int] = Field(None, ge=0)  # None: retry forever
    request_timeout_s: float = Field(30.0, gt=0)

    # Crawl budgets per pull
    courtesy_pause_s: float = Field(2.0, ge=0)
    max_pages_per_pull: int = Field(60, gt=0)
    max_events_per_pull: int = Field(50_000, gt=0)

    # Cache + ledger
    log_store_cap: int = Field(500_000, gt=0)
    fee_rate: float = Field(0.001, ge=0)
    context_seconds: Optional[int] = Field(None, ge=0)  # None: all stored history before the window
    bootstrap_multiplier: float = Field(2.0, ge=1)
    bootstrap_hardcap_days: int = Field(21, ge=0)


def _candidate_paths() -> list[Path]:
    paths = [Path("logbook.yaml")]
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".trade_logbook" / "logbook.yaml")
    return paths


def _env_overrides() -> dict[str, str]:
    out: dict[str, str] = {}
    mapping = {
        "TORN_API_KEY": "api_key",
        "LOGBOOK_DATABASE_URL": "database_url",
        "LOGBOOK_API_BASE": "api_base",
        "UI_TIMEZONE": "timezone",
    }
    for env, field_name in mapping.items():
        v = (os.environ.get(env) or "").strip()
        if v:
            out[field_name] = v
    return out


def load_logbook_config(path: Optional[Path] = None) -> tuple[LogbookConfig, Optional[str]]:
    """
    Defaults, then the first YAML file found (top-level keys or under `logbook:`),
    then environment variables. Returns the config and the file used, if any.
    """
    data: dict = {}
    used: Optional[str] = None
    candidates = [path] if path is not None else _candidate_paths()
    for p in candidates:
        if p.exists():
            raw = yaml.safe_load(p.read_text()) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"{p}: expected a mapping at the top level.")
            data = raw.get("logbook") or raw
            used = str(p)
            break
    data = {**data, **_env_overrides()}
    return LogbookConfig.model_validate(data), used
