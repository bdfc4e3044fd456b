"""Runtime configuration for the fleet geofence monitor."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel

DEFAULT_CONFIG_PATH = Path("/etc/fleet-monitor/config.json")
CONFIG_ENV_VAR = "FLEET_MONITOR_CONFIG"


class ApiConfig(BaseModel):
    """Item-store API connection settings."""
    base_url: str = "http://localhost:8055"
    token: str | None = None       # static bearer token, if the store needs one
    timeout_s: float = 10.0
    page_size: int = -1            # -1 = let the store return everything
    latest_limit: int = 1000       # cap on rows per latest-samples poll


class DetectorConfig(BaseModel):
    """Violation detection settings."""
    cooldown_s: float = 300.0      # repeat alerts per (vehicle, transition) suppressed
    online_window_s: float = 900.0  # older latest sample = vehicle offline


class DispatchConfig(BaseModel):
    """Alert delivery settings."""
    max_retries: int = 3
    retry_delay_s: float = 1.0
    max_undelivered: int = 500     # queue of alerts awaiting redelivery
    publish_events: bool = True    # also write the geofence_events log


class MonitorConfig(BaseModel):
    """Top-level configuration."""
    api: ApiConfig = ApiConfig()
    detector: DetectorConfig = DetectorConfig()
    dispatch: DispatchConfig = DispatchConfig()
    poll_interval_s: float = 30.0
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> MonitorConfig:
    """Load config from JSON, falling back to defaults when absent."""
    if path is None:
        path = Path(os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH))
    if path.exists():
        return MonitorConfig.model_validate_json(path.read_text())
    return MonitorConfig()
