"""Matchchat application configuration.

Loads settings from ``matchchat.settings.yaml`` (non-secret configuration).
Every section has defaults, so a missing file simply yields the reference
behaviour: 30s heartbeat, 1s re-match delay after "next", 0.5s after a
disconnect, 1000-character messages and an in-memory audit trail.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("matchchat.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class MatchingSettings(BaseModel):
    """Pairing and relay tuning."""
    rematch_delay_after_next_seconds:       float = Field(1.0, ge=0)
    rematch_delay_after_disconnect_seconds: float = Field(0.5, ge=0)
    max_message_length:                     int   = Field(1000, gt=0)


class HeartbeatSettings(BaseModel):
    """Liveness sweep cadence; also passed to uvicorn as the protocol-level
    WebSocket ping interval and pong timeout."""
    interval_seconds: float = Field(30.0, gt=0)
    timeout_seconds:  float = Field(30.0, gt=0)


class AuditSettings(BaseModel):
    """Where session lifecycle records go and how many the API returns."""
    backend:           Literal["memory", "duckdb"] = "memory"
    db_path:           str                         = "audit_logs.duckdb"
    default_page_size: int                         = Field(50, gt=0)
    max_page_size:     int                         = Field(100, gt=0)

    @model_validator(mode="after")
    def _default_within_max(self) -> "AuditSettings":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    matching:  MatchingSettings  = Field(default_factory=MatchingSettings)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)
    audit:     AuditSettings     = Field(default_factory=AuditSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML into a validated *AppSettings* object."""
    settings_data = _load_yaml(path or SETTINGS_FILE)

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, audit.backend=%s, heartbeat=%ss)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.audit.backend,
        app_settings.heartbeat.interval_seconds,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()
