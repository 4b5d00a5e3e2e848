"""
config/settings.py — Crabwalk Runtime Settings

Merges config.yaml (defaults/structure) with .env (gateway URL and token).
Pydantic-powered — all fields are validated and typed.

  - GatewayConfig rejects non-positive timeouts at parse time
  - Settings rejects gateway URLs that are not ws:// or wss://
  - LayoutConfig only accepts TB | LR | BT | RL
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects the CRABWALK_CONFIG env var as a fallback
    when no explicit config_path argument is given

Settings are read by main.py only. The gateway client, translator and
layout engine take plain arguments.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crabwalk.exceptions import CrabwalkError


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(CrabwalkError):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_GATEWAY_URL = "ws://127.0.0.1:18789"

_VALID_LOG_LEVELS  = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_DIRECTIONS  = {"TB", "LR", "BT", "RL"}
_VALID_URL_SCHEMES = {"ws", "wss"}


def _is_websocket_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in _VALID_URL_SCHEMES and bool(parsed.netloc)


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GatewayConfig(BaseModel):
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 30.0
    reconnect_delay_seconds: float = 5.0

    @field_validator(
        "connect_timeout_seconds",
        "request_timeout_seconds",
        "reconnect_delay_seconds",
    )
    @classmethod
    def _positive_seconds(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"gateway.{info.field_name} must be > 0")
        return v


class MonitorConfig(BaseModel):
    active_minutes: int = 60
    historical_minutes: int = 24 * 60
    poll_interval_seconds: float = 5.0
    max_output_chars: int = 64_000
    max_actions: int = 50
    history_limit: int = 1000

    @field_validator("active_minutes", "historical_minutes", "max_output_chars", "history_limit")
    @classmethod
    def _positive_int(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"monitor.{info.field_name} must be >= 1")
        return v

    @field_validator("poll_interval_seconds")
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("monitor.poll_interval_seconds must be > 0")
        return v

    @field_validator("max_actions")
    @classmethod
    def _non_negative_actions(cls, v: int) -> int:
        if v < 0:
            raise ValueError("monitor.max_actions must be >= 0")
        return v


class LayoutConfig(BaseModel):
    direction: str = "LR"

    @field_validator("direction")
    @classmethod
    def _valid_direction(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_DIRECTIONS:
            raise ValueError(
                f"layout.direction '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_DIRECTIONS)}"
            )
        return upper


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 20
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Crabwalk runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Connection from .env ------------------------------------------------
    clawdbot_url: str = Field(default=DEFAULT_GATEWAY_URL, alias="CLAWDBOT_URL")
    clawdbot_api_token: Optional[str] = Field(default=None, alias="CLAWDBOT_API_TOKEN")

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("clawdbot_api_token", mode="before")
    @classmethod
    def _blank_token(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v)

    @field_validator("clawdbot_url")
    @classmethod
    def _valid_url(cls, v: str) -> str:
        if not _is_websocket_url(v):
            raise ValueError(
                f"CLAWDBOT_URL '{v}' is not a WebSocket URL. "
                f"Use ws://host:port or wss://host:port."
            )
        return v

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("monitor", mode="before")
    @classmethod
    def _coerce_monitor(cls, v: Any) -> Any:
        return MonitorConfig(**v) if isinstance(v, dict) else v

    @field_validator("layout", mode="before")
    @classmethod
    def _coerce_layout(cls, v: Any) -> Any:
        return LayoutConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def gateway_url(self) -> str:
        return self.clawdbot_url

    @property
    def gateway_token(self) -> Optional[str]:
        return self.clawdbot_api_token

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def session_window_minutes(self, historical: bool = False) -> int:
        """`activeMinutes` for sessions.list: the live window or the historical one."""
        return self.monitor.historical_minutes if historical else self.monitor.active_minutes

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time;
        this method catches cross-field problems they can't see.
        """
        errors: list[str] = []

        # ── Gateway URL ──────────────────────────────────────────────────────
        if not _is_websocket_url(self.clawdbot_url):
            errors.append(
                f"CLAWDBOT_URL '{self.clawdbot_url}' is not a ws:// or wss:// URL."
            )

        # ── Token over an unencrypted remote link ────────────────────────────
        parsed = urlparse(self.clawdbot_url)
        if (
            self.clawdbot_api_token
            and parsed.scheme == "ws"
            and parsed.hostname not in ("127.0.0.1", "localhost", "::1")
        ):
            errors.append(
                f"CLAWDBOT_API_TOKEN would be sent in clear text to "
                f"'{parsed.hostname}'. Use wss:// for remote gateways."
            )

        # ── Request timeout must outlast the handshake ───────────────────────
        if self.gateway.request_timeout_seconds < self.gateway.connect_timeout_seconds:
            errors.append(
                "gateway.request_timeout_seconds must be >= "
                "gateway.connect_timeout_seconds."
            )

        # ── Historical window covers the live one ────────────────────────────
        if self.monitor.historical_minutes < self.monitor.active_minutes:
            errors.append(
                "monitor.historical_minutes must be >= monitor.active_minutes."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nCrabwalk startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()

_KNOWN_SECTIONS = {"gateway", "monitor", "layout", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. CRABWALK_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("CRABWALK_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Guarded by _singleton_lock.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(
                **{k: v for k, v in _load_yaml(_resolve_config_path(None)).items() if k in _KNOWN_SECTIONS}
            )
        return _singleton
