"""
tests/unit/test_config.py — Config Tests

Covers:
  - Defaults load cleanly (gateway URL, timeouts, monitor windows, layout)
  - CLAWDBOT_URL / CLAWDBOT_API_TOKEN come from the environment
  - Non-WebSocket URLs, non-positive timeouts and unknown directions are
    rejected at parse time
  - validate_all() raises ConfigError with a numbered list
  - CRABWALK_CONFIG env var is respected by load_settings()
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError


def _make_settings(**overrides):
    from crabwalk.config.settings import Settings
    return Settings(**overrides)


class TestDefaults:
    def test_defaults(self):
        s = _make_settings()
        assert s.gateway_url == "ws://127.0.0.1:18789"
        assert s.gateway_token is None
        assert s.gateway.connect_timeout_seconds == 10
        assert s.gateway.request_timeout_seconds == 30
        assert s.gateway.reconnect_delay_seconds == 5
        assert s.monitor.active_minutes == 60
        assert s.monitor.historical_minutes == 1440
        assert s.monitor.poll_interval_seconds == 5
        assert s.monitor.max_output_chars == 64_000
        assert s.layout.direction == "LR"
        s.validate_all()  # should not raise

    def test_session_window(self):
        s = _make_settings()
        assert s.session_window_minutes() == 60
        assert s.session_window_minutes(historical=True) == 1440

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("CLAWDBOT_URL", "wss://gateway.example.com")
        monkeypatch.setenv("CLAWDBOT_API_TOKEN", "tok123")
        s = _make_settings()
        assert s.gateway_url == "wss://gateway.example.com"
        assert s.gateway_token == "tok123"

    def test_blank_token_is_none(self):
        s = _make_settings(CLAWDBOT_API_TOKEN="")
        assert s.gateway_token is None


class TestValidators:
    @pytest.mark.parametrize("url", ["http://127.0.0.1:18789", "127.0.0.1:18789", "ws://"])
    def test_bad_url_rejected(self, url):
        with pytest.raises(ValidationError):
            _make_settings(CLAWDBOT_URL=url)

    @pytest.mark.parametrize("field", [
        "connect_timeout_seconds",
        "request_timeout_seconds",
        "reconnect_delay_seconds",
    ])
    def test_non_positive_timeouts_rejected(self, field):
        from crabwalk.config.settings import GatewayConfig
        with pytest.raises(ValidationError):
            GatewayConfig(**{field: 0})

    def test_monitor_bounds(self):
        from crabwalk.config.settings import MonitorConfig
        with pytest.raises(ValidationError):
            MonitorConfig(active_minutes=0)
        with pytest.raises(ValidationError):
            MonitorConfig(poll_interval_seconds=-1)
        assert MonitorConfig(max_actions=0).max_actions == 0

    def test_direction(self):
        from crabwalk.config.settings import LayoutConfig
        assert LayoutConfig(direction="tb").direction == "TB"
        with pytest.raises(ValidationError):
            LayoutConfig(direction="diagonal")

    def test_log_level(self):
        from crabwalk.config.settings import LoggingConfig
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")

    def test_sections_from_dicts(self):
        s = _make_settings(gateway={"request_timeout_seconds": 60}, layout={"direction": "TB"})
        assert s.gateway.request_timeout_seconds == 60
        assert s.gateway.connect_timeout_seconds == 10
        assert s.layout.direction == "TB"


class TestValidateAll:
    def test_token_over_plain_remote_ws(self):
        from crabwalk.config.settings import ConfigError
        s = _make_settings(CLAWDBOT_URL="ws://gateway.example.com:18789", CLAWDBOT_API_TOKEN="tok")
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "wss://" in str(exc_info.value)

    def test_token_over_local_ws_ok(self):
        s = _make_settings(CLAWDBOT_URL="ws://localhost:18789", CLAWDBOT_API_TOKEN="tok")
        s.validate_all()  # should not raise

    def test_multiple_errors_all_reported(self):
        from crabwalk.config.settings import ConfigError
        s = _make_settings(
            gateway={"connect_timeout_seconds": 40, "request_timeout_seconds": 30},
            monitor={"active_minutes": 120, "historical_minutes": 60},
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        msg = str(exc_info.value)
        assert "1." in msg
        assert "2." in msg
        assert "2 configuration problem(s)" in msg


class TestConfigPathResolution:
    def test_explicit_path_takes_priority(self, tmp_path):
        from crabwalk.config.settings import _resolve_config_path
        cfg_file = tmp_path / "custom.yaml"
        with patch.dict(os.environ, {"CRABWALK_CONFIG": str(tmp_path / "env.yaml")}):
            assert _resolve_config_path(str(cfg_file)) == Path(str(cfg_file))

    def test_env_var_used_when_no_explicit_path(self, tmp_path):
        from crabwalk.config.settings import _resolve_config_path
        env_file = tmp_path / "env_config.yaml"
        with patch.dict(os.environ, {"CRABWALK_CONFIG": str(env_file)}):
            assert _resolve_config_path(None) == Path(str(env_file))

    def test_default_path(self):
        from crabwalk.config.settings import _resolve_config_path
        assert _resolve_config_path(None) == Path("config/config.yaml")

    def test_load_settings_from_file(self, tmp_path):
        import crabwalk.config.settings as cs

        cfg_file = tmp_path / "test_config.yaml"
        cfg_file.write_text(textwrap.dedent("""
            gateway:
              request_timeout_seconds: 45
            monitor:
              active_minutes: 15
            layout:
              direction: BT
            unrelated:
              ignored: true
        """))

        settings = cs.load_settings(str(cfg_file))
        assert settings.gateway.request_timeout_seconds == 45
        assert settings.monitor.active_minutes == 15
        assert settings.layout.direction == "BT"
        assert cs.get_settings() is settings

    def test_missing_file_gives_defaults(self, tmp_path):
        import crabwalk.config.settings as cs
        settings = cs.load_settings(tmp_path / "absent.yaml")
        assert settings.monitor.active_minutes == 60
