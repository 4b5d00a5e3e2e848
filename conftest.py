"""
Unit test conftest — isolate gateway environment variables so that
Settings tests are not affected by a real gateway URL or token in the
developer's or CI environment.
"""
import pytest

_GATEWAY_ENV_VARS = [
    "CLAWDBOT_URL",
    "CLAWDBOT_API_TOKEN",
    "CRABWALK_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_gateway_env(monkeypatch):
    """Remove gateway env vars for every unit test so Settings() behaves
    as if nothing is configured unless the test explicitly provides it.
    Also disables .env file loading so local developer .env files don't
    leak real tokens into tests."""
    for var in _GATEWAY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import crabwalk.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)
