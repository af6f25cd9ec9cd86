"""Unit tests — Settings.load, get_settings, override_settings."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from llm_remote.config import AuthConfig, Settings, get_settings, override_settings
from llm_remote.exceptions import ConfigurationError

VALID_YAML = (
    "auth:\n"
    "  authorized_users: [42, 43]\n"
    "  pin: '482913'\n"
    "crypto:\n"
    "  master_password: correct-horse-battery-staple-16\n"
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in list(os.environ):
        if key.upper().startswith("LLM_REMOTE_"):
            monkeypatch.delenv(key)


@pytest.mark.unit
class TestSettingsLoad:
    def test_load_from_custom_config_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(VALID_YAML)

        settings = Settings.load(config_file=config_file)
        assert settings.auth.authorized_users == [42, 43]
        assert settings.auth.pin == "482913"
        assert settings.auth.session_timeout_minutes == 15
        assert settings.security.rate_limit_per_minute == 10
        assert settings.security.encrypt_session_snapshot is True

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            Settings.load(config_file=tmp_path / "nope.yaml")

    def test_missing_required_blocks(self) -> None:
        with patch.object(Path, "exists", return_value=False):
            with pytest.raises(ConfigurationError) as exc_info:
                Settings.load()
        assert "auth" in exc_info.value.context["fields"]
        assert "crypto" in exc_info.value.context["fields"]

    def test_short_master_password(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(VALID_YAML.replace("correct-horse-battery-staple-16", "short"))
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.load(config_file=config_file)
        assert "crypto.master_password" in exc_info.value.context["fields"]

    def test_empty_whitelist(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(VALID_YAML.replace("[42, 43]", "[]"))
        with pytest.raises(ConfigurationError):
            Settings.load(config_file=config_file)

    def test_short_pin(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(VALID_YAML.replace("'482913'", "'12'"))
        with pytest.raises(ConfigurationError):
            Settings.load(config_file=config_file)

    def test_user_config_is_merged(self, tmp_path: Path) -> None:
        user_dir = tmp_path / "home" / ".llm-remote"
        user_dir.mkdir(parents=True)
        (user_dir / "config.yaml").write_text(VALID_YAML + "security:\n  rate_limit_per_minute: 3\n")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("auth:\n  session_timeout_minutes: 5\n")

        settings = Settings.load(config_file=config_file)
        assert settings.security.rate_limit_per_minute == 3
        assert settings.auth.session_timeout_minutes == 5
        assert settings.auth.authorized_users == [42, 43]

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLM_REMOTE_AUTH__AUTHORIZED_USERS", "42,43")
        monkeypatch.setenv("LLM_REMOTE_AUTH__PIN", "482913")
        monkeypatch.setenv("LLM_REMOTE_CRYPTO__MASTER_PASSWORD", "correct-horse-battery-staple-16")
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.auth.authorized_users == [42, 43]

    def test_derived_paths(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(VALID_YAML + f"paths:\n  data_dir: {tmp_path / 'data'}\n")
        settings = Settings.load(config_file=config_file)
        assert settings.paths.sessions_path == tmp_path / "data" / "sessions.json"
        assert settings.paths.audit_path == tmp_path / "data" / "audit.log"


@pytest.mark.unit
class TestAuthConfig:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("1,2,3", [1, 2, 3]), (" 1 , 2 ", [1, 2]), ("[4, 5]", [4, 5]), (9, [9]), ([6], [6])],
    )
    def test_user_list_forms(self, raw: object, expected: list[int]) -> None:
        assert AuthConfig(authorized_users=raw, pin="1234").authorized_users == expected

    def test_derived_seconds(self) -> None:
        auth = AuthConfig(authorized_users=[1], pin="1234", lockout_max_hours=2)
        assert auth.session_timeout_seconds == 900.0
        assert auth.lockout_base_seconds == 900.0
        assert auth.lockout_max_seconds == 7200.0


@pytest.mark.unit
class TestGetSettings:
    def test_override_settings(self, test_settings: Settings) -> None:
        override_settings(test_settings)
        assert get_settings() is test_settings
