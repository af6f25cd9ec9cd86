"""LLM Remote — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. Environment variables prefixed with LLM_REMOTE_
       (nested keys use ``__``, e.g. ``LLM_REMOTE_AUTH__PIN``)
    3. System config: /etc/llm-remote/config.yaml
    4. User config:   ~/.llm-remote/config.yaml
    5. An explicit ``--config`` file

Settings are read once at startup.  Anything missing or invalid raises
:class:`~llm_remote.exceptions.ConfigurationError` from ``Settings.load()``,
which is the only error in the security core that is allowed to stop the
process.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from llm_remote.exceptions import ConfigurationError

MIN_MASTER_PASSWORD_LENGTH = 16


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class AuthConfig(BaseModel):
    authorized_users: Annotated[list[int], NoDecode] = Field(
        default_factory=list,
        description="Whitelisted principal ids.  Env form: LLM_REMOTE_AUTH__AUTHORIZED_USERS=1,2,3",
    )
    pin: str = Field(default="", description="PIN required by /auth.")
    session_timeout_minutes: Annotated[int, Field(ge=1, le=7 * 24 * 60)] = 15
    lockout_threshold: Annotated[int, Field(ge=1, le=100)] = 5
    lockout_base_minutes: Annotated[int, Field(ge=1, le=24 * 60)] = 15
    lockout_max_hours: Annotated[int, Field(ge=1, le=24 * 7)] = 24
    default_work_dir: str = Field(
        default_factory=lambda: str(Path.home()),
        description="Working context assigned to new sessions.",
    )

    @field_validator("authorized_users", mode="before")
    @classmethod
    def split_user_list(cls, v: object) -> object:
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            text = v.strip()
            if text.startswith("["):
                return json.loads(text)
            return [int(part.strip()) for part in text.split(",") if part.strip()]
        return v

    @field_validator("authorized_users")
    @classmethod
    def require_users(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("at least one authorized user is required")
        return v

    @field_validator("pin")
    @classmethod
    def check_pin(cls, v: str) -> str:
        if not 4 <= len(v) <= 64:
            raise ValueError("PIN must be between 4 and 64 characters")
        return v

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60.0

    @property
    def lockout_base_seconds(self) -> float:
        return self.lockout_base_minutes * 60.0

    @property
    def lockout_max_seconds(self) -> float:
        return self.lockout_max_hours * 3600.0


class CryptoConfig(BaseModel):
    master_password: str = Field(
        default="",
        description="Master passphrase for the cipher engine (min 16 characters).",
    )

    @field_validator("master_password")
    @classmethod
    def check_length(cls, v: str) -> str:
        if len(v) < MIN_MASTER_PASSWORD_LENGTH:
            raise ValueError(
                f"master password must be at least {MIN_MASTER_PASSWORD_LENGTH} characters"
            )
        return v


class SecurityConfig(BaseModel):
    rate_limit_per_minute: Annotated[int, Field(ge=1, le=1000)] = 10
    snapshot_interval_seconds: Annotated[float, Field(ge=0, le=3600)] = Field(
        default=60.0,
        description="Minimum seconds between session snapshot writes triggered by activity.",
    )
    encrypt_session_snapshot: bool = Field(
        default=True,
        description="Encrypt each session entry of the snapshot with the cipher engine.",
    )


class BotConfig(BaseModel):
    username: str | None = Field(
        default=None,
        description="Bot username without '@'.  Used to detect and strip mentions in groups.",
    )


class PathsConfig(BaseModel):
    data_dir: Path = Path("~/.llm-remote")
    sessions_file: str = "sessions.json"
    audit_file: str = "audit.log"

    @property
    def sessions_path(self) -> Path:
        return self.data_dir.expanduser() / self.sessions_file

    @property
    def audit_path(self) -> Path:
        return self.data_dir.expanduser() / self.audit_file


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LLM_REMOTE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    auth: AuthConfig
    crypto: CryptoConfig
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("paths", mode="before")
    @classmethod
    def expand_data_dir(cls, v: object) -> object:
        if isinstance(v, dict) and isinstance(v.get("data_dir"), str):
            v["data_dir"] = Path(v["data_dir"]).expanduser()
        return v

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from YAML files + environment variables.

        Raises:
            ConfigurationError: A required value is missing or invalid.
        """
        data: dict[str, object] = {}

        candidates = [
            Path("/etc/llm-remote/config.yaml"),
            Path.home() / ".llm-remote" / "config.yaml",
        ]
        if config_file:
            if not config_file.exists():
                raise ConfigurationError(
                    f"Config file not found: {config_file}",
                    context={"path": str(config_file)},
                )
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    for key, value in loaded.items():
                        if isinstance(value, dict) and isinstance(data.get(key), dict):
                            data[key] = {**data[key], **value}  # type: ignore[dict-item]
                        else:
                            data[key] = value

        try:
            return cls(**data)
        except ValidationError as exc:
            fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
            raise ConfigurationError(
                f"Invalid configuration: {', '.join(fields)}",
                context={"fields": fields},
            ) from exc


# Module-level singleton — replaced by ``Settings.load()`` at startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
