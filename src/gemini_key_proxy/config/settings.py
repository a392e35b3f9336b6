"""Settings configuration for the Gemini key proxy."""

import contextlib
import os
import tomllib
from pathlib import Path
from typing import Any

import orjson
import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gemini_key_proxy.config.discovery import find_toml_config_file
from gemini_key_proxy.exceptions import ConfigurationError


__all__ = [
    "Settings",
    "ServerSettings",
    "UpstreamSettings",
    "RotationSettings",
    "StorageSettings",
    "ConfigurationError",
    "get_settings",
    "parse_comma_separated",
]

CONFIG_OVERRIDES_ENV = "GEMINI_KEY_PROXY_CONFIG_OVERRIDES"

DEFAULT_UPSTREAM_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"
DEFAULT_DATABASE_PATH = Path("~/.gemini-key-proxy").expanduser() / "proxy.db"

logger = structlog.get_logger(__name__)


def parse_comma_separated(value: str | None) -> list[str]:
    """Split a comma-separated string, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class ServerSettings(BaseModel):
    """HTTP server settings."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3100, ge=1, le=65535, description="Bind port")
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: str | None = Field(
        default=None, description="Optional file receiving JSON log lines"
    )
    json_logs: bool = Field(default=False, description="Render console logs as JSON")
    reload: bool = Field(default=False, description="Enable uvicorn auto-reload")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class UpstreamSettings(BaseModel):
    """Upstream generative-AI API settings."""

    base_url: str = Field(
        default=DEFAULT_UPSTREAM_BASE_URL,
        description="OpenAI-compatible base URL of the upstream API",
    )
    timeout: float = Field(
        default=240.0, gt=0, description="Total upstream request timeout (seconds)"
    )
    connect_timeout: float = Field(
        default=10.0, gt=0, description="Upstream connect timeout (seconds)"
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


ROTATION_LIMITS: dict[str, tuple[int, int]] = {
    "request_count": (0, 100),
    "max_failure_count": (1, 20),
    "rate_limit_cooldown": (10, 3600),
    "max_attempts": (1, 10),
}


class RotationSettings(BaseModel):
    """Credential rotation thresholds."""

    request_count: int = Field(
        default=5,
        ge=ROTATION_LIMITS["request_count"][0],
        le=ROTATION_LIMITS["request_count"][1],
        description="Sticky reuses of one key before forced rotation (0 disables)",
    )
    max_failure_count: int = Field(
        default=5,
        ge=ROTATION_LIMITS["max_failure_count"][0],
        le=ROTATION_LIMITS["max_failure_count"][1],
        description="Consecutive failures before a key is deactivated",
    )
    rate_limit_cooldown: int = Field(
        default=60,
        ge=ROTATION_LIMITS["rate_limit_cooldown"][0],
        le=ROTATION_LIMITS["rate_limit_cooldown"][1],
        description="Cooldown (seconds) when upstream gives no reset hint",
    )
    max_attempts: int = Field(
        default=3,
        ge=ROTATION_LIMITS["max_attempts"][0],
        le=ROTATION_LIMITS["max_attempts"][1],
        description="Upstream attempts per proxied request",
    )

    def clamped_update(self, **changes: int | None) -> "RotationSettings":
        """Return a copy with the given fields changed and clamped into range.

        None values leave the field unchanged.
        """
        data = self.model_dump()
        for name, value in changes.items():
            if value is None:
                continue
            low, high = ROTATION_LIMITS[name]
            data[name] = min(max(value, low), high)
        return RotationSettings(**data)


class StorageSettings(BaseModel):
    """Credential store settings."""

    database_path: Path = Field(
        default=DEFAULT_DATABASE_PATH, description="SQLite database file"
    )
    legacy_keys_file: Path | None = Field(
        default=None,
        description="Optional keys.json (array format) imported at startup",
    )

    @field_validator("database_path", "legacy_keys_file", mode="after")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None


class Settings(BaseSettings):
    """
    Configuration settings for the Gemini key proxy.

    Settings are loaded from environment variables, .env files, and TOML
    configuration files. Nested sections use `__` in environment variable
    names (e.g. `ROTATION__REQUEST_COUNT=10`).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    rotation: RotationSettings = Field(default_factory=RotationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    gemini_api_keys: str | None = Field(
        default=None,
        description="Comma-separated API keys added to the pool at startup",
    )

    @property
    def seed_api_keys(self) -> list[str]:
        """API keys to seed the store with on startup."""
        return parse_comma_separated(self.gemini_api_keys)

    @property
    def server_url(self) -> str:
        """Get the complete server URL."""
        return f"http://{self.server.host}:{self.server.port}"

    def model_dump_safe(self) -> dict[str, Any]:
        """Dump settings with the seed keys masked."""
        data = self.model_dump(mode="json")
        if data.get("gemini_api_keys"):
            data["gemini_api_keys"] = f"<{len(self.seed_api_keys)} keys>"
        return data

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file.

        Raises:
            ValueError: If the TOML file is invalid or cannot be read
        """
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ValueError(f"Cannot read TOML config file {toml_path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in {toml_path}: {e}") from e

    @classmethod
    def from_config(
        cls, config_path: Path | str | None = None, **kwargs: Any
    ) -> "Settings":
        """Create Settings from a configuration file plus overrides.

        Args:
            config_path: TOML file. None means the CONFIG_FILE env var, then
                auto-discovery.
            **kwargs: Values that take precedence over the file
        """
        if config_path is None:
            config_path_env = os.environ.get("CONFIG_FILE")
            if config_path_env:
                config_path = Path(config_path_env)

        if isinstance(config_path, str):
            config_path = Path(config_path)

        if config_path is None:
            config_path = find_toml_config_file()

        config_data: dict[str, Any] = {}
        if config_path and config_path.exists():
            if config_path.suffix.lower() != ".toml":
                raise ValueError(
                    f"Unsupported config file format: {config_path.suffix}. "
                    "Only TOML (.toml) files are supported."
                )
            config_data = cls.load_toml_config(config_path)
            logger.debug("config_file_loaded", path=str(config_path))

        merged_config = {**config_data}
        for key, value in kwargs.items():
            if isinstance(value, dict) and isinstance(merged_config.get(key), dict):
                merged_config[key] = {**merged_config[key], **value}
            else:
                merged_config[key] = value

        return cls(**merged_config)


def get_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings, honouring CLI overrides passed through the environment.

    Raises:
        ConfigurationError: If the configuration cannot be loaded
    """
    try:
        cli_overrides: dict[str, Any] = {}
        cli_overrides_json = os.environ.get(CONFIG_OVERRIDES_ENV)
        if cli_overrides_json:
            with contextlib.suppress(ValueError):
                cli_overrides = orjson.loads(cli_overrides_json)

        return Settings.from_config(config_path=config_path, **cli_overrides)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Configuration error: {e}") from e
