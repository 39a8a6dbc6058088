# rest2mqtt/core/config.py
"""
Central configuration for the bridge.

Environment variables override defaults; a ``.env`` file in the working
directory is read when present. The settings object is built once at startup
by :func:`load_settings` and handed explicitly to the components that need it.
"""
from __future__ import annotations

from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rest2mqtt.core.exceptions import ConfigError


class ListenSettings(BaseSettings):
    """Listener and logging settings; enough for the health self-check."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        return value.upper() if isinstance(value, str) else value


class Settings(ListenSettings):
    """Environment-driven settings with sensible defaults."""

    # MQTT broker
    mqtt_host: str = Field(
        default="tcp://localhost:1883",
        description="Broker URL (tcp://, ssl://, tls://, mqtts://, ws://, wss://)",
    )
    mqtt_user: str = ""
    mqtt_password: str = ""
    mqtt_tls_insecure: bool = Field(
        default=True,
        description="Skip TLS certificate verification",
    )
    mqtt_keepalive: int = 60
    mqtt_reconnect_interval: float = Field(default=1.0, gt=0)
    mqtt_max_reconnect_interval: float = Field(default=10.0, gt=0)
    mqtt_publish_timeout: float = Field(default=10.0, gt=0)
    hostname: str = Field(
        default="localhost",
        description="Suffix of the MQTT client id (rest2mqtt_<hostname>)",
    )

    # Shared secret
    token: str = Field(min_length=1, description="Shared secret for publish requests")

    # Rate limiting
    redis_url: str | None = Field(
        default=None,
        description="Shared limiter store; process-local memory store when unset",
    )
    rate_limit: str = Field(default="4-H", description="Quota per window, e.g. 4-H or 4/hour")
    skip_rate_limit: bool = False

    @property
    def mqtt_client_id(self) -> str:
        return f"rest2mqtt_{self.hostname}"


def load_settings(cls: type[ListenSettings] = Settings, **overrides) -> ListenSettings:
    """Build a settings object, turning validation failures into ``ConfigError``."""
    try:
        return cls(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
