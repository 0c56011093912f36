"""Application Settings and Configuration

Pydantic-based settings management using environment variables.
Settings are loaded from environment variables with support for .env files,
type validation, and sensible defaults. All settings are frozen and immutable
after initialization.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationInfo,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from playback_orchestrator.domain.shared.messages import ErrorMessages


class NodeSettings(BaseModel):
    """Connection details for one remote audio node."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1, max_length=64)
    url: str = Field(
        pattern=r"^https?://", validation_alias=AliasChoices("url", "base_url", "host")
    )
    password: SecretStr = Field(
        default=SecretStr(""), validation_alias=AliasChoices("password", "authorization")
    )

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ClusterSettings(BaseModel):
    """Remote cluster membership and call deadlines."""

    model_config = ConfigDict(frozen=True)

    nodes: tuple[NodeSettings, ...] = Field(default_factory=tuple)
    request_timeout_s: float = Field(default=10.0, gt=0)
    stats_timeout_s: float = Field(default=5.0, gt=0)
    link_operation_timeout_s: float = Field(default=5.0, gt=0)

    @field_validator("nodes")
    @classmethod
    def validate_unique_names(cls, v: tuple[NodeSettings, ...]) -> tuple[NodeSettings, ...]:
        names = [node.name for node in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(ErrorMessages.DUPLICATE_NODE_NAMES.format(names=", ".join(duplicates)))
        return v


class HealthSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    poll_interval_s: float = Field(default=30.0, gt=0)
    unhealthy_cpu_percent: float = Field(default=80.0, ge=0, le=100)
    unhealthy_memory_percent: float = Field(default=90.0, ge=0, le=100)
    player_limit: int = Field(default=500, ge=1)


class CircuitBreakerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    open_timeout_s: float = Field(
        default=60.0, gt=0, validation_alias=AliasChoices("open_timeout_s", "timeout_s")
    )


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_size: int = Field(default=100, ge=1)
    ttl_s: float = Field(default=300.0, gt=0)


class SearchSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_source: str = Field(default="ytsearch", min_length=1)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_initial_delay_s: float = Field(default=0.5, ge=0)
    retry_max_delay_s: float = Field(default=4.0, ge=0)
    warm_concurrency: int = Field(default=5, ge=1)


class SessionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_sessions: int = Field(default=500, ge=1)
    max_queue_length: int = Field(default=1000, ge=1)
    history_size: int = Field(default=50, ge=1)
    idle_timeout_s: float = Field(default=60.0, ge=0)
    default_volume: int = Field(default=50, ge=0, le=100)
    deduplicate_tracks: bool = False
    connect_retries: int = Field(default=3, ge=1)


class ReconnectSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    initial_delay_s: float = Field(default=1.0, ge=0)
    max_delay_s: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    jitter: float = Field(default=0.1, ge=0, le=1)


class MemorySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    check_interval_s: float = Field(default=60.0, gt=0)
    soft_mb: float = Field(default=500.0, gt=0)
    normal_mb: float = Field(default=700.0, gt=0)
    critical_mb: float = Field(default=800.0, gt=0)
    soft_evict_percent: float = Field(default=10.0, ge=0, le=100)
    normal_evict_percent: float = Field(default=30.0, ge=0, le=100)
    critical_evict_percent: float = Field(default=50.0, ge=0, le=100)

    @field_validator("critical_mb")
    @classmethod
    def validate_ordering(cls, v: float, info: ValidationInfo) -> float:
        soft = info.data.get("soft_mb")
        normal = info.data.get("normal_mb")
        if soft is not None and normal is not None and not soft <= normal <= v:
            raise ValueError(ErrorMessages.MEMORY_THRESHOLDS_ORDER)
        return v


class Settings(BaseSettings):
    """Application settings container.

    Automatically loads configuration from environment variables.

    Environment variable naming:
    - ENVIRONMENT, DEBUG, LOG_LEVEL (top-level)
    - CLUSTER__NODES as JSON, e.g. '[{"name": "main", "url": "http://localhost:2333"}]'
    - CLUSTER__REQUEST_TIMEOUT_S, HEALTH__POLL_INTERVAL_S, SESSIONS__MAX_SESSIONS, ...
      (nested with a double-underscore delimiter)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                ErrorMessages.INVALID_LOG_LEVEL.format(level=v, valid_levels=sorted(valid_levels))
            )
        return v_upper

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are automatically loaded from:
    1. .env file (if present)
    2. Environment variables
    3. Default values
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
