"""Configuration models for Relation Sync."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetryPolicyConfig(BaseModel):
    """Fixed-delay retry policy of one task kind."""

    max_retries: int = Field(default=3, ge=0)
    """Retries after the first attempt."""

    delay_seconds: float = Field(default=0.3, ge=0.0)
    """Delay before each retry."""


def _default_fetch_retry() -> RetryPolicyConfig:
    return RetryPolicyConfig(max_retries=3, delay_seconds=0.3)


def _default_publish_retry() -> RetryPolicyConfig:
    return RetryPolicyConfig(max_retries=3, delay_seconds=2.0)


class WorkerConfig(BaseModel):
    """Background worker pool configuration."""

    max_workers: int = Field(default=4, ge=1)
    thread_name_prefix: str = "relation-sync"


class RemoteEndpointConfig(BaseModel):
    """HTTP endpoint of a remote collaborator."""

    base_url: str = "http://localhost:8080"
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    """Upper bound for every call; a timeout counts as a remote failure."""

    auth_token: SecretStr | None = None

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class RegistryConfig(RemoteEndpointConfig):
    """Digital twin registry (DTR) publication configuration."""

    base_url: str = "http://localhost:4243/api/v3"
    edc_endpoint: str = "http://localhost:8081/api/public"
    """Data plane address advertised in submodel descriptors."""


class ResolverConfig(RemoteEndpointConfig):
    """Partner identifier (part type information) resolution configuration."""

    base_url: str = "http://localhost:8081/api/part-type"


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    enabled: bool = False
    """Start the metrics and health HTTP endpoints."""

    configure_logging: bool = True
    """Install the structlog configuration on service start-up."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"
    bind_host: str = "0.0.0.0"
    metrics_port: int = 9090
    health_port: int = 8080
    """Port of the health endpoint (0 binds an ephemeral port)."""


class SyncConfig(BaseModel):
    """Root configuration for Relation Sync."""

    own_bpnl: str = "BPNL000000000000"
    """Business partner number of this company."""

    partners: dict[str, str] = Field(default_factory=dict)
    """Partner handle -> BPNL."""

    fetch_retry: RetryPolicyConfig = Field(default_factory=_default_fetch_retry)
    publish_retry: RetryPolicyConfig = Field(default_factory=_default_publish_retry)

    identifier_wait_delay_seconds: float = Field(default=0.5, ge=0.0)
    """Pause after an awaited fetch before the identifier is re-read."""

    workers: WorkerConfig = Field(default_factory=WorkerConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "SyncConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})


class SyncSettings(BaseSettings):
    """Environment-based settings that override config file values."""

    model_config = SettingsConfigDict(
        env_prefix="RELATION_SYNC_",
        env_nested_delimiter="__",
    )

    config_file: Path = Path("config/config.yaml")


def load_config(settings: SyncSettings | None = None) -> SyncConfig:
    """Load configuration from file, with environment overrides."""
    if settings is None:
        settings = SyncSettings()

    if settings.config_file.exists():
        return SyncConfig.from_yaml(settings.config_file)
    return SyncConfig()
