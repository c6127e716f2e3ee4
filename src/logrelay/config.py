"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
A config.yaml, when present, supplies defaults that environment variables override.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .core.exceptions import ConfigurationError
from .core.filtering import parse_endpoint_allow_list

MAX_PAGE_SIZE = 100


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/logrelay
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


def parse_csv(value: Any) -> List[str]:
    """Split a comma-separated setting, dropping blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(item).strip() for item in items if str(item).strip()]


class SourceSettings(BaseSettings):
    """Log source (management API) configuration."""

    domain: str = Field(default="", description="Management API domain, e.g. tenant.eu.auth0.com")
    client_id: str = Field(default="", description="Client id used to obtain the management API token")
    client_secret: str = Field(default="", description="Client secret used to obtain the management API token")
    batch_size: int = Field(default=MAX_PAGE_SIZE, description="Records requested per page (capped at 100)")

    @property
    def base_url(self) -> str:
        """Base URL of the management API. A domain with an explicit scheme is used as-is."""
        if self.domain.startswith(("http://", "https://")):
            return self.domain.rstrip("/")
        return f"https://{self.domain}"

    @property
    def token_url(self) -> str:
        """Client-credentials token endpoint."""
        return f"{self.base_url}/oauth/token"

    @property
    def audience(self) -> str:
        """Audience of the management API token."""
        return f"{self.base_url}/api/v2/"

    class Config:
        env_prefix = "LOGRELAY_SOURCE_"


class WebhookSettings(BaseSettings):
    """Webhook delivery configuration."""

    url: str = Field(default="", description="Webhook receiving one POST per event")
    auth_client_id: str = Field(default="", description="Client id for the webhook bearer token")
    auth_client_secret: str = Field(default="", description="Client secret for the webhook bearer token")
    auth_audience: str = Field(default="", description="Resource server the webhook token is issued for")
    concurrent_calls: int = Field(default=5, ge=1, description="Maximum webhook requests in flight")

    @property
    def auth_enabled(self) -> bool:
        """Webhook auth applies only when all three auth settings are present."""
        return bool(self.auth_client_id and self.auth_client_secret and self.auth_audience)

    class Config:
        env_prefix = "LOGRELAY_WEBHOOK_"


class FilterSettings(BaseSettings):
    """Event filtering configuration."""

    api_endpoints: str = Field(default="", description="Comma-separated endpoint allow-list, e.g. users,clients")
    log_types: str = Field(default="sapi,fapi", description="Comma-separated log types to forward")

    class Config:
        env_prefix = "LOGRELAY_FILTER_"


class CheckpointSettings(BaseSettings):
    """Checkpoint persistence configuration."""

    root_path: Path = Field(default=Path("./checkpoints"), description="Directory holding checkpoint records")
    key: str = Field(default="default", description="Identity the checkpoint record is stored under")

    class Config:
        env_prefix = "LOGRELAY_CHECKPOINT_"


class TokenCacheSettings(BaseSettings):
    """Bearer token cache configuration."""

    max_entries: int = Field(default=100, ge=1, description="Maximum cached tokens")
    ttl_seconds: int = Field(default=3600, ge=1, description="Token time-to-live")

    class Config:
        env_prefix = "LOGRELAY_TOKEN_CACHE_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Runtime
    http_timeout_seconds: int = Field(default=30, ge=1, description="Per-call HTTP timeout")
    schedule_interval_seconds: int = Field(default=0, ge=0, description="In-process run interval, 0 disables")

    # Component settings
    source: SourceSettings = Field(default_factory=SourceSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    filter: FilterSettings = Field(default_factory=FilterSettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    token_cache: TokenCacheSettings = Field(default_factory=TokenCacheSettings)

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        return v.upper()

    def missing_settings(self) -> List[str]:
        """Names of required settings that are not set."""
        required = {
            "LOGRELAY_SOURCE_DOMAIN": self.source.domain,
            "LOGRELAY_SOURCE_CLIENT_ID": self.source.client_id,
            "LOGRELAY_SOURCE_CLIENT_SECRET": self.source.client_secret,
            "LOGRELAY_WEBHOOK_URL": self.webhook.url,
        }
        return [name for name, value in required.items() if not value]

    class Config:
        env_prefix = "LOGRELAY_"
        case_sensitive = False


@dataclass(frozen=True)
class PipelineConfig:
    """
    Validated configuration for a single run.

    Built once when a run starts and handed to every component that needs it.
    """

    source_base_url: str
    source_token_url: str
    source_audience: str
    source_client_id: str
    source_client_secret: str
    page_size: int
    webhook_url: str
    concurrency: int
    type_allow_list: frozenset
    endpoint_allow_list: List[str] = field(default_factory=list)
    webhook_auth_client_id: Optional[str] = None
    webhook_auth_client_secret: Optional[str] = None
    webhook_auth_audience: Optional[str] = None

    @property
    def webhook_auth_enabled(self) -> bool:
        return bool(self.webhook_auth_client_id and self.webhook_auth_client_secret and self.webhook_auth_audience)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        """
        Validate settings and build the run configuration.

        Raises:
            ConfigurationError: listing every missing required setting
        """
        missing = settings.missing_settings()
        if missing:
            raise ConfigurationError(missing)

        batch_size = settings.source.batch_size if settings.source.batch_size > 0 else MAX_PAGE_SIZE
        webhook = settings.webhook

        return cls(
            source_base_url=settings.source.base_url,
            source_token_url=settings.source.token_url,
            source_audience=settings.source.audience,
            source_client_id=settings.source.client_id,
            source_client_secret=settings.source.client_secret,
            page_size=min(batch_size, MAX_PAGE_SIZE),
            webhook_url=webhook.url,
            concurrency=webhook.concurrent_calls,
            type_allow_list=frozenset(parse_csv(settings.filter.log_types)),
            endpoint_allow_list=parse_endpoint_allow_list(settings.filter.api_endpoints),
            webhook_auth_client_id=webhook.auth_client_id if webhook.auth_enabled else None,
            webhook_auth_client_secret=webhook.auth_client_secret if webhook.auth_enabled else None,
            webhook_auth_audience=webhook.auth_audience if webhook.auth_enabled else None,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    settings = Settings()
    return settings


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "LOGRELAY_HOST",
        ("server", "port"): "LOGRELAY_PORT",
        ("server", "debug"): "LOGRELAY_DEBUG",
        ("server", "log_level"): "LOGRELAY_LOG_LEVEL",
        ("server", "http_timeout_seconds"): "LOGRELAY_HTTP_TIMEOUT_SECONDS",
        ("server", "schedule_interval_seconds"): "LOGRELAY_SCHEDULE_INTERVAL_SECONDS",
        ("source", "domain"): "LOGRELAY_SOURCE_DOMAIN",
        ("source", "client_id"): "LOGRELAY_SOURCE_CLIENT_ID",
        ("source", "client_secret"): "LOGRELAY_SOURCE_CLIENT_SECRET",
        ("source", "batch_size"): "LOGRELAY_SOURCE_BATCH_SIZE",
        ("webhook", "url"): "LOGRELAY_WEBHOOK_URL",
        ("webhook", "auth_client_id"): "LOGRELAY_WEBHOOK_AUTH_CLIENT_ID",
        ("webhook", "auth_client_secret"): "LOGRELAY_WEBHOOK_AUTH_CLIENT_SECRET",
        ("webhook", "auth_audience"): "LOGRELAY_WEBHOOK_AUTH_AUDIENCE",
        ("webhook", "concurrent_calls"): "LOGRELAY_WEBHOOK_CONCURRENT_CALLS",
        ("checkpoint", "root_path"): "LOGRELAY_CHECKPOINT_ROOT_PATH",
        ("checkpoint", "key"): "LOGRELAY_CHECKPOINT_KEY",
        ("token_cache", "max_entries"): "LOGRELAY_TOKEN_CACHE_MAX_ENTRIES",
        ("token_cache", "ttl_seconds"): "LOGRELAY_TOKEN_CACHE_TTL_SECONDS",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # Lists in YAML become comma-separated strings
    list_mappings = {
        ("filter", "api_endpoints"): "LOGRELAY_FILTER_API_ENDPOINTS",
        ("filter", "log_types"): "LOGRELAY_FILTER_LOG_TYPES",
    }
    for (section, key), env_var in list_mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = ",".join(parse_csv(value))


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
