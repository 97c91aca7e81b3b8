"""
Configuration models for nr_guardian.

This module defines all configuration data models with validation and defaults.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ConfigError


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Region(str, Enum):
    """New Relic data center regions."""

    US = "US"
    EU = "EU"


GRAPHQL_ENDPOINTS: Dict[Region, str] = {
    Region.US: "https://api.newrelic.com/graphql",
    Region.EU: "https://api.eu.newrelic.com/graphql",
}

WEBSOCKET_ENDPOINTS: Dict[Region, str] = {
    Region.US: "wss://api.newrelic.com/graphql-ws",
    Region.EU: "wss://api.eu.newrelic.com/graphql-ws",
}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(default=LogLevel.INFO, description="Default logging level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    file_path: Optional[Path] = Field(default=None, description="Log file path")
    enable_console: bool = Field(default=True, description="Enable console logging")
    enable_structured: bool = Field(
        default=False, description="Enable structured JSON logging"
    )
    component_levels: Dict[str, LogLevel] = Field(
        default_factory=dict, description="Per-component log levels"
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v


class RateLimitConfig(BaseModel):
    """Sliding-window rate limit configuration."""

    max_requests: int = Field(default=25, ge=1, description="Requests admitted per window")
    interval: float = Field(default=60.0, gt=0, description="Window length in seconds")


class RetryConfig(BaseModel):
    """Retry and backoff configuration."""

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    max_delay: float = Field(default=10.0, ge=0, description="Backoff delay cap in seconds")


class BatchConfig(BaseModel):
    """Query batching configuration."""

    batch_size: int = Field(default=50, ge=1, description="Flush when this many are queued")
    batch_timeout: float = Field(
        default=0.1, gt=0, description="Flush this many seconds after the first enqueue"
    )


class SubscriptionConfig(BaseModel):
    """Subscription socket configuration."""

    max_reconnect_attempts: int = Field(default=5, ge=1)
    reconnect_delay: float = Field(
        default=1.0, ge=0, description="Reconnect delay multiplied by the attempt number"
    )
    connect_timeout: float = Field(default=10.0, gt=0)


class CacheConfig(BaseModel):
    """Response cache configuration."""

    enabled: bool = Field(default=True, description="Enable response caching")
    ttl: float = Field(default=300.0, gt=0, description="Entry time-to-live in seconds")
    max_size: int = Field(default=1000, ge=1, description="Maximum cache entries")


class ApiConfig(BaseModel):
    """REST server configuration."""

    host: str = Field(default="127.0.0.1", description="Interface the server binds to")
    port: int = Field(default=3001, ge=1, le=65535)
    environment: str = Field(
        default="production", description="Stack traces are returned outside production"
    )

    @property
    def production(self) -> bool:
        return self.environment.lower() == "production"


class GuardianConfig(BaseModel):
    """Top-level configuration."""

    model_config = ConfigDict(validate_assignment=True)

    api_key: Optional[str] = Field(default=None, description="New Relic User API key")
    account_id: Optional[int] = Field(default=None, description="Default account id")
    region: Region = Field(default=Region.US)
    timeout: float = Field(default=120.0, gt=0, description="HTTP timeout in seconds")
    output_json: bool = Field(default=False, description="Emit JSON from the CLI")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    subscription: SubscriptionConfig = Field(default_factory=SubscriptionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @field_validator("region", mode="before")
    @classmethod
    def normalize_region(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("account_id", mode="before")
    @classmethod
    def parse_account_id(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            if not v.isdigit():
                raise ValueError(f"account_id must be numeric, got {v!r}")
            return int(v)
        return v

    @property
    def graphql_endpoint(self) -> str:
        return GRAPHQL_ENDPOINTS[self.region]

    @property
    def websocket_endpoint(self) -> str:
        return WEBSOCKET_ENDPOINTS[self.region]

    def require_api_key(self) -> str:
        """Return the API key or raise ConfigError."""
        if not self.api_key:
            raise ConfigError(
                "New Relic API key is required. Set NEW_RELIC_API_KEY or pass --api-key."
            )
        return self.api_key

    def require_account_id(self, account_id: Optional[int] = None) -> int:
        """
        Resolve the account id for an operation.

        Args:
            account_id: Explicit account id, preferred over the configured one

        Returns:
            The resolved account id

        Raises:
            ConfigError: If neither is set
        """
        resolved = account_id if account_id is not None else self.account_id
        if resolved is None:
            raise ConfigError(
                "Account ID is required. Set NEW_RELIC_ACCOUNT_ID or pass --account-id."
            )
        return resolved

    def masked(self) -> Dict[str, Any]:
        """Dump the configuration with the API key masked."""
        data = self.model_dump(mode="json")
        if self.api_key:
            data["api_key"] = f"{self.api_key[:4]}...{self.api_key[-4:]}"
        return data
