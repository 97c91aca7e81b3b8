"""
Configuration management for nr_guardian.
"""

from .loader import ConfigLoader, load_config
from .models import (
    GRAPHQL_ENDPOINTS,
    WEBSOCKET_ENDPOINTS,
    ApiConfig,
    BatchConfig,
    CacheConfig,
    GuardianConfig,
    LoggingConfig,
    LogLevel,
    RateLimitConfig,
    Region,
    RetryConfig,
    SubscriptionConfig,
)

__all__ = [
    "ConfigLoader",
    "load_config",
    "GRAPHQL_ENDPOINTS",
    "WEBSOCKET_ENDPOINTS",
    "ApiConfig",
    "BatchConfig",
    "CacheConfig",
    "GuardianConfig",
    "LoggingConfig",
    "LogLevel",
    "RateLimitConfig",
    "Region",
    "RetryConfig",
    "SubscriptionConfig",
]
