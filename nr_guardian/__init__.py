"""
Async client layer for the New Relic NerdGraph API.

This package wraps NerdGraph with the guardrails a long-running tool needs:

- Sliding-window rate limiting shared by every request
- Retry with exponential backoff, split by error category
- Query batching that merges concurrent queries into one request
- WebSocket subscriptions with bounded reconnects
- Dashboard and event-schema services on top of the client
"""

from .client import NerdGraphClient, NrqlResult
from .config import GuardianConfig, ConfigLoader, Region, load_config
from .context import GuardianContext
from .exceptions import (
    AuthError,
    ConfigError,
    DashboardCreateError,
    DashboardDeleteError,
    DashboardUpdateError,
    DomainMutationError,
    GraphQLError,
    NRGuardianError,
    ProtocolError,
    QueryError,
    RateLimitError,
    SchemaError,
    SubscriptionError,
    TransportError,
    ValidationError,
)
from .graphql import (
    BatchQueue,
    GraphQLRequest,
    GraphQLResponse,
    GraphQLTransport,
    Subscription,
    SubscriptionManager,
    SubscriptionState,
)
from .logging import setup_logging
from .services import DashboardService, SchemaService
from .utils import RateLimiter, ResponseCache, RetryController

__version__ = "0.1.0"

__all__ = [
    # Client
    "NerdGraphClient",
    "NrqlResult",
    "GuardianContext",
    # Configuration
    "GuardianConfig",
    "ConfigLoader",
    "Region",
    "load_config",
    "setup_logging",
    # GraphQL layer
    "BatchQueue",
    "GraphQLRequest",
    "GraphQLResponse",
    "GraphQLTransport",
    "Subscription",
    "SubscriptionManager",
    "SubscriptionState",
    # Request utilities
    "RateLimiter",
    "ResponseCache",
    "RetryController",
    # Services
    "DashboardService",
    "SchemaService",
    # Exceptions
    "NRGuardianError",
    "ValidationError",
    "ConfigError",
    "TransportError",
    "ProtocolError",
    "GraphQLError",
    "RateLimitError",
    "AuthError",
    "QueryError",
    "DomainMutationError",
    "DashboardCreateError",
    "DashboardUpdateError",
    "DashboardDeleteError",
    "SubscriptionError",
    "SchemaError",
]
