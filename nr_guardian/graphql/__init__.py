"""
GraphQL layer for NerdGraph: transport, batching, subscriptions and
schema introspection.
"""

from .batch import BatchQueue
from .documents import CombinedQuery, combine_queries, optimize_document, suggest_nrql
from .models import (
    GraphQLErrorDetail,
    GraphQLRequest,
    GraphQLResponse,
    GraphQLSchemaInfo,
)
from .schema import SchemaIntrospector
from .subscriptions import (
    Subscription,
    SubscriptionEvent,
    SubscriptionEventKind,
    SubscriptionManager,
    SubscriptionState,
)
from .transport import GraphQLTransport

__all__ = [
    "BatchQueue",
    "CombinedQuery",
    "combine_queries",
    "optimize_document",
    "suggest_nrql",
    "GraphQLErrorDetail",
    "GraphQLRequest",
    "GraphQLResponse",
    "GraphQLSchemaInfo",
    "SchemaIntrospector",
    "Subscription",
    "SubscriptionEvent",
    "SubscriptionEventKind",
    "SubscriptionManager",
    "SubscriptionState",
    "GraphQLTransport",
]
