"""
NerdGraph client.

Every request goes through the same pipeline. For each attempt the rate
limiter admits the request and the transport sends it; the retry controller
drives the attempts. Domain operations (NRQL, dashboards, entities, alerts)
are thin wrappers that shape variables and unwrap ``data``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from . import queries
from .config.models import GuardianConfig
from .exceptions import (
    AuthError,
    DashboardCreateError,
    DashboardDeleteError,
    DashboardUpdateError,
    GraphQLError,
    QueryError,
    RateLimitError,
    ValidationError,
)
from .graphql.batch import BatchQueue
from .graphql.documents import optimize_document, suggest_nrql
from .graphql.models import GraphQLRequest, GraphQLResponse, GraphQLSchemaInfo
from .graphql.schema import SchemaIntrospector
from .graphql.subscriptions import Subscription, SubscriptionManager
from .graphql.transport import GraphQLTransport
from .utils.rate_limit import RateLimiter
from .utils.retry import RetryController

logger = logging.getLogger(__name__)


@dataclass
class NrqlResult:
    """Rows and metadata returned by an NRQL query."""

    results: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"results": self.results, "metadata": self.metadata}


def validate_account_id(account_id: Any) -> int:
    """
    Coerce an account id to a positive int.

    Raises:
        ValidationError: For anything that is not a positive integer
    """
    if isinstance(account_id, bool):
        raise ValidationError(f"Invalid account id: {account_id!r}", field="account_id")
    if isinstance(account_id, str) and account_id.strip().isdigit():
        account_id = int(account_id.strip())
    if not isinstance(account_id, int) or account_id <= 0:
        raise ValidationError(f"Invalid account id: {account_id!r}", field="account_id")
    return account_id


def validate_guid(guid: Any) -> str:
    if not isinstance(guid, str) or not guid.strip():
        raise ValidationError("Entity GUID must be a non-empty string", field="guid")
    return guid.strip()


_SINCE_CLAUSE = re.compile(r"^[A-Za-z0-9 :.'+-]{1,64}$")


def quote_event_type(event_type: Any) -> str:
    """
    Backtick-quote an event type name for use in NRQL.

    Raises:
        ValidationError: If the name is empty or could escape the quotes
    """
    if not isinstance(event_type, str) or not event_type.strip():
        raise ValidationError("Event type must be a non-empty string", field="event_type")
    if "`" in event_type or any(ord(c) < 32 for c in event_type):
        raise ValidationError(f"Invalid event type: {event_type!r}", field="event_type")
    return f"`{event_type.strip()}`"


def validate_since(since: Any) -> str:
    """Accept relative (``1 day ago``) or quoted absolute time windows only."""
    if not isinstance(since, str) or not _SINCE_CLAUSE.match(since.strip()):
        raise ValidationError(f"Invalid SINCE clause: {since!r}", field="since")
    return since.strip()


def validate_dashboard_input(dashboard: Any) -> Dict[str, Any]:
    if not isinstance(dashboard, Mapping):
        raise ValidationError("Dashboard must be an object", field="dashboard")
    name = dashboard.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Dashboard name is required", field="dashboard.name")
    return dict(dashboard)


class NerdGraphClient:
    """
    Async client for New Relic's NerdGraph API.

    Examples:
        ```python
        config = load_config()
        async with NerdGraphClient(config) as client:
            result = await client.run_nrql(config.account_id, "SELECT count(*) FROM Transaction")
            print(result.results)
        ```
    """

    def __init__(
        self,
        config: GuardianConfig,
        transport: Optional[GraphQLTransport] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry: Optional[RetryController] = None,
        optimize: bool = True,
    ):
        """
        Initialize the client.

        Args:
            config: Credentials, region and tuning
            transport: Preconfigured transport, built from ``config`` if omitted
            rate_limiter: Shared limiter, built from ``config.rate_limit`` if omitted
            retry: Retry controller, built from ``config.retry`` if omitted
            optimize: Strip ignored characters from documents before sending

        Raises:
            ConfigError: If no transport is given and the API key is missing
        """
        self.config = config
        self.transport = transport or GraphQLTransport(
            config.graphql_endpoint, config.require_api_key(), timeout=config.timeout
        )
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit)
        self.retry = retry or RetryController(config.retry)
        self.optimize = optimize

        self._batch: Optional[BatchQueue] = None
        self._subscriptions: Optional[SubscriptionManager] = None
        self._schema = SchemaIntrospector(self.query)

    async def __aenter__(self) -> NerdGraphClient:
        await self.transport.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._batch is not None:
            await self._batch.close()
            self._batch = None
        if self._subscriptions is not None:
            await self._subscriptions.close()
            self._subscriptions = None
        await self.transport.close()

    # Core pipeline

    async def execute(self, request: GraphQLRequest) -> GraphQLResponse:
        """
        Send a request through rate limiting and retries.

        Args:
            request: Document and variables

        Returns:
            Decoded response

        Raises:
            NRGuardianError: The last error once retries are exhausted, or the
                first non-retryable one
        """

        async def attempt() -> GraphQLResponse:
            await self.rate_limiter.check_limit()
            return await self.transport.send(request)

        return await self.retry.execute(attempt)

    async def query(
        self, document: str, variables: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Run a document and return its ``data``.

        Args:
            document: GraphQL query or mutation
            variables: Variables for the document

        Returns:
            The response ``data`` object (empty dict when null)
        """
        if self.optimize:
            document = optimize_document(document)
        response = await self.execute(GraphQLRequest(document, variables or {}))
        return response.data or {}

    # Batching

    @property
    def batch(self) -> BatchQueue:
        if self._batch is None:
            self._batch = BatchQueue(self.execute, self.config.batch)
        return self._batch

    def queue_query(
        self, document: str, variables: Optional[Mapping[str, Any]] = None
    ) -> "asyncio.Future[Dict[str, Any]]":
        """Queue a query for batched execution; see :class:`BatchQueue`."""
        return self.batch.queue_query(document, variables)

    async def batch_query(
        self, requests: Sequence[Tuple[str, Optional[Mapping[str, Any]]]]
    ) -> List[Dict[str, Any]]:
        """
        Queue several queries at once and wait for all of them.

        Returns:
            One ``data`` dict per request, in order
        """
        futures = [self.queue_query(document, variables) for document, variables in requests]
        return list(await asyncio.gather(*futures))

    # Subscriptions

    @property
    def subscriptions(self) -> SubscriptionManager:
        if self._subscriptions is None:
            self._subscriptions = SubscriptionManager(
                self.config.websocket_endpoint,
                self.transport.api_key,
                self.config.subscription,
            )
        return self._subscriptions

    async def subscribe(
        self, document: str, variables: Optional[Mapping[str, Any]] = None, **handlers: Any
    ) -> Subscription:
        """Start a subscription; handlers are passed to :meth:`SubscriptionManager.subscribe`."""
        return await self.subscriptions.subscribe(document, variables, **handlers)

    async def unsubscribe(self, subscription_id: str) -> None:
        if self._subscriptions is not None:
            await self._subscriptions.unsubscribe(subscription_id)

    # Schema

    async def introspect(self, force_refresh: bool = False) -> GraphQLSchemaInfo:
        return await self._schema.get_schema(force_refresh)

    async def get_capabilities(self) -> Dict[str, Any]:
        return await self._schema.capabilities()

    # NRQL

    async def run_nrql(self, account_id: Any, nrql: str) -> NrqlResult:
        """
        Run an NRQL query.

        Args:
            account_id: Account to query
            nrql: NRQL text

        Returns:
            NrqlResult with rows, metadata and advisory suggestions

        Raises:
            ValidationError: Bad account id or empty query
            QueryError: NerdGraph rejected the query
        """
        account_id = validate_account_id(account_id)
        if not isinstance(nrql, str) or not nrql.strip():
            raise ValidationError("NRQL query must be a non-empty string", field="nrql")

        suggestions = suggest_nrql(nrql)
        try:
            data = await self.query(
                queries.NRQL_QUERY, {"accountId": account_id, "nrqlQuery": nrql}
            )
        except (RateLimitError, AuthError):
            raise
        except GraphQLError as e:
            raise QueryError(
                f"NRQL query failed: {e.message}",
                query=nrql,
                errors=e.errors,
                suggestions=suggestions,
            ) from e

        nrql_data = ((data.get("actor") or {}).get("account") or {}).get("nrql") or {}
        return NrqlResult(
            results=list(nrql_data.get("results") or []),
            metadata=dict(nrql_data.get("metadata") or {}),
            suggestions=suggestions,
        )

    async def get_event_types(self, account_id: Any, since: str = "1 day ago") -> List[str]:
        since = validate_since(since)
        result = await self.run_nrql(account_id, f"SHOW EVENT TYPES SINCE {since}")
        return [row["eventType"] for row in result.results if "eventType" in row]

    async def get_event_attributes(
        self, account_id: Any, event_type: str, since: str = "1 day ago"
    ) -> List[str]:
        """
        List attribute names for an event type from a one-row keyset sample.

        Query failures are logged and produce an empty list. Invalid names
        raise ValidationError before anything is sent.
        """
        quoted = quote_event_type(event_type)
        since = validate_since(since)
        try:
            result = await self.run_nrql(
                account_id, f"SELECT keyset() FROM {quoted} SINCE {since} LIMIT 1"
            )
        except (QueryError, ValidationError) as e:
            logger.debug(f"Failed to get attributes for {event_type}: {e.message}")
            return []
        if not result.results:
            return []
        return list(result.results[0].keys())

    # Dashboards

    async def list_dashboards(self, account_id: Any, limit: int = 100) -> List[Dict[str, Any]]:
        account_id = validate_account_id(account_id)
        data = await self.query(queries.DASHBOARD_SEARCH_QUERY % account_id)
        search = (data.get("actor") or {}).get("entitySearch") or {}
        entities = (search.get("results") or {}).get("entities") or []
        return entities[:limit]

    async def get_dashboard(self, guid: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a dashboard by GUID.

        Returns:
            The dashboard entity, or None if no entity has that GUID
        """
        guid = validate_guid(guid)
        data = await self.query(queries.DASHBOARD_QUERY, {"guid": guid})
        return (data.get("actor") or {}).get("entity")

    async def create_dashboard(self, account_id: Any, dashboard: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create a dashboard.

        Returns:
            ``{"guid", "name"}`` of the new dashboard

        Raises:
            ValidationError: Bad account id or dashboard input
            DashboardCreateError: The mutation reported errors
        """
        account_id = validate_account_id(account_id)
        dashboard_input = validate_dashboard_input(dashboard)
        data = await self.query(
            queries.DASHBOARD_CREATE_MUTATION,
            {"accountId": account_id, "dashboard": dashboard_input},
        )
        payload = data.get("dashboardCreate") or {}
        errors = payload.get("errors") or []
        if errors:
            raise DashboardCreateError.from_payload("create", errors, account_id=account_id)
        logger.info(f"Created dashboard {dashboard_input['name']!r}")
        return payload.get("entityResult") or {}

    async def update_dashboard(self, guid: str, dashboard: Mapping[str, Any]) -> Dict[str, Any]:
        guid = validate_guid(guid)
        dashboard_input = validate_dashboard_input(dashboard)
        data = await self.query(
            queries.DASHBOARD_UPDATE_MUTATION, {"guid": guid, "dashboard": dashboard_input}
        )
        payload = data.get("dashboardUpdate") or {}
        errors = payload.get("errors") or []
        if errors:
            raise DashboardUpdateError.from_payload("update", errors, guid=guid)
        return payload.get("entityResult") or {}

    async def delete_dashboard(self, guid: str) -> bool:
        """
        Delete a dashboard.

        Returns:
            True when NerdGraph reports ``SUCCESS``
        """
        guid = validate_guid(guid)
        data = await self.query(queries.DASHBOARD_DELETE_MUTATION, {"guid": guid})
        payload = data.get("dashboardDelete") or {}
        errors = payload.get("errors") or []
        if errors:
            raise DashboardDeleteError.from_payload("delete", errors, guid=guid)
        return payload.get("status") == "SUCCESS"

    # Entities and alerts

    async def get_entity(self, guid: str) -> Optional[Dict[str, Any]]:
        guid = validate_guid(guid)
        data = await self.query(queries.ENTITY_QUERY, {"guid": guid})
        return (data.get("actor") or {}).get("entity")

    async def search_entities(self, query: str, limit: int = 100) -> List[Dict[str, Any]]:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Entity search query must be a non-empty string", field="query")
        data = await self.query(queries.ENTITY_SEARCH_QUERY, {"query": query})
        search = (data.get("actor") or {}).get("entitySearch") or {}
        entities = (search.get("results") or {}).get("entities") or []
        return entities[:limit]

    async def get_alert_policies(self, account_id: Any) -> List[Dict[str, Any]]:
        account_id = validate_account_id(account_id)
        data = await self.query(queries.ALERT_POLICIES_QUERY, {"accountId": account_id})
        account = (data.get("actor") or {}).get("account") or {}
        search = (account.get("alerts") or {}).get("policiesSearch") or {}
        return list(search.get("policies") or [])

    async def get_alert_conditions(self, account_id: Any, policy_id: Any) -> List[Dict[str, Any]]:
        account_id = validate_account_id(account_id)
        if policy_id is None or str(policy_id).strip() == "":
            raise ValidationError("Policy id is required", field="policy_id")
        data = await self.query(
            queries.ALERT_CONDITIONS_QUERY,
            {"accountId": account_id, "policyId": str(policy_id)},
        )
        account = (data.get("actor") or {}).get("account") or {}
        search = (account.get("alerts") or {}).get("nrqlConditionsSearch") or {}
        return list(search.get("nrqlConditions") or [])

    async def test_connection(self) -> Dict[str, Any]:
        """
        Verify credentials.

        Returns:
            The authenticated user's ``id``, ``name`` and ``email``
        """
        data = await self.query(queries.CURRENT_USER_QUERY)
        return (data.get("actor") or {}).get("user") or {}

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "requests_sent": self.transport.request_count,
            "rate_limiter": self.rate_limiter.get_stats(),
            "retry": self.retry.get_stats(),
        }
        if self._batch is not None:
            stats["batch"] = self._batch.get_metrics()
        if self._subscriptions is not None:
            stats["active_subscriptions"] = self._subscriptions.active_count
        return stats
