"""
NerdGraph schema introspection with a TTL cache.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .models import GraphQLSchemaInfo

logger = logging.getLogger(__name__)

QueryFunction = Callable[[str, Optional[Mapping[str, Any]]], Awaitable[Dict[str, Any]]]

_ROOT_FIELDS = """
    name
    fields {
        name
        description
        isDeprecated
        type { name kind }
    }
"""

INTROSPECTION_QUERY = f"""
query IntrospectionQuery {{
    __schema {{
        types {{
            name
            kind
            description
            fields {{
                name
                type {{ name kind }}
            }}
        }}
        queryType {{ {_ROOT_FIELDS} }}
        mutationType {{ {_ROOT_FIELDS} }}
        subscriptionType {{ {_ROOT_FIELDS} }}
    }}
}}
"""

SCHEMA_CACHE_TTL = 86400.0


class SchemaIntrospector:
    """Fetches and caches the schema summary."""

    def __init__(
        self,
        query: QueryFunction,
        ttl: float = SCHEMA_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            query: Coroutine function ``(document, variables) -> data``,
                normally ``NerdGraphClient.query``
            ttl: Seconds a fetched schema stays valid
            clock: Monotonic time source
        """
        self._query = query
        self.ttl = ttl
        self._clock = clock
        self._schema: Optional[GraphQLSchemaInfo] = None
        self._fetched_at: Optional[float] = None

    def _is_fresh(self) -> bool:
        return (
            self._schema is not None
            and self._fetched_at is not None
            and self._clock() - self._fetched_at < self.ttl
        )

    async def get_schema(self, force_refresh: bool = False) -> GraphQLSchemaInfo:
        """
        Return the schema summary, introspecting when the cache is stale.

        Args:
            force_refresh: Ignore the cached schema
        """
        if not force_refresh and self._schema is not None and self._is_fresh():
            return self._schema

        logger.debug("Introspecting NerdGraph schema")
        data = await self._query(INTROSPECTION_QUERY, None)
        raw = (data or {}).get("__schema") or {}

        def root_fields(key: str) -> List[Dict[str, Any]]:
            return list((raw.get(key) or {}).get("fields") or [])

        self._schema = GraphQLSchemaInfo(
            types=list(raw.get("types") or []),
            queries=root_fields("queryType"),
            mutations=root_fields("mutationType"),
            subscriptions=root_fields("subscriptionType"),
        )
        self._fetched_at = self._clock()
        return self._schema

    def invalidate(self) -> None:
        self._schema = None
        self._fetched_at = None

    async def capabilities(self) -> Dict[str, Any]:
        """
        Summarize what the API offers.

        Returns:
            Counts of types and root fields plus the names of fields whose
            description marks them as beta or new
        """
        schema = await self.get_schema()
        flagged: List[str] = []
        for root in (schema.queries, schema.mutations, schema.subscriptions):
            for entry in root:
                description = (entry.get("description") or "").lower()
                if "beta" in description or "new" in description.split():
                    flagged.append(entry.get("name", ""))

        return {
            "types": len(schema.types),
            "queries": len(schema.queries),
            "mutations": len(schema.mutations),
            "subscriptions": len(schema.subscriptions),
            "subscriptions_supported": bool(schema.subscriptions),
            "beta_features": sorted(flagged),
        }
