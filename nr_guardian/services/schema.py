"""
Event-type schema discovery over NRQL.
"""

from __future__ import annotations

import asyncio
import difflib
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..client import quote_event_type, validate_since
from ..context import GuardianContext
from ..exceptions import SchemaError, ValidationError

logger = logging.getLogger(__name__)

_CATEGORY_ORDER = {
    "application": 1,
    "infrastructure": 2,
    "observability": 3,
    "frontend": 4,
    "custom": 5,
    "other": 6,
}
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_EPOCH = re.compile(r"^\d{10,13}$")


def categorize_event_type(event_type: str) -> str:
    lower = event_type.lower()
    if "transaction" in lower or "pageview" in lower:
        return "application"
    if "infra" in lower or "system" in lower or "process" in lower:
        return "infrastructure"
    if "log" in lower or "span" in lower:
        return "observability"
    if "synthetic" in lower or "browser" in lower:
        return "frontend"
    if "custom" in lower or "metric" in lower:
        return "custom"
    return "other"


def infer_data_type(value: Any) -> str:
    """Best-effort type name for a sampled attribute value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "numeric"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"

    text = str(value)
    if _EPOCH.match(text):
        return "timestamp"
    if _NUMERIC.match(text):
        return "numeric"
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
        return "timestamp"
    except ValueError:
        pass
    try:
        if isinstance(json.loads(text), (dict, list)):
            return "json"
    except ValueError:
        pass
    return "string"


class SchemaService:
    """Discover and compare event types and their attributes."""

    def __init__(self, context: GuardianContext):
        self.context = context

    @property
    def client(self):
        return self.context.client

    async def get_event_attributes(self, account_id: int, event_type: str, since: str) -> List[str]:
        key = self.context.cache.generate_key(
            "attributes", {"account": account_id, "event_type": event_type, "since": since}
        )
        return await self.context.cache.get_or_fetch(
            key, lambda: self.client.get_event_attributes(account_id, event_type, since)
        )

    async def discover_event_types(self, since: str = "1 day ago") -> List[Dict[str, Any]]:
        """
        List event types with attribute counts, ordered by category then name.
        """
        account_id = self.context.account_id()
        key = self.context.cache.generate_key("event-types", {"account": account_id, "since": since})

        async def fetch() -> List[Dict[str, Any]]:
            event_types = await self.client.get_event_types(account_id, since)
            attribute_lists = await asyncio.gather(
                *(self.get_event_attributes(account_id, name, since) for name in event_types)
            )
            enriched = [
                {
                    "name": name,
                    "attributeCount": len(attributes),
                    "category": categorize_event_type(name),
                }
                for name, attributes in zip(event_types, attribute_lists)
            ]
            enriched.sort(key=lambda e: (_CATEGORY_ORDER.get(e["category"], 99), e["name"]))
            return enriched

        return await self.context.cache.get_or_fetch(key, fetch)

    async def describe_event_type(
        self, event_type: str, since: str = "1 day ago", include_data_types: bool = False
    ) -> Dict[str, Any]:
        """
        Describe one event type.

        Args:
            event_type: Event type name, e.g. ``Transaction``
            since: NRQL time window
            include_data_types: Sample one row to infer attribute types

        Raises:
            SchemaError: If the event type has no data in the window
            ValidationError: If the name or time window is malformed
        """
        quoted = quote_event_type(event_type)
        since = validate_since(since)
        account_id = self.context.account_id()
        attributes = await self.get_event_attributes(account_id, event_type, since)
        if not attributes:
            raise SchemaError(
                f"Event type '{event_type}' not found or has no data in the specified time range",
                event_type=event_type,
            )

        description: Dict[str, Any] = {
            "eventType": event_type,
            "attributeCount": len(attributes),
            "attributes": sorted(attributes),
            "since": since,
            "category": categorize_event_type(event_type),
        }

        if include_data_types:
            result = await self.client.run_nrql(
                account_id, f"SELECT * FROM {quoted} SINCE {since} LIMIT 1"
            )
            sample = result.results[0] if result.results else {}
            description["dataTypes"] = {
                attribute: infer_data_type(sample.get(attribute))
                for attribute in sorted(attributes)
                if attribute in sample
            }

        return description

    async def compare_schemas(
        self, event_type: str, account_a: int, account_b: int, since: str = "1 day ago"
    ) -> Dict[str, Any]:
        attributes_a, attributes_b = await asyncio.gather(
            self.get_event_attributes(account_a, event_type, since),
            self.get_event_attributes(account_b, event_type, since),
        )
        set_a, set_b = set(attributes_a), set(attributes_b)
        union = set_a | set_b

        return {
            "eventType": event_type,
            "accountA": account_a,
            "accountB": account_b,
            "onlyInA": sorted(set_a - set_b),
            "onlyInB": sorted(set_b - set_a),
            "common": sorted(set_a & set_b),
            "similarity": len(set_a & set_b) / len(union) if union else 1.0,
        }

    async def validate_attributes(
        self,
        event_type: str,
        expected: List[str],
        allow_extra: bool = False,
        since: str = "1 day ago",
        account_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Check that an event type carries the expected attributes.

        Args:
            event_type: Event type name
            expected: Attribute names that must be present
            allow_extra: Do not fail on attributes beyond ``expected``
            since: NRQL time window
            account_id: Override the default account

        Returns:
            Missing and extra attributes, close-match suggestions, case-only
            mismatches that can be fixed automatically, and coverage
        """
        if not expected:
            raise ValidationError("At least one expected attribute is required", field="expected")
        account_id = self.context.account_id(account_id)
        actual = await self.get_event_attributes(account_id, event_type, validate_since(since))

        actual_set = set(actual)
        missing = [name for name in expected if name not in actual_set]
        extra = [] if allow_extra else sorted(actual_set - set(expected))

        suggestions: List[str] = []
        auto_fixable: List[Dict[str, str]] = []
        by_lower = {name.lower(): name for name in actual}
        for name in missing:
            if name.lower() in by_lower:
                auto_fixable.append(
                    {"original": name, "corrected": by_lower[name.lower()], "type": "case_mismatch"}
                )
            matches = difflib.get_close_matches(name, actual, n=3, cutoff=0.6)
            if name.lower() in by_lower and by_lower[name.lower()] not in matches:
                matches.insert(0, by_lower[name.lower()])
            if matches:
                suggestions.append(
                    f"Attribute '{name}' not found. Did you mean: {', '.join(matches[:3])}?"
                )

        return {
            "valid": not missing and not extra,
            "eventType": event_type,
            "expectedCount": len(expected),
            "actualCount": len(actual),
            "missing": missing,
            "extra": extra,
            "suggestions": suggestions,
            "autoFixable": auto_fixable,
            "coverage": f"{(len(expected) - len(missing)) / len(expected) * 100:.1f}%",
        }

    async def find_attribute(
        self,
        attribute: str,
        since: str = "1 day ago",
        exact: bool = False,
        event_type_pattern: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find event types that carry an attribute.

        Args:
            attribute: Attribute name or substring
            since: NRQL time window
            exact: Match the whole name, case-insensitively
            event_type_pattern: Regex restricting the event types searched
        """
        account_id = self.context.account_id()
        search = attribute.lower()
        pattern = None
        if event_type_pattern:
            try:
                pattern = re.compile(event_type_pattern, re.IGNORECASE)
            except re.error as e:
                raise ValidationError(
                    f"Invalid event type pattern {event_type_pattern!r}: {e}",
                    field="event_type_pattern",
                ) from e

        matches: List[Dict[str, Any]] = []
        for event_type in await self.discover_event_types(since):
            name = event_type["name"]
            if pattern and not pattern.search(name):
                continue
            for candidate in await self.get_event_attributes(account_id, name, since):
                lower = candidate.lower()
                if lower == search or (not exact and search in lower):
                    matches.append(
                        {
                            "eventType": name,
                            "attribute": candidate,
                            "matchType": "exact" if lower == search else "partial",
                        }
                    )

        matches.sort(key=lambda m: (m["matchType"] != "exact", m["eventType"], m["attribute"]))
        return matches
