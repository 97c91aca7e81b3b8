"""
GraphQL request/response envelopes and schema information.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class GraphQLRequest:
    """Immutable query text and variables for one POST."""

    query: str
    variables: Mapping[str, Any] = field(default_factory=dict)
    operation_name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables or {})))

    def to_payload(self) -> Dict[str, Any]:
        """Convert to the JSON body NerdGraph expects."""
        payload: Dict[str, Any] = {"query": self.query, "variables": dict(self.variables)}
        if self.operation_name:
            payload["operationName"] = self.operation_name
        return payload


@dataclass
class GraphQLErrorDetail:
    """One entry of a response's ``errors`` array."""

    message: str
    extensions: Dict[str, Any] = field(default_factory=dict)
    path: Optional[List[Any]] = None
    locations: Optional[List[Dict[str, int]]] = None

    @property
    def code(self) -> Optional[str]:
        code = self.extensions.get("code") or self.extensions.get("errorClass")
        return str(code) if code else None

    @classmethod
    def from_dict(cls, raw: Any) -> "GraphQLErrorDetail":
        if not isinstance(raw, dict):
            return cls(message=str(raw))
        return cls(
            message=str(raw.get("message", "Unknown error")),
            extensions=dict(raw.get("extensions") or {}),
            path=raw.get("path"),
            locations=raw.get("locations"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"message": self.message}
        if self.extensions:
            result["extensions"] = self.extensions
        if self.path is not None:
            result["path"] = self.path
        if self.locations is not None:
            result["locations"] = self.locations
        return result


@dataclass
class GraphQLResponse:
    """Decoded ``data``/``errors`` envelope."""

    data: Optional[Dict[str, Any]] = None
    errors: List[GraphQLErrorDetail] = field(default_factory=list)
    extensions: Optional[Dict[str, Any]] = None
    status_code: int = 200
    response_time: Optional[float] = None

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def error_messages(self) -> List[str]:
        return [error.message for error in self.errors]

    def get_data(self, path: Optional[str] = None) -> Any:
        """
        Get data from the response with an optional dotted path.

        Args:
            path: Dot-separated path, e.g. ``"actor.account.nrql"``

        Returns:
            Data at the path, or None when any segment is missing
        """
        if not self.data:
            return None

        if not path:
            return self.data

        current: Any = self.data
        for key in path.split("."):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return None

        return current


class GraphQLSchemaInfo(BaseModel):
    """Introspected schema summary."""

    types: List[Dict[str, Any]] = Field(default_factory=list, description="Schema types")
    queries: List[Dict[str, Any]] = Field(default_factory=list, description="Query root fields")
    mutations: List[Dict[str, Any]] = Field(default_factory=list, description="Mutation root fields")
    subscriptions: List[Dict[str, Any]] = Field(
        default_factory=list, description="Subscription root fields"
    )

    def get_type(self, name: str) -> Optional[Dict[str, Any]]:
        for type_def in self.types:
            if type_def.get("name") == name:
                return type_def
        return None

    def get_mutation(self, name: str) -> Optional[Dict[str, Any]]:
        for mutation in self.mutations:
            if mutation.get("name") == name:
                return mutation
        return None
