"""
Exception hierarchy for nr_guardian.

Errors fall into two layers. Transport and GraphQL errors describe a request
that NerdGraph did not execute successfully. Domain mutation errors describe a
mutation that executed but reported structured ``errors`` in its payload.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from .graphql.models import GraphQLErrorDetail


class NRGuardianError(Exception):
    """
    Base exception for all nr_guardian operations.

    Attributes:
        message: Human-readable error message
        code: Stable machine-readable error code
        details: Additional error details as keyword arguments
    """

    code = "NR_GUARDIAN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for JSON output."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": {k: v for k, v in self.details.items() if v is not None},
        }


class ValidationError(NRGuardianError):
    """Raised when caller input is invalid. No request is sent."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, field=field, **kwargs)
        self.field = field


class ConfigError(NRGuardianError):
    """Raised for missing or malformed configuration."""

    code = "CONFIG_ERROR"


class TransportError(NRGuardianError):
    """Raised for network failures and timeouts."""

    code = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, endpoint=endpoint, timeout=timeout, **kwargs)
        self.endpoint = endpoint
        self.timeout = timeout


class ProtocolError(NRGuardianError):
    """Raised for non-2xx responses and undecodable bodies."""

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, status_code=status_code, **kwargs)
        self.status_code = status_code
        self.response_text = response_text


APIError = ProtocolError


class GraphQLError(NRGuardianError):
    """
    Raised when the response envelope carries a non-empty ``errors`` list.

    Attributes:
        errors: Every error detail returned by the server
    """

    code = "GRAPHQL_ERROR"

    def __init__(
        self,
        message: str,
        errors: Optional[Sequence["GraphQLErrorDetail"]] = None,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, status_code=status_code, **kwargs)
        self.errors: List["GraphQLErrorDetail"] = list(errors or [])
        self.status_code = status_code

    @property
    def messages(self) -> List[str]:
        return [error.message for error in self.errors]


LogicalError = GraphQLError


class RateLimitError(GraphQLError):
    """Raised on HTTP 429 or a GraphQL rate-limit error."""

    code = "RATE_LIMIT_ERROR"

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        errors: Optional[Sequence["GraphQLErrorDetail"]] = None,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message, errors=errors, status_code=status_code, retry_after=retry_after, **kwargs
        )
        self.retry_after = retry_after


class AuthError(GraphQLError):
    """Raised on HTTP 401/403 or an UNAUTHENTICATED GraphQL error."""

    code = "AUTH_ERROR"


class QueryError(GraphQLError):
    """Raised when NerdGraph rejects an NRQL query."""

    code = "QUERY_ERROR"

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        errors: Optional[Sequence["GraphQLErrorDetail"]] = None,
        suggestions: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, errors=errors, query=query, **kwargs)
        self.query = query
        self.suggestions = suggestions or []


class DomainMutationError(NRGuardianError):
    """
    Raised when a mutation succeeds at the GraphQL layer but its payload
    reports errors.

    Attributes:
        errors: Structured ``{description, type}`` entries from the payload
    """

    code = "MUTATION_ERROR"

    def __init__(
        self, message: str, errors: Optional[List[Dict[str, Any]]] = None, **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.errors: List[Dict[str, Any]] = list(errors or [])

    @classmethod
    def from_payload(
        cls, action: str, errors: List[Dict[str, Any]], **kwargs: Any
    ) -> "DomainMutationError":
        summary = "; ".join(
            f"{e.get('type', 'UNKNOWN')}: {e.get('description', '')}" for e in errors
        )
        return cls(f"Failed to {action} dashboard: {summary}", errors=errors, **kwargs)


class DashboardCreateError(DomainMutationError):
    code = "DASHBOARD_CREATE_ERROR"


class DashboardUpdateError(DomainMutationError):
    code = "DASHBOARD_UPDATE_ERROR"


class DashboardDeleteError(DomainMutationError):
    code = "DASHBOARD_DELETE_ERROR"


class SubscriptionError(NRGuardianError):
    """Raised for subscription socket failures."""

    code = "SUBSCRIPTION_ERROR"

    def __init__(
        self, message: str, subscription_id: Optional[str] = None, **kwargs: Any
    ) -> None:
        super().__init__(message, subscription_id=subscription_id, **kwargs)
        self.subscription_id = subscription_id


class SchemaError(NRGuardianError):
    """Raised when an event type has no data to describe."""

    code = "SCHEMA_ERROR"
