"""
HTTP transport for NerdGraph.

One POST per call. The transport decodes the ``data``/``errors`` envelope and
maps every failure onto the nr_guardian exception hierarchy; it does not retry,
rate limit or cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

import aiohttp

from ..exceptions import (
    AuthError,
    GraphQLError,
    ProtocolError,
    RateLimitError,
    TransportError,
)
from .models import GraphQLErrorDetail, GraphQLRequest, GraphQLResponse

logger = logging.getLogger(__name__)

USER_AGENT = "nr-guardian"
RATE_LIMIT_CODES = frozenset(["RATE_LIMITED", "RATE_LIMIT_EXCEEDED", "TOO_MANY_REQUESTS"])
AUTH_CODES = frozenset(["UNAUTHENTICATED", "UNAUTHORIZED", "FORBIDDEN"])
_RATE_LIMIT_MESSAGE = re.compile(r"rate.?limit|too many requests", re.IGNORECASE)


def raise_for_graphql_errors(
    errors: List[GraphQLErrorDetail], status_code: Optional[int] = None
) -> None:
    """
    Raise the exception matching a non-empty ``errors`` array.

    Args:
        errors: Decoded error entries
        status_code: HTTP status of the response, if any

    Raises:
        AuthError: For authentication codes
        RateLimitError: For rate-limit codes or messages
        GraphQLError: Otherwise
    """
    if not errors:
        return

    message = "; ".join(error.message for error in errors)
    codes = {str(error.code).upper() for error in errors if error.code}

    if codes & AUTH_CODES:
        raise AuthError(f"Authentication failed: {message}", errors=errors, status_code=status_code)
    if codes & RATE_LIMIT_CODES or _RATE_LIMIT_MESSAGE.search(message):
        raise RateLimitError(
            f"Rate limit exceeded: {message}", errors=errors, status_code=status_code
        )
    raise GraphQLError(f"GraphQL errors: {message}", errors=errors, status_code=status_code)


class GraphQLTransport:
    """
    POSTs GraphQL requests to a NerdGraph endpoint.

    Example:
        ```python
        async with GraphQLTransport(endpoint, api_key) as transport:
            response = await transport.send(GraphQLRequest("{ actor { user { name } } }"))
        ```
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout: float = 120.0,
        session: Optional[aiohttp.ClientSession] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the transport.

        Args:
            endpoint: GraphQL URL
            api_key: User API key sent in the ``API-Key`` header
            timeout: Total request timeout in seconds
            session: Shared session; the transport will not close it
            headers: Extra headers added to every request
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._extra_headers = dict(headers or {})
        self.request_count = 0

    async def __aenter__(self) -> GraphQLTransport:
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def open(self) -> None:
        await self._get_session()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "API-Key": self.api_key,
            "NewRelic-Requesting-Services": USER_AGENT,
        }
        headers.update(self._extra_headers)
        return headers

    async def send(self, request: GraphQLRequest) -> GraphQLResponse:
        """
        Send one request and decode the response envelope.

        Args:
            request: Query text and variables

        Returns:
            GraphQLResponse with ``data`` and no errors

        Raises:
            TransportError: Network failure or timeout
            RateLimitError: HTTP 429 or a rate-limit GraphQL error
            AuthError: HTTP 401/403 or an authentication GraphQL error
            ProtocolError: Any other non-2xx status, or an undecodable body
            GraphQLError: Non-empty ``errors`` array
        """
        session = await self._get_session()

        start_time = time.time()
        self.request_count += 1
        try:
            async with session.post(
                self.endpoint, json=request.to_payload(), headers=self.headers
            ) as response:
                status = response.status
                response_headers = response.headers
                response_text = await response.text()
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Request timed out after {self.timeout}s",
                endpoint=self.endpoint,
                timeout=self.timeout,
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error: {e}", endpoint=self.endpoint) from e

        response_time = time.time() - start_time
        logger.debug(f"POST {self.endpoint} -> {status} in {response_time:.3f}s")

        if status == 429:
            retry_after = None
            if "Retry-After" in response_headers:
                try:
                    retry_after = float(response_headers["Retry-After"])
                except ValueError:
                    pass
            raise RateLimitError(
                "Rate limit exceeded (HTTP 429)", retry_after=retry_after, status_code=status
            )
        if status in (401, 403):
            raise AuthError(
                f"Authentication failed (HTTP {status}). Check your API key.",
                status_code=status,
            )
        if not 200 <= status < 300:
            raise ProtocolError(
                f"HTTP {status}: {response_text[:200]}",
                status_code=status,
                response_text=response_text,
            )

        try:
            body = json.loads(response_text)
        except json.JSONDecodeError as e:
            raise ProtocolError(
                f"Invalid JSON response: {response_text[:200]}",
                status_code=status,
                response_text=response_text,
            ) from e
        if not isinstance(body, dict):
            raise ProtocolError(
                "Response body is not a JSON object", status_code=status, response_text=response_text
            )

        errors = [GraphQLErrorDetail.from_dict(e) for e in body.get("errors") or []]
        raise_for_graphql_errors(errors, status_code=status)

        return GraphQLResponse(
            data=body.get("data"),
            extensions=body.get("extensions"),
            status_code=status,
            response_time=response_time,
        )
