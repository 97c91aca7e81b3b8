"""
Retry and backoff control for NerdGraph requests.

Errors are categorized before each retry decision. Rate-limit errors back off
more aggressively than transient failures; client errors are never retried.
Backoff is exponential without jitter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..config.models import RetryConfig
from ..exceptions import (
    AuthError,
    DomainMutationError,
    GraphQLError,
    ProtocolError,
    RateLimitError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_GRAPHQL_CODES = frozenset(
    ["TIMEOUT", "INTERNAL_SERVER_ERROR", "SERVER_ERROR", "SERVICE_UNAVAILABLE"]
)


class ErrorCategory(Enum):
    """Categories of request errors for retry decisions."""

    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    CLIENT = "client"


@dataclass
class ErrorInfo:
    """Classification of one failed attempt."""

    category: ErrorCategory
    status_code: Optional[int] = None
    error_message: str = ""

    @property
    def is_retryable(self) -> bool:
        return self.category is not ErrorCategory.CLIENT


def classify_error(error: BaseException) -> ErrorInfo:
    """
    Categorize an error raised by a request attempt.

    Args:
        error: Exception raised by the attempt

    Returns:
        ErrorInfo with the category and, where known, the HTTP status
    """
    status_code = getattr(error, "status_code", None)
    message = str(error)

    if isinstance(error, RateLimitError) or status_code == 429:
        return ErrorInfo(ErrorCategory.RATE_LIMIT, status_code, message)

    if isinstance(error, (ValidationError, AuthError, DomainMutationError)):
        return ErrorInfo(ErrorCategory.CLIENT, status_code, message)

    if isinstance(error, TransportError):
        return ErrorInfo(ErrorCategory.TRANSIENT, status_code, message)

    if isinstance(error, ProtocolError):
        if status_code is not None and status_code >= 500:
            return ErrorInfo(ErrorCategory.TRANSIENT, status_code, message)
        return ErrorInfo(ErrorCategory.CLIENT, status_code, message)

    if isinstance(error, GraphQLError):
        codes = {str(e.code).upper() for e in error.errors if e.code}
        if codes & TRANSIENT_GRAPHQL_CODES:
            return ErrorInfo(ErrorCategory.TRANSIENT, status_code, message)
        return ErrorInfo(ErrorCategory.CLIENT, status_code, message)

    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return ErrorInfo(ErrorCategory.TRANSIENT, status_code, message)

    return ErrorInfo(ErrorCategory.CLIENT, status_code, message)


class RetryController:
    """Runs an operation with bounded retries and exponential backoff."""

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()
        self._total_retries = 0
        self._total_delay = 0.0

    def calculate_delay(self, category: ErrorCategory, attempt: int) -> float:
        """
        Backoff before the retry that follows ``attempt`` (zero-indexed).

        Rate-limit errors wait ``base * 2**(attempt + 2)``, transient errors
        ``base * 2**attempt``, both capped at ``max_delay``.
        """
        exponent = attempt + 2 if category is ErrorCategory.RATE_LIMIT else attempt
        return min(self.config.base_delay * (2 ** exponent), self.config.max_delay)

    def should_retry(self, info: ErrorInfo, attempt: int) -> bool:
        return info.is_retryable and attempt < self.config.max_retries

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` until it succeeds or retries are exhausted.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt

        Returns:
            The operation's result

        Raises:
            The last error raised by ``operation``, unchanged
        """
        attempt = 0
        delays: List[float] = []
        while True:
            try:
                return await operation()
            except Exception as error:
                info = classify_error(error)
                if not self.should_retry(info, attempt):
                    if info.is_retryable:
                        logger.error(
                            f"Request failed after {attempt + 1} attempts "
                            f"({sum(delays):.1f}s of backoff): {info.error_message}"
                        )
                    raise

                delay = self.calculate_delay(info.category, attempt)
                delays.append(delay)
                self._total_retries += 1
                self._total_delay += delay
                if info.category is ErrorCategory.RATE_LIMIT:
                    logger.warning(
                        f"Rate limited, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.config.max_retries})"
                    )
                else:
                    logger.debug(
                        f"Request failed ({info.error_message}), retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.config.max_retries})"
                    )
                await asyncio.sleep(delay)
                attempt += 1

    def get_stats(self) -> Dict[str, Any]:
        """Retry totals across every call made through this controller."""
        return {
            "max_retries": self.config.max_retries,
            "total_retries": self._total_retries,
            "total_retry_delay": self._total_delay,
        }
