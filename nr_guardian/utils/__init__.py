"""
Request-level utilities: rate limiting, retry/backoff and response caching.
"""

from .cache import CacheEntry, ResponseCache
from .rate_limit import RateLimiter
from .retry import ErrorCategory, ErrorInfo, RetryController, classify_error

__all__ = [
    "CacheEntry",
    "ResponseCache",
    "RateLimiter",
    "ErrorCategory",
    "ErrorInfo",
    "RetryController",
    "classify_error",
]
