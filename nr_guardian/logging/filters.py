"""
Logging filters for nr_guardian.

New Relic User API keys start with ``NRAK-``; they and any ``API-Key`` header
values are masked before a record reaches a handler.
"""

import logging
import re
from typing import List, Pattern, Tuple


class SensitiveDataFilter(logging.Filter):
    """Filter to mask sensitive data in log messages."""

    MASK = "***MASKED***"

    def __init__(self) -> None:
        """Initialize sensitive data filter."""
        super().__init__()

        self.rules: List[Tuple[Pattern[str], str]] = [
            # New Relic user and license keys
            (re.compile(r"\bNRAK-[A-Z0-9]{10,}\b", re.IGNORECASE), self.MASK),
            (re.compile(r"\b[0-9a-f]{36}NRAL\b", re.IGNORECASE), self.MASK),
            # Header or key/value style secrets
            (
                re.compile(
                    r'(api[_-]?key|token|secret)(["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-+/=]{8,})',
                    re.IGNORECASE,
                ),
                rf"\1\2{self.MASK}",
            ),
            (re.compile(r"(bearer\s+)([A-Za-z0-9_\-+/=.]{16,})", re.IGNORECASE), rf"\1{self.MASK}"),
        ]

    def mask(self, message: str) -> str:
        for pattern, replacement in self.rules:
            message = pattern.sub(replacement, message)
        return message

    def filter(self, record: logging.LogRecord) -> bool:
        """Rewrite the record message with secrets masked."""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        masked = self.mask(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True

