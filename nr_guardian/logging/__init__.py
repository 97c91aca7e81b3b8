"""
Logging setup for nr_guardian: console/file handlers, JSON output and
API key masking.
"""

from .filters import SensitiveDataFilter
from .formatters import ColoredFormatter, StructuredFormatter
from .manager import LoggingManager, setup_logging

__all__ = [
    "LoggingManager",
    "setup_logging",
    "StructuredFormatter",
    "ColoredFormatter",
    "SensitiveDataFilter",
]
