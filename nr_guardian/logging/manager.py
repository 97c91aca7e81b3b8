"""
Logging manager for nr_guardian.

Handlers are installed on the ``nr_guardian`` logger rather than the root
logger so embedding applications keep control of their own logging.
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

from ..config.models import LoggingConfig, LogLevel
from .filters import SensitiveDataFilter
from .formatters import ColoredFormatter, StructuredFormatter

PACKAGE_LOGGER = "nr_guardian"


class LoggingManager:
    """Owns the handlers attached to the package logger."""

    def __init__(self, logger_name: str = PACKAGE_LOGGER) -> None:
        self.logger_name = logger_name
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(self.logger_name)

    def setup_logging(self, config: LoggingConfig) -> None:
        """
        Setup logging based on configuration.

        Args:
            config: Logging configuration
        """
        if self._configured:
            self.cleanup()

        package_logger = self.logger
        package_logger.setLevel(getattr(logging, config.level.value))
        package_logger.propagate = False

        if config.enable_console:
            self._setup_console_handler(config)

        if config.file_path:
            self._setup_file_handler(config)

        for component, level in config.component_levels.items():
            logging.getLogger(component).setLevel(getattr(logging, level.value))

        self._configured = True
        package_logger.debug("Logging configured at level %s", config.level.value)

    def _make_formatter(self, config: LoggingConfig, console: bool) -> logging.Formatter:
        if config.enable_structured:
            return StructuredFormatter()
        if console:
            return ColoredFormatter(config.format)
        return logging.Formatter(config.format)

    def _setup_console_handler(self, config: LoggingConfig) -> None:
        """Console output goes to stderr so stdout stays clean for --json."""
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(self._make_formatter(config, console=True))
        handler.setLevel(getattr(logging, config.level.value))
        self.add_handler("console", handler)

    def _setup_file_handler(self, config: LoggingConfig) -> None:
        log_path = Path(str(config.file_path))
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(str(log_path), encoding="utf-8")
        handler.setFormatter(self._make_formatter(config, console=False))
        handler.setLevel(getattr(logging, config.level.value))
        self.add_handler("file", handler)

    def add_handler(self, name: str, handler: logging.Handler) -> None:
        """
        Add a handler to the package logger with secret masking applied.

        Args:
            name: Handler name
            handler: Logging handler
        """
        if not any(isinstance(f, SensitiveDataFilter) for f in handler.filters):
            handler.addFilter(SensitiveDataFilter())
        self.logger.addHandler(handler)
        self._handlers[name] = handler

    def set_level(self, level: LogLevel, component: Optional[str] = None) -> None:
        """
        Set logging level.

        Args:
            level: New logging level
            component: Specific component (None for the package logger)
        """
        log_level = getattr(logging, level.value)

        if component:
            logging.getLogger(component).setLevel(log_level)
            return

        self.logger.setLevel(log_level)
        for handler in self._handlers.values():
            handler.setLevel(log_level)

    def cleanup(self) -> None:
        """Close and detach every handler this manager installed."""
        for handler in list(self._handlers.values()):
            self.logger.removeHandler(handler)
            handler.close()

        self._handlers.clear()
        self._configured = False

    def is_configured(self) -> bool:
        return self._configured


def setup_logging(config: LoggingConfig) -> LoggingManager:
    """
    Build a LoggingManager and apply the configuration.

    Args:
        config: Logging configuration

    Returns:
        The manager, so the caller can clean it up
    """
    manager = LoggingManager()
    manager.setup_logging(config)
    return manager
