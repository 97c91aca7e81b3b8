"""
Explicit runtime context.

A GuardianContext bundles the configuration with the lazily built client and
response cache. It is created by the caller (the CLI, a script, a test) and
handed to services; nothing in the package keeps a process-wide instance.
"""

from __future__ import annotations

from typing import Any, Optional

from .client import NerdGraphClient
from .config.models import GuardianConfig
from .utils.cache import ResponseCache


class GuardianContext:
    """Owns the client and cache for one unit of work."""

    def __init__(
        self,
        config: GuardianConfig,
        client: Optional[NerdGraphClient] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.config = config
        self._client = client
        self.cache = cache or ResponseCache(config.cache)

    @property
    def client(self) -> NerdGraphClient:
        """The NerdGraph client, built on first use."""
        if self._client is None:
            self._client = NerdGraphClient(self.config)
        return self._client

    def account_id(self, override: Optional[Any] = None) -> int:
        return self.config.require_account_id(override)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> GuardianContext:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
