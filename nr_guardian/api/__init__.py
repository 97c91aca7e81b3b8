"""
JSON REST surface over the dashboard and schema services.
"""

from aiohttp import web

from ..context import GuardianContext

context_key = web.AppKey("context", GuardianContext)
production_key = web.AppKey("production", bool)

from .server import create_app, run_server  # noqa: E402

__all__ = ["context_key", "production_key", "create_app", "run_server"]
