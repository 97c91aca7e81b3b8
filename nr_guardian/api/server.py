"""API server: aiohttp app with the error envelope middleware."""

import logging
import traceback
from typing import Any, Dict, Optional

from aiohttp import web

from ..config.models import GuardianConfig
from ..context import GuardianContext
from ..exceptions import (
    AuthError,
    ConfigError,
    NRGuardianError,
    RateLimitError,
    SchemaError,
    ValidationError,
)
from . import context_key, production_key
from .routes import setup_routes

logger = logging.getLogger(__name__)


def error_status(error: Exception) -> int:
    """HTTP status for an exception raised by a route handler."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthError):
        return 401
    if isinstance(error, SchemaError):
        return 404
    if isinstance(error, RateLimitError):
        return 429
    if isinstance(error, ConfigError):
        return 500
    if isinstance(error, NRGuardianError):
        return 502
    return 500


def error_body(message: str, stack: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if stack:
        body["stack"] = stack
    return body


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render every failure as ``{success: false, error, stack?}``."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response(error_body("Endpoint not found"), status=404)
    except web.HTTPMethodNotAllowed:
        return web.json_response(error_body("Method not allowed"), status=405)
    except web.HTTPException:
        raise
    except Exception as e:
        status = error_status(e)
        if isinstance(e, NRGuardianError):
            message = e.message
        else:
            message = str(e) or "Internal server error"
        if status >= 500:
            logger.error(f"API error on {request.method} {request.path}: {e}", exc_info=True)
        else:
            logger.warning(f"API error on {request.method} {request.path}: {e}")
        stack = None if request.app[production_key] else traceback.format_exc()
        return web.json_response(error_body(message, stack), status=status)


async def _close_context(app: web.Application) -> None:
    await app[context_key].close()


def create_app(config: GuardianConfig, context: Optional[GuardianContext] = None) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        config: Configuration; ``config.api.environment`` controls whether
            error responses carry a stack trace
        context: Context shared by every request, built from ``config`` when
            omitted and closed on application cleanup
    """
    app = web.Application(middlewares=[error_middleware])
    app[context_key] = context or GuardianContext(config)
    app[production_key] = config.api.production
    app.on_cleanup.append(_close_context)
    setup_routes(app)
    return app


def run_server(
    config: GuardianConfig, host: Optional[str] = None, port: Optional[int] = None
) -> None:
    """Serve the API until interrupted."""
    host = host or config.api.host
    port = port or config.api.port
    logger.info(f"Dashboard API listening on http://{host}:{port} (health check: /health)")
    web.run_app(create_app(config), host=host, port=port, print=None)
