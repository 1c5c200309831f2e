"""Health check endpoints.

Provides a plain-text liveness endpoint for load balancers and container
healthchecks. Served by aiohttp on its own port, separate from the client
WebSocket listener.
"""

import logging
import time
from typing import TYPE_CHECKING

from aiohttp import web

if TYPE_CHECKING:
    from voicerelay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Reports OK while the process is serving, regardless of backend state.
    """

    def __init__(self, registry: "SessionRegistry | None" = None) -> None:
        """Initialize health check handler.

        Args:
            registry: SessionRegistry instance (optional)
        """
        self.registry = registry
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Liveness check.

        Returns:
            200 OK with body ``OK``
        """
        logger.debug(
            "Health check performed",
            extra={
                "uptime_seconds": time.time() - self.start_time,
                "active_sessions": len(self.registry) if self.registry is not None else 0,
            },
        )
        return web.Response(text="OK", status=200)


def setup_health_routes(app: web.Application, registry: "SessionRegistry | None" = None) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        registry: SessionRegistry instance (optional)
    """
    handler = HealthCheckHandler(registry=registry)

    app.router.add_get("/", handler.health_check)
    app.router.add_get("/health", handler.health_check)

    logger.info("Health check endpoints configured: /, /health")


def create_health_app(registry: "SessionRegistry | None" = None) -> web.Application:
    """Build the health check application."""
    app = web.Application()
    setup_health_routes(app, registry=registry)
    return app
