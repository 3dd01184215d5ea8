"""Health check endpoints for the Kinescope service."""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional
from aiohttp import web, web_request
from aiohttp.web_response import Response

from .config.settings import HealthConfig


logger = logging.getLogger(__name__)

HealthProbe = Callable[[], Awaitable[Dict[str, Any]]]


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, probe: HealthProbe, service_name: str = "kinescope"):
        self.probe = probe
        self.service_name = service_name

    async def health(self, request: web_request.Request) -> Response:
        """Basic health check endpoint."""
        try:
            health_data = await self.probe()

            status = 200 if health_data["status"] == "healthy" else 503

            return web.json_response(health_data, status=status)

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "service": self.service_name,
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.utcnow().isoformat()
                },
                status=503
            )

    async def ready(self, request: web_request.Request) -> Response:
        """Readiness probe."""
        try:
            health_data = await self.probe()

            # Ready if healthy or degraded
            is_ready = health_data["status"] in ["healthy", "degraded"]
            status = 200 if is_ready else 503

            return web.json_response(
                {
                    "ready": is_ready,
                    "status": health_data["status"],
                    "timestamp": datetime.utcnow().isoformat()
                },
                status=status
            )

        except Exception as e:
            logger.error(f"Readiness check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "ready": False,
                    "error": str(e),
                    "timestamp": datetime.utcnow().isoformat()
                },
                status=503
            )

    async def live(self, request: web_request.Request) -> Response:
        """Liveness probe."""
        return web.json_response(
            {
                "alive": True,
                "timestamp": datetime.utcnow().isoformat()
            },
            status=200
        )


def create_health_app(probe: HealthProbe, service_name: str = "kinescope") -> web.Application:
    app = web.Application()

    handler = HealthCheckHandler(probe, service_name)
    app.router.add_get('/health', handler.health)
    app.router.add_get('/ready', handler.ready)
    app.router.add_get('/live', handler.live)

    return app


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, probe: HealthProbe, config: HealthConfig, service_name: str = "kinescope"):
        self.probe = probe
        self.host = config.host
        self.port = config.port
        self.service_name = service_name
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self):
        """Start the health check server."""
        logger.info(f"Starting health check server on {self.host}:{self.port}")

        self.app = create_health_app(self.probe, self.service_name)

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the health check server."""
        logger.info("Stopping health check server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        self.site = None
        self.runner = None

        logger.info("Health check server stopped")
