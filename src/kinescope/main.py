"""Kinescope Service - Kinesis streams browsable over HTTP."""

import asyncio
import logging
import os
import signal
import sys
import time
from datetime import datetime
from typing import Optional

from . import __version__
from .bus import MessageBus
from .config.aws_config import AWSClientManager
from .config.settings import KinescopeSettings, load_settings
from .health import HealthCheckServer
from .utils.logging import setup_logging
from .workers.http_gateway import HttpGateway
from .workers.kinesis import KinesisWorker


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class KinescopeService:
    """Wires the bus, the stream access worker, the HTTP gateway and health checks."""

    def __init__(
        self,
        config_file: Optional[str] = None,
        settings: Optional[KinescopeSettings] = None,
        client_manager: Optional[AWSClientManager] = None,
        configure_logging: bool = True
    ):
        self.config = settings if settings is not None else load_settings(config_file)

        if configure_logging:
            setup_logging(self.config.logging, self.config.service_name)

        self.bus = MessageBus()
        self.client_manager = client_manager or AWSClientManager(self.config.aws)

        self.kinesis_worker = KinesisWorker(self.bus, self.client_manager, self.config.kinesis)
        self.gateway = HttpGateway(self.bus, self.config.http)

        self.health_server: Optional[HealthCheckServer] = None
        if self.config.health.enabled:
            self.health_server = HealthCheckServer(
                self.health_check,
                self.config.health,
                self.config.service_name
            )

        self._shutdown_event = asyncio.Event()
        self._started = False

        logger.info("Kinescope Service initialized")

    async def start(self):
        """Start workers, stream access first so the gateway never sees an unbound address."""
        logger.info(f"Starting Kinescope {__version__}")
        start_time = time.time()

        await self.kinesis_worker.start()
        try:
            await self.gateway.start()
            if self.health_server:
                await self.health_server.start()
        except Exception:
            await self.gateway.stop()
            await self.kinesis_worker.stop()
            raise

        self._started = True
        logger.info(f"Started Kinescope Service in {time.time() - start_time:.3f}s")

    async def stop(self):
        """Stop in reverse start order and release the bus."""
        logger.info("Shutting down Kinescope Service")

        if self.health_server:
            await self.health_server.stop()
        await self.gateway.stop()
        await self.kinesis_worker.stop()
        await self.bus.close()

        self._started = False
        logger.info("Kinescope Service stopped")

    async def run(self):
        """Start, wait for a shutdown signal, then stop."""
        self._setup_signal_handlers()
        try:
            await self.start()
            try:
                await self._shutdown_event.wait()
            finally:
                await self.stop()
        finally:
            self._remove_signal_handlers()

    def request_shutdown(self):
        self._shutdown_event.set()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self.request_shutdown()

        for signum in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(signum, signal_handler, signum)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(signum)

    async def health_check(self) -> dict:
        """Perform health check."""
        health_status = {
            "service": self.config.service_name,
            "version": __version__,
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "components": {
                "kinesis": await self.kinesis_worker.health_check(),
                "http_gateway": await self.gateway.health_check()
            },
            "bus": self.bus.get_stats()
        }

        component_statuses = [
            comp.get("status", "unknown")
            for comp in health_status["components"].values()
        ]

        if any(status == "unhealthy" for status in component_statuses):
            health_status["status"] = "unhealthy"
        elif any(status == "degraded" for status in component_statuses):
            health_status["status"] = "degraded"

        return health_status


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE")

    try:
        service = KinescopeService(config_file)
        await service.run()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
