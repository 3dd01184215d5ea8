"""Base class for bus-connected workers."""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from .message_bus import Handler, MessageBus
from .messages import Outcome, Postbox, Request, Response

logger = logging.getLogger(__name__)


class Worker:
    """
    Isolated unit of execution that talks to other workers only through the bus.

    Subclasses bind their handlers with ``receive`` from ``on_start`` and
    release their own resources in ``on_stop``. Addresses bound through
    ``receive`` are unregistered automatically on ``stop``.
    """

    name = "worker"

    def __init__(self, bus: MessageBus):
        self.bus = bus
        self._postboxes: List[Postbox] = []
        self._running = False
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            return

        start_time = time.time()
        try:
            await self.on_start()
        except Exception:
            await self._release_postboxes()
            raise
        self._running = True
        self._started_at = time.time()

        logger.info(f"Started {self.name} worker in {self._started_at - start_time:.3f}s")

    async def stop(self):
        if not self._running:
            return

        self._running = False
        await self._release_postboxes()

        await self.on_stop()
        logger.info(f"Stopped {self.name} worker")

    async def _release_postboxes(self):
        for postbox in reversed(self._postboxes):
            await self.bus.unregister(postbox)
        self._postboxes.clear()

    async def on_start(self):
        pass

    async def on_stop(self):
        pass

    def receive(self, postbox: Postbox, handler: Handler, max_in_flight: int = 1):
        """Bind ``handler`` at the postbox address for the lifetime of this worker."""
        self.bus.register(postbox, handler, max_in_flight=max_in_flight)
        self._postboxes.append(postbox)

    async def request(self, postbox: Postbox, payload: Request, timeout: Optional[float] = None) -> Response:
        return await self.bus.request(postbox, payload, timeout=timeout)

    async def ask(self, postbox: Postbox, payload: Request, timeout: Optional[float] = None) -> Outcome:
        return await self.bus.ask(postbox, payload, timeout=timeout)

    async def health_check(self) -> Dict[str, Any]:
        unbound = [pb.address for pb in self._postboxes if not self.bus.is_bound(pb.address)]

        health_status = {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "running": self._running,
            "addresses": [pb.address for pb in self._postboxes]
        }

        if not self._running:
            health_status["status"] = "unhealthy"
            health_status["error"] = f"{self.name} worker not running"
        elif unbound:
            health_status["status"] = "unhealthy"
            health_status["error"] = f"Addresses not bound: {unbound}"

        return health_status
