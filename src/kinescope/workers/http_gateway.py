"""HTTP gateway worker: renders stream listings and shard pages over aiohttp."""

import html
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from aiohttp import web, web_request
from aiohttp.web_response import Response

from ..bus import Failure, MessageBus, NotFound, Outcome, Success, TimedOut, Worker
from ..config.settings import HttpConfig
from .kinesis import (
    PB_LIST_SHARDS,
    PB_LIST_STREAMS,
    PB_READ_SHARD,
    ListShards,
    ListStreams,
    ReadShard,
)

logger = logging.getLogger(__name__)

TEXT_PLAIN = "text/plain"
TEXT_HTML = "text/html"


class HttpGateway(Worker):
    """
    Translates HTTP requests into bus requests to the stream access worker.

    Routes:
        GET /                          stream links
        GET /{stream_name}             shard links of a stream
        GET /{stream_name}/{shard_id}  one page of records from the trim horizon

    Every route takes an optional ``limit`` query parameter.
    """

    name = "http-gateway"

    def __init__(self, bus: MessageBus, config: HttpConfig):
        super().__init__(bus)
        self.config = config
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self.stats = {
            "requests": 0,
            "not_found": 0,
            "timeouts": 0,
            "failures": 0
        }

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[self._error_middleware])
        app.router.add_get('/', self.list_streams)
        app.router.add_get('/{stream_name}', self.list_shards)
        app.router.add_get('/{stream_name}/{shard_id}', self.read_shard)
        return app

    async def on_start(self):
        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        try:
            self.site = web.TCPSite(self.runner, self.config.host, self.config.port)
            await self.site.start()
        except Exception:
            await self.on_stop()
            raise

        logger.info(f"HTTP gateway listening on {self.runner.addresses}")

    async def on_stop(self):
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        self.site = None
        self.runner = None

    async def list_streams(self, request: web_request.Request) -> Response:
        payload = self._build(ListStreams, limit=self._limit(request))
        outcome = await self._ask(PB_LIST_STREAMS, payload)
        if not isinstance(outcome, Success):
            return self._render_failure(outcome)

        stream_names = outcome.value.stream_names
        if not stream_names:
            return web.Response(text="no stream exists yet", content_type=TEXT_PLAIN)

        links = "<br/>".join(
            f"<a href='{html.escape(quote(name))}'>{html.escape(name)}</a>"
            for name in stream_names
        )
        return web.Response(text=links, content_type=TEXT_HTML)

    async def list_shards(self, request: web_request.Request) -> Response:
        payload = self._build(
            ListShards,
            stream_name=request.match_info['stream_name'],
            limit=self._limit(request)
        )
        outcome = await self._ask(PB_LIST_SHARDS, payload)
        if not isinstance(outcome, Success):
            return self._render_failure(outcome)

        shard_ids = outcome.value.shard_ids
        if not shard_ids:
            return web.Response(text="no shards exist yet", content_type=TEXT_PLAIN)

        base_url = str(request.url.with_query(None)).rstrip('/')
        links = "<br/>".join(
            f"<a href='{html.escape(base_url + '/' + quote(shard_id))}'>{html.escape(shard_id)}</a>"
            for shard_id in shard_ids
        )
        return web.Response(text=links, content_type=TEXT_HTML)

    async def read_shard(self, request: web_request.Request) -> Response:
        payload = self._build(
            ReadShard,
            stream_name=request.match_info['stream_name'],
            shard_id=request.match_info['shard_id'],
            limit=self._limit(request)
        )
        outcome = await self._ask(PB_READ_SHARD, payload)
        if not isinstance(outcome, Success):
            return self._render_failure(outcome)

        records = outcome.value.records
        if not records:
            return web.Response(text="no records exists yet", content_type=TEXT_PLAIN)

        body = "<br/><br/>".join(html.escape(record) for record in records)
        return web.Response(text=body, content_type=TEXT_HTML)

    async def _ask(self, postbox, payload) -> Outcome:
        self.stats["requests"] += 1
        return await self.ask(postbox, payload, timeout=self.config.request_timeout_seconds)

    def _render_failure(self, outcome: Outcome) -> Response:
        if isinstance(outcome, NotFound):
            self.stats["not_found"] += 1
            return web.Response(status=404, text=str(outcome.error), content_type=TEXT_PLAIN)

        if isinstance(outcome, TimedOut):
            self.stats["timeouts"] += 1
            return web.Response(
                status=504,
                text=f"no reply from {outcome.address} within {outcome.timeout}s",
                content_type=TEXT_PLAIN
            )

        if isinstance(outcome, Failure):
            self.stats["failures"] += 1
            logger.error(f"Request failed: {type(outcome.error).__name__}: {outcome.error}")
            return web.Response(status=500, text=str(outcome.error), content_type=TEXT_PLAIN)

        raise TypeError(f"unexpected outcome {outcome!r}")

    @staticmethod
    def _limit(request: web_request.Request) -> Optional[int]:
        raw = request.query.get('limit')
        if raw is None or raw == '':
            return None
        try:
            return int(raw)
        except ValueError:
            raise web.HTTPBadRequest(text=f"limit must be an integer, got {raw!r}", content_type=TEXT_PLAIN)

    @staticmethod
    def _build(request_type, **params):
        try:
            return request_type(**params)
        except ValueError as e:
            raise web.HTTPBadRequest(text=str(e), content_type=TEXT_PLAIN)

    @web.middleware
    async def _error_middleware(self, request: web_request.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unhandled error serving {request.path}: {e}", exc_info=True)
            return web.Response(status=500, text=str(e) or type(e).__name__, content_type=TEXT_PLAIN)

    async def health_check(self) -> Dict[str, Any]:
        health_status = await super().health_check()
        health_status["stats"] = self.stats.copy()

        if self._running and self.site is None:
            health_status["status"] = "unhealthy"
            health_status["error"] = "HTTP listener not started"

        return health_status
