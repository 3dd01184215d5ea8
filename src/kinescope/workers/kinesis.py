"""Stream access worker: reads Kinesis streams on behalf of other workers."""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from ..bus import MessageBus, Postbox, Request, Response, Worker
from ..config.aws_config import AWSClientManager
from ..config.settings import KinesisConfig
from ..errors import (
    DecodeFailure,
    ResourceNotFound,
    ShardNotFound,
    StreamNotFound,
    UpstreamFailure,
)
from ..utils.logging import log_function_call

logger = logging.getLogger(__name__)

# Kinesis API bound for Limit / MaxResults
MAX_LIMIT = 10000

# Every read starts from the oldest retained record; there are no stored offsets
SHARD_ITERATOR_TYPE = "TRIM_HORIZON"


def _check_limit(limit: Optional[int]):
    if limit is None:
        return
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
        raise ValueError(f"limit must be an integer between 1 and {MAX_LIMIT}, got {limit!r}")


def _check_name(field: str, value: str):
    if not isinstance(value, str) or not value:
        raise ValueError(f"{field} must be a non-empty string")


@dataclass(frozen=True)
class ListStreams(Request):
    limit: Optional[int] = None

    def __post_init__(self):
        _check_limit(self.limit)


@dataclass(frozen=True)
class ListStreamsRes(Response):
    stream_names: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'stream_names', tuple(self.stream_names))


@dataclass(frozen=True)
class ListShards(Request):
    stream_name: str
    limit: Optional[int] = None

    def __post_init__(self):
        _check_name('stream_name', self.stream_name)
        _check_limit(self.limit)


@dataclass(frozen=True)
class ListShardsRes(Response):
    shard_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'shard_ids', tuple(self.shard_ids))


@dataclass(frozen=True)
class ReadShard(Request):
    stream_name: str
    shard_id: str
    limit: Optional[int] = None

    def __post_init__(self):
        _check_name('stream_name', self.stream_name)
        _check_name('shard_id', self.shard_id)
        _check_limit(self.limit)


@dataclass(frozen=True)
class ReadShardRes(Response):
    records: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'records', tuple(self.records))


PB_LIST_STREAMS = Postbox("kinesis.list-streams", ListStreams, ListStreamsRes)
PB_LIST_SHARDS = Postbox("kinesis.list-shards", ListShards, ListShardsRes)
PB_READ_SHARD = Postbox("kinesis.read-shard", ReadShard, ReadShardRes)


def decode_record(data: bytes) -> str:
    """Decode a record payload as UTF-8, raising DecodeFailure if it is not."""
    try:
        return bytes(data).decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeFailure(bytes(data)) from e


class KinesisWorker(Worker):
    """
    Owns the Kinesis client and serves the three read operations over the bus.

    Each read is a single page: no iterator is kept between requests, no
    remote call is retried, and no metadata is cached.
    """

    name = "kinesis"

    def __init__(self, bus: MessageBus, client_manager: AWSClientManager, config: KinesisConfig):
        super().__init__(bus)
        self.client_manager = client_manager
        self.config = config

        self._client = None
        self._exit_stack: Optional[AsyncExitStack] = None

        self.stats = {
            "list_streams_calls": 0,
            "list_shards_calls": 0,
            "read_shard_calls": 0,
            "records_read": 0,
            "decode_failures": 0,
            "not_found": 0,
            "upstream_failures": 0,
            "last_read_time": None
        }

    async def on_start(self):
        self._exit_stack = AsyncExitStack()
        self._client = await self._exit_stack.enter_async_context(self.client_manager.kinesis_client())

        try:
            max_in_flight = self.config.max_in_flight
            self.receive(PB_LIST_STREAMS, self.list_streams, max_in_flight=max_in_flight)
            self.receive(PB_LIST_SHARDS, self.list_shards, max_in_flight=max_in_flight)
            self.receive(PB_READ_SHARD, self.read_shard, max_in_flight=max_in_flight)
        except Exception:
            await self._close_client()
            raise

    async def on_stop(self):
        await self._close_client()

    async def _close_client(self):
        if self._exit_stack:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None

    @log_function_call
    async def list_streams(self, req: ListStreams) -> ListStreamsRes:
        limit = self._resolve_limit(req.limit)
        self.stats["list_streams_calls"] += 1

        res = await self._call("list_streams", Limit=limit)

        return ListStreamsRes(res.get("StreamNames", [])[:limit])

    @log_function_call
    async def list_shards(self, req: ListShards) -> ListShardsRes:
        limit = self._resolve_limit(req.limit)
        self.stats["list_shards_calls"] += 1

        res = await self._call(
            "list_shards",
            on_not_found=lambda e: StreamNotFound(req.stream_name),
            StreamName=req.stream_name,
            MaxResults=limit
        )

        shard_ids = [shard["ShardId"] for shard in res.get("Shards", [])[:limit]]
        return ListShardsRes(shard_ids)

    @log_function_call
    async def read_shard(self, req: ReadShard) -> ReadShardRes:
        limit = self._resolve_limit(req.limit)
        self.stats["read_shard_calls"] += 1

        def not_found(e: ClientError) -> ResourceNotFound:
            message = e.response.get("Error", {}).get("Message", "")
            if message.lower().startswith("shard"):
                return ShardNotFound(req.stream_name, req.shard_id)
            return StreamNotFound(req.stream_name)

        iterator_res = await self._call(
            "get_shard_iterator",
            on_not_found=not_found,
            StreamName=req.stream_name,
            ShardId=req.shard_id,
            ShardIteratorType=SHARD_ITERATOR_TYPE
        )

        shard_iterator = iterator_res.get("ShardIterator")
        if not shard_iterator:
            return ReadShardRes()

        records_res = await self._call(
            "get_records",
            on_not_found=not_found,
            ShardIterator=shard_iterator,
            Limit=limit
        )

        records = [
            self._render_record(record.get("Data", b""))
            for record in records_res.get("Records", [])[:limit]
        ]

        self.stats["records_read"] += len(records)
        self.stats["last_read_time"] = datetime.now().isoformat()

        return ReadShardRes(records)

    def _render_record(self, data: bytes) -> str:
        try:
            return decode_record(data)
        except DecodeFailure as e:
            self.stats["decode_failures"] += 1
            logger.warning(f"Record is not valid UTF-8, substituting placeholder ({len(e.data)} bytes)")
            return str(e)

    def _resolve_limit(self, limit: Optional[int]) -> int:
        return self.config.default_limit if limit is None else limit

    async def _call(
        self,
        operation: str,
        on_not_found: Optional[Callable[[ClientError], ResourceNotFound]] = None,
        **params
    ) -> Dict[str, Any]:
        """Invoke one Kinesis operation, translating botocore errors."""
        if self._client is None:
            raise UpstreamFailure(operation, RuntimeError("Kinesis client is not open"))

        try:
            return await getattr(self._client, operation)(**params)

        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")

            if error_code == "ResourceNotFoundException" and on_not_found is not None:
                self.stats["not_found"] += 1
                raise on_not_found(e) from e

            self.stats["upstream_failures"] += 1
            logger.error(f"Kinesis {operation} failed with {error_code}: {e}")
            raise UpstreamFailure(operation, e) from e

        except BotoCoreError as e:
            self.stats["upstream_failures"] += 1
            logger.error(f"Kinesis {operation} failed: {e}")
            raise UpstreamFailure(operation, e) from e

    async def health_check(self) -> Dict[str, Any]:
        health_status = await super().health_check()
        health_status["stats"] = self.get_stats()

        if self._running and self._client is None:
            health_status["status"] = "unhealthy"
            health_status["error"] = "Kinesis client is not open"

        calls = (
            self.stats["list_streams_calls"]
            + self.stats["list_shards_calls"]
            + self.stats["read_shard_calls"]
        )
        if health_status["status"] == "healthy" and calls > 0:
            error_rate = self.stats["upstream_failures"] / calls
            if error_rate > 0.1:
                health_status["status"] = "degraded"
                health_status["warning"] = f"High upstream error rate: {error_rate:.2%}"

        return health_status

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "client_open": self._client is not None
        }
