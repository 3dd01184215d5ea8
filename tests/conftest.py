"""Pytest configuration and shared fixtures."""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from kinescope.bus import MessageBus
from kinescope.config.aws_config import AWSClientManager
from kinescope.config.settings import (
    AWSConfig,
    HealthConfig,
    HttpConfig,
    KinescopeSettings,
    KinesisConfig,
    LoggingConfig,
)
from kinescope.workers.kinesis import KinesisWorker

ACCOUNT_ID = "000000000000"


def client_error(code: str, message: str, operation: str) -> ClientError:
    return ClientError(
        error_response={'Error': {'Code': code, 'Message': message}},
        operation_name=operation
    )


class FakeKinesisClient:
    """
    In-memory stand-in for the aiobotocore Kinesis client.

    Mirrors the response shapes and ResourceNotFoundException messages of the
    real service for the four read operations Kinescope uses.
    """

    def __init__(self):
        self.streams: Dict[str, Dict[str, List[bytes]]] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, Exception] = {}
        self.delay = 0.0
        self.honour_limits = True
        self.closed = False
        self._iterators: Dict[str, Tuple[str, str]] = {}

    def add_stream(self, stream_name: str, shard_ids: Optional[List[str]] = None):
        self.streams[stream_name] = {shard_id: [] for shard_id in (shard_ids or [])}

    def put(self, stream_name: str, shard_id: str, *payloads: bytes):
        self.streams[stream_name][shard_id].extend(payloads)

    def calls_to(self, operation: str) -> List[Dict[str, Any]]:
        return [params for op, params in self.calls if op == operation]

    async def _enter(self, operation: str, params: Dict[str, Any]):
        self.calls.append((operation, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.failures:
            raise self.failures[operation]

    def _bounded(self, items: list, limit: Optional[int]) -> list:
        if limit is None or not self.honour_limits:
            return list(items)
        return list(items[:limit])

    def _stream_not_found(self, stream_name: str, operation: str) -> ClientError:
        return client_error(
            'ResourceNotFoundException',
            f"Stream {stream_name} under account {ACCOUNT_ID} not found.",
            operation
        )

    async def list_streams(self, **params):
        await self._enter('list_streams', params)
        names = self._bounded(list(self.streams), params.get('Limit'))
        return {
            'StreamNames': names,
            'HasMoreStreams': len(names) < len(self.streams)
        }

    async def list_shards(self, **params):
        await self._enter('list_shards', params)
        stream_name = params['StreamName']
        if stream_name not in self.streams:
            raise self._stream_not_found(stream_name, 'ListShards')

        shard_ids = self._bounded(list(self.streams[stream_name]), params.get('MaxResults'))
        return {'Shards': [{'ShardId': shard_id} for shard_id in shard_ids]}

    async def get_shard_iterator(self, **params):
        await self._enter('get_shard_iterator', params)
        stream_name = params['StreamName']
        shard_id = params['ShardId']

        if stream_name not in self.streams:
            raise self._stream_not_found(stream_name, 'GetShardIterator')
        if shard_id not in self.streams[stream_name]:
            raise client_error(
                'ResourceNotFoundException',
                f"Shard {shard_id} in stream {stream_name} under account {ACCOUNT_ID} does not exist",
                'GetShardIterator'
            )

        token = uuid.uuid4().hex
        self._iterators[token] = (stream_name, shard_id)
        return {'ShardIterator': token}

    async def get_records(self, **params):
        await self._enter('get_records', params)
        stream_name, shard_id = self._iterators.pop(params['ShardIterator'])

        payloads = self._bounded(self.streams[stream_name][shard_id], params.get('Limit'))
        return {
            'Records': [
                {
                    'SequenceNumber': str(index),
                    'PartitionKey': 'key',
                    'Data': payload
                }
                for index, payload in enumerate(payloads)
            ],
            'NextShardIterator': uuid.uuid4().hex,
            'MillisBehindLatest': 0
        }


class FakeClientContext:
    """Async context manager handing out the fake client, like ``session.client(...)``."""

    def __init__(self, client: FakeKinesisClient):
        self.client = client

    async def __aenter__(self):
        self.client.closed = False
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.client.closed = True
        return False


@pytest.fixture
def test_settings() -> KinescopeSettings:
    """Create test configuration."""
    return KinescopeSettings(
        service_name="test-kinescope",
        environment="local",
        aws=AWSConfig(
            region="eu-central-1",
            access_key_id="local",
            secret_access_key="local",
            endpoint_url="http://localhost:4566"
        ),
        kinesis=KinesisConfig(default_limit=100, max_in_flight=1),
        http=HttpConfig(host="127.0.0.1", port=0, request_timeout_seconds=2.0),
        health=HealthConfig(enabled=False, host="127.0.0.1", port=0),
        logging=LoggingConfig(level="DEBUG", format="text", output="stdout")
    )


@pytest.fixture(name="client_error")
def client_error_factory():
    """Factory for botocore ClientErrors shaped like Kinesis responses."""
    return client_error


@pytest.fixture
def fake_kinesis() -> FakeKinesisClient:
    return FakeKinesisClient()


@pytest.fixture
def mock_aws_client_manager(fake_kinesis):
    """Mock AWS client manager handing out the in-memory Kinesis client."""
    manager = Mock(spec=AWSClientManager)
    manager.kinesis_client = Mock(side_effect=lambda: FakeClientContext(fake_kinesis))
    return manager


@pytest.fixture
async def bus():
    bus = MessageBus()
    yield bus
    await bus.close()


@pytest.fixture
async def kinesis_worker(bus, mock_aws_client_manager, test_settings):
    worker = KinesisWorker(bus, mock_aws_client_manager, test_settings.kinesis)
    await worker.start()
    yield worker
    await worker.stop()
