"""Tests for the stream access worker."""

import pytest
from botocore.exceptions import EndpointConnectionError

from kinescope.config.settings import KinesisConfig
from kinescope.errors import (
    DecodeFailure,
    HandlerFailed,
    ShardNotFound,
    StreamNotFound,
    UpstreamFailure,
)
from kinescope.workers.kinesis import (
    PB_LIST_SHARDS,
    PB_LIST_STREAMS,
    PB_READ_SHARD,
    SHARD_ITERATOR_TYPE,
    KinesisWorker,
    ListShards,
    ListShardsRes,
    ListStreams,
    ListStreamsRes,
    ReadShard,
    ReadShardRes,
    decode_record,
)

pytestmark = pytest.mark.unit


class TestRequests:

    @pytest.mark.parametrize("limit", [0, -1, 10001, 1.5, "10", True])
    def test_invalid_limit_rejected(self, limit):
        with pytest.raises(ValueError):
            ListStreams(limit)

    def test_limit_bounds_accepted(self):
        assert ListStreams(1).limit == 1
        assert ListStreams(10000).limit == 10000
        assert ListStreams().limit is None

    def test_identifiers_required(self):
        with pytest.raises(ValueError):
            ListShards("")
        with pytest.raises(ValueError):
            ReadShard("orders", "")

    def test_responses_hold_tuples(self):
        res = ReadShardRes(["a", "b"])

        assert res.records == ("a", "b")
        assert res.to_dict() == {"records": ("a", "b")}


class TestDecodeRecord:

    def test_utf8(self):
        assert decode_record("héllo".encode("utf-8")) == "héllo"

    def test_invalid_utf8(self):
        with pytest.raises(DecodeFailure) as exc_info:
            decode_record(b"\xff\xfe")

        assert exc_info.value.data == b"\xff\xfe"
        assert str(exc_info.value) == "failed to parse as UTF8 String: b'\\xff\\xfe'"


class TestListStreams:

    @pytest.mark.asyncio
    async def test_empty_store(self, bus, kinesis_worker):
        res = await bus.request(PB_LIST_STREAMS, ListStreams(100), timeout=1)

        assert res == ListStreamsRes([])

    @pytest.mark.asyncio
    async def test_remote_order_preserved(self, bus, kinesis_worker, fake_kinesis):
        for name in ["zeta", "alpha", "orders"]:
            fake_kinesis.add_stream(name)

        res = await bus.request(PB_LIST_STREAMS, ListStreams(), timeout=1)

        assert res.stream_names == ("zeta", "alpha", "orders")

    @pytest.mark.asyncio
    async def test_default_limit_applied(self, bus, kinesis_worker, fake_kinesis):
        await bus.request(PB_LIST_STREAMS, ListStreams(), timeout=1)

        assert fake_kinesis.calls_to("list_streams") == [{"Limit": 100}]

    @pytest.mark.asyncio
    async def test_never_more_than_limit(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.honour_limits = False
        for i in range(10):
            fake_kinesis.add_stream(f"stream-{i}")

        res = await bus.request(PB_LIST_STREAMS, ListStreams(3), timeout=1)

        assert res.stream_names == ("stream-0", "stream-1", "stream-2")

    @pytest.mark.asyncio
    async def test_upstream_failure_not_retried(self, bus, kinesis_worker, fake_kinesis, client_error):
        fake_kinesis.failures["list_streams"] = client_error(
            "LimitExceededException", "Rate exceeded", "ListStreams"
        )

        with pytest.raises(HandlerFailed) as exc_info:
            await bus.request(PB_LIST_STREAMS, ListStreams(), timeout=1)

        assert isinstance(exc_info.value.cause, UpstreamFailure)
        assert exc_info.value.cause.operation == "list_streams"
        assert len(fake_kinesis.calls_to("list_streams")) == 1
        assert kinesis_worker.stats["upstream_failures"] == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_upstream_failure(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.failures["list_streams"] = EndpointConnectionError(endpoint_url="http://localhost:4566")

        with pytest.raises(HandlerFailed) as exc_info:
            await bus.request(PB_LIST_STREAMS, ListStreams(), timeout=1)

        cause = exc_info.value.cause
        assert isinstance(cause, UpstreamFailure)
        assert isinstance(cause.cause, EndpointConnectionError)


class TestListShards:

    @pytest.mark.asyncio
    async def test_lists_shards(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders", ["shard-000"])

        res = await bus.request(PB_LIST_SHARDS, ListShards("orders", limit=100), timeout=1)

        assert res == ListShardsRes(["shard-000"])
        assert fake_kinesis.calls_to("list_shards") == [{"StreamName": "orders", "MaxResults": 100}]

    @pytest.mark.asyncio
    async def test_zero_shards(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders")

        res = await bus.request(PB_LIST_SHARDS, ListShards("orders"), timeout=1)

        assert res.shard_ids == ()

    @pytest.mark.asyncio
    async def test_never_more_than_limit(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.honour_limits = False
        fake_kinesis.add_stream("orders", [f"shard-{i:03d}" for i in range(5)])

        res = await bus.request(PB_LIST_SHARDS, ListShards("orders", limit=2), timeout=1)

        assert res.shard_ids == ("shard-000", "shard-001")

    @pytest.mark.asyncio
    async def test_stream_not_found(self, bus, kinesis_worker):
        with pytest.raises(HandlerFailed) as exc_info:
            await bus.request(PB_LIST_SHARDS, ListShards("missing"), timeout=1)

        cause = exc_info.value.cause
        assert isinstance(cause, StreamNotFound)
        assert cause.stream_name == "missing"
        assert kinesis_worker.stats["not_found"] == 1


class TestReadShard:

    @pytest.mark.asyncio
    async def test_reads_records_with_placeholder(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders", ["shard-000"])
        fake_kinesis.put("orders", "shard-000", b"a", b"b", b"\xc3\x28")

        res = await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000", limit=10), timeout=1)

        assert res.records == ("a", "b", "failed to parse as UTF8 String: b'\\xc3('")
        assert kinesis_worker.stats["decode_failures"] == 1
        assert kinesis_worker.stats["records_read"] == 3

    @pytest.mark.asyncio
    async def test_invalid_record_does_not_suppress_others(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders", ["shard-000"])
        fake_kinesis.put("orders", "shard-000", b"\xff", b"first", b"\xfe\xfd", b"second")

        res = await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000"), timeout=1)

        assert len(res.records) == 4
        assert res.records[1] == "first"
        assert res.records[3] == "second"
        assert res.records[0].startswith("failed to parse as UTF8 String")
        assert res.records[2].startswith("failed to parse as UTF8 String")

    @pytest.mark.asyncio
    async def test_starts_at_trim_horizon_with_fresh_iterator(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders", ["shard-000"])
        fake_kinesis.put("orders", "shard-000", b"a", b"b")

        first = await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000", limit=5), timeout=1)
        second = await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000", limit=5), timeout=1)

        assert first == second == ReadShardRes(["a", "b"])

        iterator_calls = fake_kinesis.calls_to("get_shard_iterator")
        assert len(iterator_calls) == 2
        assert all(call["ShardIteratorType"] == SHARD_ITERATOR_TYPE == "TRIM_HORIZON" for call in iterator_calls)

        record_calls = fake_kinesis.calls_to("get_records")
        assert len(record_calls) == 2
        assert record_calls[0]["ShardIterator"] != record_calls[1]["ShardIterator"]
        assert record_calls[0]["Limit"] == 5

    @pytest.mark.asyncio
    async def test_single_page_only(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders", ["shard-000"])
        fake_kinesis.put("orders", "shard-000", *[str(i).encode() for i in range(10)])

        res = await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000", limit=4), timeout=1)

        assert res.records == ("0", "1", "2", "3")
        assert len(fake_kinesis.calls_to("get_records")) == 1

    @pytest.mark.asyncio
    async def test_empty_shard(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("orders", ["shard-000"])

        res = await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000"), timeout=1)

        assert res.records == ()

    @pytest.mark.asyncio
    async def test_stream_not_found(self, bus, kinesis_worker):
        with pytest.raises(HandlerFailed) as exc_info:
            await bus.request(PB_READ_SHARD, ReadShard("missing", "shard-000"), timeout=1)

        assert isinstance(exc_info.value.cause, StreamNotFound)

    @pytest.mark.asyncio
    async def test_shard_not_found(self, bus, kinesis_worker, fake_kinesis):
        fake_kinesis.add_stream("shard-events", ["shard-000"])

        with pytest.raises(HandlerFailed) as exc_info:
            await bus.request(PB_READ_SHARD, ReadShard("shard-events", "shard-999"), timeout=1)

        cause = exc_info.value.cause
        assert isinstance(cause, ShardNotFound)
        assert cause.shard_id == "shard-999"
        assert cause.stream_name == "shard-events"

    @pytest.mark.asyncio
    async def test_expired_iterator_is_upstream_failure(self, bus, kinesis_worker, fake_kinesis, client_error):
        fake_kinesis.add_stream("orders", ["shard-000"])
        fake_kinesis.failures["get_records"] = client_error(
            "ExpiredIteratorException", "Iterator expired", "GetRecords"
        )

        with pytest.raises(HandlerFailed) as exc_info:
            await bus.request(PB_READ_SHARD, ReadShard("orders", "shard-000"), timeout=1)

        assert isinstance(exc_info.value.cause, UpstreamFailure)
        assert len(fake_kinesis.calls_to("get_shard_iterator")) == 1


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_client_opened_on_start_and_closed_on_stop(
        self, bus, mock_aws_client_manager, fake_kinesis
    ):
        worker = KinesisWorker(bus, mock_aws_client_manager, KinesisConfig())

        await worker.start()
        assert mock_aws_client_manager.kinesis_client.call_count == 1
        assert not fake_kinesis.closed
        assert sorted(bus.addresses) == [
            "kinesis.list-shards",
            "kinesis.list-streams",
            "kinesis.read-shard",
        ]

        await worker.stop()
        assert fake_kinesis.closed
        assert bus.addresses == []

    @pytest.mark.asyncio
    async def test_health_check(self, kinesis_worker, fake_kinesis):
        health = await kinesis_worker.health_check()

        assert health["status"] == "healthy"
        assert health["stats"]["client_open"] is True

    @pytest.mark.asyncio
    async def test_health_degrades_on_upstream_errors(self, bus, kinesis_worker, fake_kinesis, client_error):
        fake_kinesis.failures["list_streams"] = client_error(
            "LimitExceededException", "Rate exceeded", "ListStreams"
        )
        await bus.ask(PB_LIST_STREAMS, ListStreams(), timeout=1)

        health = await kinesis_worker.health_check()

        assert health["status"] == "degraded"
        assert "error rate" in health["warning"]
