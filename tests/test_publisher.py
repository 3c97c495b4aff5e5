"""
Tests for the Progress Publisher.
"""

import asyncio
import json

import pytest

from flowexec.events.publisher import (
    NODE_COMPLETE,
    NODE_START,
    SNAPSHOT,
    STATUS_CHANGED,
    ProgressPublisher,
)


async def drain(subscription):
    return [event async for event in subscription]


class TestProgressPublisher:
    """Tests for ordering, snapshots and replay."""

    @pytest.mark.asyncio
    async def test_sequence_numbers_are_per_execution(self):
        publisher = ProgressPublisher(buffer_size=10)
        assert publisher.publish("e1", NODE_START).seq == 1
        assert publisher.publish("e1", NODE_COMPLETE).seq == 2
        assert publisher.publish("e2", NODE_START).seq == 1
        assert publisher.last_seq("e1") == 2

    @pytest.mark.asyncio
    async def test_snapshot_then_deltas(self):
        publisher = ProgressPublisher(buffer_size=10)
        publisher.publish("e1", NODE_START, {"nodeId": "a"})

        subscription = publisher.subscribe("e1", {"status": "running"})
        publisher.publish("e1", NODE_COMPLETE, {"nodeId": "a"})
        publisher.close("e1")

        events = await drain(subscription)
        assert [e.kind for e in events] == [SNAPSHOT, NODE_COMPLETE]
        assert events[0].seq == 1
        assert events[0].data == {"status": "running"}
        assert events[1].seq == 2

    @pytest.mark.asyncio
    async def test_replay_after_last_event_id(self):
        publisher = ProgressPublisher(buffer_size=10)
        for kind in (NODE_START, NODE_COMPLETE, STATUS_CHANGED):
            publisher.publish("e1", kind)

        subscription = publisher.subscribe("e1", {}, last_event_id=1, finished=True)

        assert [e.seq for e in await drain(subscription)] == [2, 3]

    @pytest.mark.asyncio
    async def test_snapshot_when_buffer_lost_the_gap(self):
        publisher = ProgressPublisher(buffer_size=2)
        for _ in range(5):
            publisher.publish("e1", NODE_START)

        subscription = publisher.subscribe("e1", {"fresh": True}, last_event_id=1, finished=True)
        events = await drain(subscription)

        assert [e.kind for e in events] == [SNAPSHOT]
        assert events[0].seq == 5

    @pytest.mark.asyncio
    async def test_future_event_id_gets_snapshot(self):
        publisher = ProgressPublisher(buffer_size=10)
        publisher.publish("e1", NODE_START)

        subscription = publisher.subscribe("e1", {}, last_event_id=99, finished=True)

        assert [e.kind for e in await drain(subscription)] == [SNAPSHOT]

    @pytest.mark.asyncio
    async def test_finished_execution_stream_ends_after_snapshot(self):
        publisher = ProgressPublisher(buffer_size=10)
        publisher.publish("e1", STATUS_CHANGED)
        publisher.close("e1")

        subscription = publisher.subscribe("e1", {"status": "completed"})

        events = await asyncio.wait_for(drain(subscription), 1)
        assert [e.kind for e in events] == [SNAPSHOT]
        assert publisher.subscriber_count("e1") == 0

    @pytest.mark.asyncio
    async def test_fan_out_and_unsubscribe(self):
        publisher = ProgressPublisher(buffer_size=10)
        first = publisher.subscribe("e1", {})
        second = publisher.subscribe("e1", {})
        assert publisher.subscriber_count("e1") == 2

        publisher.unsubscribe(first)
        publisher.publish("e1", NODE_START)
        publisher.close("e1")

        assert [e.kind for e in await drain(first)] == [SNAPSHOT]
        assert [e.kind for e in await drain(second)] == [SNAPSHOT, NODE_START]

    def test_sse_format(self):
        publisher = ProgressPublisher(buffer_size=10)
        event = publisher.publish("e1", NODE_START, {"nodeId": "a"})

        lines = event.to_sse().split("\n")

        assert lines[0] == "id: 1"
        assert lines[1] == "event: node_start"
        payload = json.loads(lines[2][len("data: "):])
        assert payload["executionId"] == "e1"
        assert payload["data"] == {"nodeId": "a"}
        assert event.to_sse().endswith("\n\n")


class TestRetention:
    """Tests for dropping finished streams."""

    @pytest.mark.asyncio
    async def test_finished_streams_are_dropped(self):
        publisher = ProgressPublisher(buffer_size=10, retention=0)
        publisher.publish("e1", NODE_START)
        publisher.publish("e2", NODE_START)

        publisher.close("e1")

        assert publisher.tracked() == 1
        assert publisher.last_seq("e1") == 0
        assert "e1" not in publisher._buffers
        assert "e1" not in publisher._finished

    @pytest.mark.asyncio
    async def test_replay_survives_until_retention_expires(self):
        publisher = ProgressPublisher(buffer_size=10, retention=0.05)
        publisher.publish("e1", NODE_START)
        publisher.publish("e1", STATUS_CHANGED)
        publisher.close("e1")

        replay = publisher.subscribe("e1", {}, last_event_id=1, finished=True)
        assert [e.seq for e in await drain(replay)] == [2]

        await asyncio.sleep(0.1)

        assert publisher.tracked() == 0
        late = publisher.subscribe("e1", {"status": "completed"}, last_event_id=1, finished=True)
        assert [e.kind for e in await drain(late)] == [SNAPSHOT]
