"""Tests for SSE framing and the bounded stream drain loop."""

import asyncio
import json

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.delivery.streaming import (
    CONNECTED_EVENT,
    HEARTBEAT,
    drain_stream,
    format_item,
)


def collect(queue: DeliveryQueue, disconnected: bool = False, **kwargs) -> list[str]:
    async def is_disconnected() -> bool:
        return disconnected

    async def run() -> list[str]:
        return [frame async for frame in drain_stream(queue, is_disconnected, **kwargs)]

    return asyncio.run(run())


class TestFormatItem:
    def test_data_frame_carries_compact_json(self):
        item = DeliveryQueue().submit("hello", title="Greeting")

        frame = format_item(item)

        assert frame.startswith("data: {")
        assert frame.endswith("}\n\n")
        assert ", " not in frame
        assert json.loads(frame[len("data: ") : -2]) == item.to_wire()


class TestDrainStream:
    def test_connected_event_comes_first(self):
        frames = collect(DeliveryQueue(), poll_interval=0.01, window=0.05)

        assert frames[0] == CONNECTED_EVENT

    def test_items_are_sent_one_per_tick_in_order(self):
        queue = DeliveryQueue()
        first = queue.submit("first")
        second = queue.submit("second")

        frames = collect(queue, poll_interval=0.01, window=0.05)

        assert frames[1] == format_item(first)
        assert frames[2] == format_item(second)
        assert all(frame == HEARTBEAT for frame in frames[3:])
        assert len(queue) == 0

    def test_idle_ticks_send_heartbeats(self):
        frames = collect(DeliveryQueue(), poll_interval=0.01, window=0.05)

        assert len(frames) > 1
        assert set(frames[1:]) == {HEARTBEAT}

    def test_disconnected_client_takes_nothing(self):
        queue = DeliveryQueue()
        queue.submit("kept")

        frames = collect(queue, disconnected=True, poll_interval=0.01, window=0.05)

        assert frames == [CONNECTED_EVENT]
        assert len(queue) == 1

    def test_window_shorter_than_interval_only_connects(self):
        queue = DeliveryQueue()
        queue.submit("waiting")

        frames = collect(queue, poll_interval=1.0, window=0.5)

        assert frames == [CONNECTED_EVENT]
        assert len(queue) == 1
