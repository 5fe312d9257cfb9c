"""Server-Sent Events framing and the bounded drain loop behind ``GET /stream``."""

import asyncio
import json
import time
from typing import AsyncIterator, Awaitable, Callable

import structlog

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.models.queue import QueueItem

log = structlog.stdlib.get_logger()

CONNECTED_EVENT = "event: connected\ndata: {}\n\n"
HEARTBEAT = ": heartbeat\n\n"


def format_item(item: QueueItem) -> str:
    return f"data: {json.dumps(item.to_wire(), separators=(',', ':'))}\n\n"


async def drain_stream(
    queue: DeliveryQueue,
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: float = 2.0,
    window: float = 25.0,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[str]:
    """Yield SSE frames for one bounded connection.

    Sends ``event: connected`` first, then on every tick either pops one item
    or sends a heartbeat comment. The stream ends after ``window`` seconds so
    the consumer reconnects, or as soon as the client is gone. Disconnects
    are checked before every pop so no item is taken for a client that will
    never read it.
    """
    started = clock()
    deadline = started + window
    next_tick = started + poll_interval
    sent = 0

    yield CONNECTED_EVENT
    log.info("stream_client_connected")

    try:
        while next_tick < deadline:
            await asyncio.sleep(max(next_tick - clock(), 0.0))
            next_tick += poll_interval

            if await is_disconnected():
                log.info("stream_client_disconnected", items_sent=sent)
                return

            item = queue.pop_oldest()
            if item is None:
                yield HEARTBEAT
                continue

            yield format_item(item)
            sent += 1
            log.debug("stream_item_sent", item_id=item.id, action=item.action)
    except asyncio.CancelledError:
        log.info("stream_cancelled", items_sent=sent)
        raise

    log.debug("stream_window_elapsed", items_sent=sent)
