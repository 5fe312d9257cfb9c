"""In-memory delivery queue drained by a single consumer."""

import heapq
import threading
import time
from datetime import datetime

import structlog

from thymer_inbox.models.queue import QueueItem

log = structlog.stdlib.get_logger()


class DeliveryQueue:
    """Ordered holding area for rendered items, keyed by a strictly increasing id.

    Ids are microsecond timestamps bumped past the last issued id, so they
    are unique and increasing even within one microsecond and still exact
    as JavaScript numbers. ``pop_oldest`` removes an item for good: delivery
    is at-most-once.

    With ``max_items`` unset the queue grows without bound while nobody
    reads it. With it set, enqueueing beyond the cap drops the oldest items.
    """

    def __init__(self, max_items: int | None = None):
        self._heap: list[int] = []
        self._items: dict[int, QueueItem] = {}
        self._last_id = 0
        self._max_items = max_items
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return self._issue_id()

    def _issue_id(self) -> int:
        candidate = max(self._last_id + 1, time.time_ns() // 1000)
        self._last_id = candidate
        return candidate

    def enqueue(self, item: QueueItem) -> QueueItem:
        """Add a ready-made item.

        Raises:
            ValueError: If an item with the same id is already queued
        """
        with self._lock:
            if item.id in self._items:
                raise ValueError(f"Queue item {item.id} is already queued")
            self._push(item)
            evicted = self._evict()

        self._log_enqueued(item, evicted)
        return item

    def submit(
        self,
        content: str,
        action: str = "append",
        collection: str | None = None,
        title: str | None = None,
        created_at: datetime | None = None,
    ) -> QueueItem:
        """Build an item with a fresh id and enqueue it."""
        fields = {"created_at": created_at} if created_at is not None else {}
        with self._lock:
            item = QueueItem(
                id=self._issue_id(),
                content=content,
                action=action,
                collection=collection,
                title=title,
                **fields,
            )
            self._push(item)
            evicted = self._evict()

        self._log_enqueued(item, evicted)
        return item

    def pop_oldest(self) -> QueueItem | None:
        """Remove and return the lowest-id item, or None when empty."""
        with self._lock:
            if not self._heap:
                return None
            item = self._items.pop(heapq.heappop(self._heap))

        log.info("queue_item_popped", item_id=item.id, remaining=len(self))
        return item

    def peek_all(self) -> list[QueueItem]:
        """Snapshot of every queued item in delivery order, without removing any."""
        with self._lock:
            return [self._items[item_id] for item_id in sorted(self._heap)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def _push(self, item: QueueItem) -> None:
        heapq.heappush(self._heap, item.id)
        self._items[item.id] = item
        self._last_id = max(self._last_id, item.id)

    def _evict(self) -> list[int]:
        evicted: list[int] = []
        if self._max_items is None:
            return evicted
        while len(self._heap) > self._max_items:
            item_id = heapq.heappop(self._heap)
            del self._items[item_id]
            evicted.append(item_id)
        return evicted

    def _log_enqueued(self, item: QueueItem, evicted: list[int]) -> None:
        if evicted:
            log.warning(
                "queue_items_evicted",
                evicted_ids=evicted,
                max_items=self._max_items,
            )
        log.info(
            "queue_item_enqueued",
            item_id=item.id,
            action=item.action,
            title=item.title,
            bytes=len(item.content),
        )
