"""Turn labeled changes into consumer content and hand them to the queue."""

from typing import Any, Protocol

import structlog

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.models.record import LabeledRecord
from thymer_inbox.sync.models import UpsertResult

log = structlog.stdlib.get_logger()


class Renderer(Protocol):
    """Pure function from a labeled record to the consumer's content string."""

    def render(self, record: LabeledRecord) -> str: ...


class FrontmatterRenderer:
    """Markdown with a flat ``key: value`` frontmatter block.

    The consumer reads ``collection``, ``external_id`` and ``verb`` from the
    frontmatter to decide where and how to apply the change. Empty fields
    are left out.
    """

    def render(self, record: LabeledRecord) -> str:
        lines = [
            "---",
            f"collection: {record.collection}",
            f"external_id: {record.id}",
            f"verb: {record.verb}",
            f"title: {self._scalar(record.title)}",
        ]
        for key, value in record.fields.items():
            if value is None or value == "":
                continue
            lines.append(f"{key}: {self._scalar(value)}")
        lines.append("---")

        content = "\n".join(lines) + "\n"
        if record.body:
            content += "\n" + record.body.rstrip("\n") + "\n"
        return content

    @staticmethod
    def _scalar(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return " ".join(str(value).splitlines()).strip()


class ChangeDispatcher:
    """Batch callback that renders every change and enqueues it for the consumer."""

    def __init__(self, queue: DeliveryQueue, renderer: Renderer | None = None):
        self._queue = queue
        self._renderer = renderer or FrontmatterRenderer()

    def __call__(self, source: str, changes: list[UpsertResult]) -> int:
        enqueued = 0
        for change in changes:
            if change.verb is None:
                continue
            labeled = change.record.to_labeled(change.verb)
            try:
                content = self._renderer.render(labeled)
            except Exception as e:
                log.error(
                    "change_render_failed",
                    source=source,
                    record_id=labeled.id,
                    error=str(e),
                )
                continue

            self._queue.submit(content, action="append", title=labeled.title)
            enqueued += 1

        log.info("changes_dispatched", source=source, changes=len(changes), enqueued=enqueued)
        return enqueued
