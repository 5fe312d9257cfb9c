"""Pydantic models for items held in the delivery queue."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class QueueItem(BaseModel):
    """Rendered, self-contained payload waiting for the consumer.

    Items are immutable once enqueued. ``id`` orders delivery and is unique
    within one queue.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = Field(default=..., ge=0, description="Strictly increasing ordering key")
    content: str = Field(default=..., description="Rendered payload for the consumer")
    action: str = Field(default="append", description="What the consumer should do with it")
    collection: str | None = Field(default=None, description="Optional target collection")
    title: str | None = Field(default=None, description="Optional display title")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="createdAt",
        description="Enqueue timestamp",
    )

    def to_wire(self) -> dict:
        """JSON-ready dict in the consumer's field naming."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SubmittedItem(BaseModel):
    """Body accepted by ``POST /queue``."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(default=..., min_length=1)
    action: str = Field(default="append", min_length=1)
    collection: str | None = None
    title: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
