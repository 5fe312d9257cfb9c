"""Pydantic models for synced records, stored snapshots and labeled changes."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SourceKind(str, Enum):
    """Remote systems of record the engine knows how to poll."""

    GITHUB = "github"
    CALENDAR = "calendar"
    READWISE = "readwise"


class Classification(str, Enum):
    """Outcome of comparing a fetched record with its stored snapshot."""

    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    UNCHANGED = "unchanged"


class RetractionPolicy(str, Enum):
    """How a source signals that a record went away.

    No source infers retraction from a record being absent in a fetch.
    """

    NEVER = "never"
    STATUS_FIELD = "status_field"


def utc_iso(value: datetime | None) -> str | None:
    """Serialize a datetime as a UTC ISO string so equal instants compare equal."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class StoredSnapshot(BaseModel):
    """Last observed state of one record, persisted as the comparison baseline."""

    id: str = Field(default=..., description="External identifier of the record")
    fields: dict[str, Any] = Field(
        default_factory=dict, description="JSON-safe tracked fields at the time of storage"
    )
    retracted: bool = Field(default=False, description="Record was retracted when stored")
    updated_at: datetime | None = Field(
        default=None, description="Remote last-modified timestamp when stored"
    )
    child_ids: list[str] = Field(
        default_factory=list, description="Sorted ids of every child seen so far"
    )
    stored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LabeledRecord(BaseModel):
    """Source-independent view of a change, the only shape a renderer sees."""

    id: str
    collection: str
    verb: str
    title: str
    body: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)


class SyncRecord(BaseModel):
    """Normalized record fetched from a remote source.

    Subclasses declare which fields are tracked for change detection, how
    the identifier is derived from immutable source fields, and how the
    transition verb is worded for their source.
    """

    model_config = ConfigDict(frozen=True)

    source: ClassVar[SourceKind]
    collection: ClassVar[str]
    timestamp_fallback: ClassVar[bool] = True

    id: str = Field(default="", description="Stable external identifier")
    title: str = Field(default="", description="Human title")
    body: str = Field(default="", description="Free text body")
    updated_at: datetime | None = Field(
        default=None, description="Remote last-modified timestamp"
    )

    def tracked_fields(self) -> dict[str, Any]:
        """Fields whose change means the record changed."""
        return {"title": self.title}

    def child_ids(self) -> set[str]:
        return set()

    @property
    def is_retracted(self) -> bool:
        return False

    def derive_verb(
        self, old: StoredSnapshot | None, classification: Classification
    ) -> str:
        """Word the transition from ``old`` to this record."""
        if classification is Classification.CREATED:
            return "created"
        if classification is Classification.CANCELLED:
            return "cancelled"
        return "updated"

    def display_fields(self) -> dict[str, Any]:
        return {}

    def to_labeled(self, verb: str) -> LabeledRecord:
        return LabeledRecord(
            id=self.id,
            collection=self.collection,
            verb=verb,
            title=self.title,
            body=self.body,
            fields=self.display_fields(),
        )

    def to_snapshot(self, previous: StoredSnapshot | None = None) -> StoredSnapshot:
        """Build the snapshot to persist, merging child ids with ``previous``."""
        child_ids = set(self.child_ids())
        if previous is not None:
            child_ids |= set(previous.child_ids)
        return StoredSnapshot(
            id=self.id,
            fields=self.tracked_fields(),
            retracted=self.is_retracted,
            updated_at=self.updated_at,
            child_ids=sorted(child_ids),
        )


class IssueRecord(SyncRecord):
    """GitHub issue or pull request."""

    source: ClassVar[SourceKind] = SourceKind.GITHUB
    collection: ClassVar[str] = "GitHub"

    kind: Literal["issue"] = "issue"
    repo: str = Field(default=..., description="owner/repo")
    number: int = Field(default=..., ge=1)
    item_type: Literal["issue", "pull_request"] = "issue"
    state: str = Field(default="open", description="open or closed")
    merged: bool = False
    url: str = ""
    author: str = ""
    labels: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    closed_at: datetime | None = None

    @staticmethod
    def make_id(repo: str, number: int) -> str:
        return f"github_{repo.replace('/', '_')}_{number}"

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and "repo" in data and "number" in data:
            data = {**data, "id": cls.make_id(data["repo"], data["number"])}
        return data

    def tracked_fields(self) -> dict[str, Any]:
        return {"title": self.title, "state": self.state, "merged": self.merged}

    def derive_verb(
        self, old: StoredSnapshot | None, classification: Classification
    ) -> str:
        if classification is Classification.CREATED:
            return "opened"
        if old is not None:
            previous_state = old.fields.get("state")
            if previous_state != "closed" and self.state == "closed":
                return "merged" if self.merged else "closed"
            if previous_state == "closed" and self.state == "open":
                return "reopened"
            if self.merged and not old.fields.get("merged"):
                return "merged"
        return "updated"

    def display_fields(self) -> dict[str, Any]:
        return {
            "repo": self.repo,
            "number": self.number,
            "type": self.item_type,
            "state": "merged" if self.merged else self.state,
            "author": self.author or None,
            "labels": ", ".join(self.labels) or None,
            "url": self.url or None,
        }


class EventRecord(SyncRecord):
    """Google Calendar event instance."""

    source: ClassVar[SourceKind] = SourceKind.CALENDAR
    collection: ClassVar[str] = "Calendar"

    kind: Literal["event"] = "event"
    native_id: str = Field(default=..., min_length=1)
    calendar_id: str = ""
    calendar_label: str = ""
    location: str = ""
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    attendees: list[str] = Field(default_factory=list)
    meet_link: str = ""
    status: str = "confirmed"
    created_at: datetime | None = None

    @staticmethod
    def make_id(native_id: str) -> str:
        return f"gcal_{native_id}"

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("native_id"):
            data = {**data, "id": cls.make_id(data["native_id"])}
        return data

    @property
    def is_retracted(self) -> bool:
        return self.status == "cancelled"

    def tracked_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "start": utc_iso(self.start),
            "end": utc_iso(self.end),
            "location": self.location,
            "status": self.status,
        }

    def display_fields(self) -> dict[str, Any]:
        return {
            "calendar": self.calendar_label or None,
            "start": int(as_aware(self.start).timestamp()) if self.start else None,
            "end": int(as_aware(self.end).timestamp()) if self.end else None,
            "all_day": True if self.all_day else None,
            "location": self.location or None,
            "attendees": ", ".join(self.attendees) or None,
            "meet_link": self.meet_link or None,
            "status": self.status,
        }


class HighlightRecord(BaseModel):
    """A highlight (child annotation) belonging to a Readwise document."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str = ""
    note: str = ""
    updated_at: datetime | None = None


class DocumentRecord(SyncRecord):
    """Readwise Reader document together with its highlights.

    Only the highlight ids take part in change detection: reading progress
    and other document edits never re-announce a document.
    """

    source: ClassVar[SourceKind] = SourceKind.READWISE
    collection: ClassVar[str] = "Readwise"
    timestamp_fallback: ClassVar[bool] = False

    kind: Literal["document"] = "document"
    native_id: str = Field(default=..., min_length=1)
    author: str = ""
    category: str = ""
    summary: str = ""
    url: str = ""
    source_url: str = ""
    highlights: list[HighlightRecord] = Field(default_factory=list)

    @staticmethod
    def make_id(native_id: str) -> str:
        return f"readwise_{native_id}"

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("native_id"):
            data = {**data, "id": cls.make_id(data["native_id"])}
        return data

    def tracked_fields(self) -> dict[str, Any]:
        return {}

    def child_ids(self) -> set[str]:
        return {highlight.id for highlight in self.highlights}

    def derive_verb(
        self, old: StoredSnapshot | None, classification: Classification
    ) -> str:
        if classification is Classification.CREATED:
            return "highlighted"
        return "updated"

    def display_fields(self) -> dict[str, Any]:
        return {
            "author": self.author or None,
            "category": self.category or None,
            "source_url": self.source_url or None,
            "url": self.url or None,
        }

    def to_labeled(self, verb: str) -> LabeledRecord:
        # Colons and newlines in Readwise titles break the frontmatter parser
        title = self.title.replace(":", " -").replace("\n", " ").strip()

        sections: list[str] = []
        if self.summary:
            sections.append(f"## Summary\n\n{self.summary}\n")
        if self.highlights:
            lines = ["## Highlights\n"]
            for highlight in self.highlights:
                lines.append("> " + highlight.content.replace("\n", "\n> "))
                if highlight.note:
                    lines.append(f"\n**Note:** {highlight.note}")
                lines.append("")
            sections.append("\n".join(lines))

        return LabeledRecord(
            id=self.id,
            collection=self.collection,
            verb=verb,
            title=title,
            body="\n".join(sections),
            fields=self.display_fields(),
        )
