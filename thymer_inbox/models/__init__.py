"""Data models for the Thymer inbox sync engine."""

from thymer_inbox.models.config import (
    AppConfig,
    CalendarConfig,
    GitHubConfig,
    LoggingConfig,
    QueueConfig,
    ReadwiseConfig,
    ServerConfig,
    StorageConfig,
    SyncConfig,
)
from thymer_inbox.models.queue import QueueItem, SubmittedItem
from thymer_inbox.models.record import (
    Classification,
    DocumentRecord,
    EventRecord,
    HighlightRecord,
    IssueRecord,
    LabeledRecord,
    RetractionPolicy,
    SourceKind,
    StoredSnapshot,
    SyncRecord,
)

__all__ = [
    "AppConfig",
    "CalendarConfig",
    "Classification",
    "DocumentRecord",
    "EventRecord",
    "GitHubConfig",
    "HighlightRecord",
    "IssueRecord",
    "LabeledRecord",
    "LoggingConfig",
    "QueueConfig",
    "QueueItem",
    "ReadwiseConfig",
    "RetractionPolicy",
    "ServerConfig",
    "SourceKind",
    "StorageConfig",
    "StoredSnapshot",
    "SubmittedItem",
    "SyncConfig",
    "SyncRecord",
]
