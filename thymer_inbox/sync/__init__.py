"""Synchronization components: change detection, coordination and scheduling."""

from thymer_inbox.sync.change_detector import ChangeDetector, classify, derive_verb
from thymer_inbox.sync.models import SyncReport, UpsertResult
from thymer_inbox.sync.scheduler import BatchCallback, Scheduler, SourceTask
from thymer_inbox.sync.sync_coordinator import SyncCoordinator
from thymer_inbox.sync.timestamp_tracker import TimestampTracker

__all__ = [
    "BatchCallback",
    "ChangeDetector",
    "Scheduler",
    "SourceTask",
    "SyncCoordinator",
    "SyncReport",
    "TimestampTracker",
    "UpsertResult",
    "classify",
    "derive_verb",
]
