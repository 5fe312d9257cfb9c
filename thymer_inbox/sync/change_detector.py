"""Change detection: classify a fetched record against its stored snapshot."""

import structlog

from thymer_inbox.models.record import Classification, StoredSnapshot, SyncRecord, as_aware
from thymer_inbox.storage.state_store import SnapshotBucket
from thymer_inbox.sync.models import UpsertResult

log = structlog.stdlib.get_logger()


def classify(old: StoredSnapshot | None, record: SyncRecord) -> Classification:
    """Classify the transition from ``old`` to ``record``.

    Checks run in a fixed order and the first match wins:

    1. No snapshot: created, even when the record is already retracted.
    2. Retracted now but not before: cancelled, whatever else changed.
    3. Any tracked field differs: updated.
    4. Children that were never seen before: updated.
    5. Remote last-modified newer than stored, for sources that fall back
       on it: updated.
    6. Otherwise unchanged.
    """
    if old is None:
        return Classification.CREATED

    if record.is_retracted and not old.retracted:
        return Classification.CANCELLED

    if record.tracked_fields() != old.fields:
        return Classification.UPDATED

    if record.child_ids() - set(old.child_ids):
        return Classification.UPDATED

    if (
        record.timestamp_fallback
        and record.updated_at is not None
        and old.updated_at is not None
        and as_aware(record.updated_at) > as_aware(old.updated_at)
    ):
        return Classification.UPDATED

    return Classification.UNCHANGED


def derive_verb(
    old: StoredSnapshot | None,
    record: SyncRecord,
    classification: Classification | None = None,
) -> str | None:
    """Word the transition from ``old`` to ``record``; None when nothing changed."""
    if classification is None:
        classification = classify(old, record)
    if classification is Classification.UNCHANGED:
        return None
    return record.derive_verb(old, classification)


class ChangeDetector:
    """Upserts fetched records into one source's snapshot bucket."""

    def __init__(self, bucket: SnapshotBucket):
        self._bucket = bucket

    def upsert(self, record: SyncRecord) -> UpsertResult:
        """Classify ``record`` and persist its snapshot when it changed.

        The read and the write share one transaction, so a concurrent writer
        can never slip in between them. Unchanged records are not written.

        Raises:
            StorageError: If the snapshot cannot be read or written; the
                previously stored snapshot is left as it was
        """
        with self._bucket.transaction() as txn:
            old = txn.get(record.id)
            classification = classify(old, record)
            if classification is not Classification.UNCHANGED:
                txn.put(record.to_snapshot(old))

        verb = derive_verb(old, record, classification)
        if verb is not None:
            log.debug(
                "record_changed",
                record_id=record.id,
                classification=classification.value,
                verb=verb,
            )
        return UpsertResult(record=record, classification=classification, verb=verb)
