"""Timestamp tracking for incremental-since queries."""

from datetime import datetime, timezone

import structlog

from thymer_inbox.storage.state_store import SnapshotBucket

log = structlog.stdlib.get_logger()


class TimestampTracker:
    """Keeps a source's last clean sync time in its bucket's meta table."""

    LAST_SYNC_KEY: str = "last_sync"

    def __init__(self, bucket: SnapshotBucket):
        self._bucket = bucket

    def save_last_sync(self, timestamp: datetime) -> None:
        """
        Persist the watermark for the next incremental fetch.

        Args:
            timestamp: Start time of the cycle that just completed cleanly

        Raises:
            StorageError: If the write fails
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        self._bucket.set_meta(self.LAST_SYNC_KEY, timestamp.isoformat())
        log.info("sync_watermark_saved", source=self._bucket.source, last_sync=timestamp)

    def load_last_sync(self) -> datetime | None:
        """
        Load the watermark saved by the last clean cycle.

        Returns:
            The timestamp, or None if no clean cycle has completed since the
            last wipe. An unparseable value is treated as missing.

        Raises:
            StorageError: If the read fails
        """
        value = self._bucket.get_meta(self.LAST_SYNC_KEY)
        if not value:
            return None

        try:
            timestamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            log.warning(
                "invalid_sync_watermark", source=self._bucket.source, stored_value=value
            )
            return None

        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp

    def clear(self) -> None:
        self._bucket.delete_meta(self.LAST_SYNC_KEY)
        log.info("sync_watermark_cleared", source=self._bucket.source)
