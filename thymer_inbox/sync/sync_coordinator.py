"""Synchronization coordinator running one fetch-and-upsert cycle for a source."""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
import time
from datetime import datetime, timezone

import structlog

from thymer_inbox.exceptions import FetchError, StorageError
from thymer_inbox.models.record import SyncRecord
from thymer_inbox.sources.base import SourceAdapter
from thymer_inbox.storage.state_store import SnapshotBucket
from thymer_inbox.sync.change_detector import ChangeDetector
from thymer_inbox.sync.models import SyncReport
from thymer_inbox.sync.timestamp_tracker import TimestampTracker
from thymer_inbox.utils.retry import retry_deadline

log = structlog.stdlib.get_logger()


class SyncCoordinator:
    """Orchestrates synchronization between one source adapter and its bucket.

    Records that disappear from a fetch are left alone: how a source signals
    retraction is up to its records (see ``RetractionPolicy``), never up to
    absence.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        bucket: SnapshotBucket,
        fetch_timeout: float = 30.0,
        max_workers: int = 2,
    ):
        """
        Initialize sync coordinator.

        Args:
            adapter: Source adapter to fetch from
            bucket: Snapshot bucket belonging to the same source
            fetch_timeout: Deadline in seconds for one scope fetch; a fetch
                that runs longer is abandoned and its result discarded
            max_workers: Threads available for fetches, including abandoned ones
        """
        self._adapter = adapter
        self._bucket = bucket
        self._fetch_timeout = fetch_timeout
        self._change_detector = ChangeDetector(bucket)
        self._timestamp_tracker = TimestampTracker(bucket)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"fetch-{self.source}"
        )

        log.info(
            "sync_coordinator_initialized",
            source=self.source,
            retraction_policy=adapter.retraction_policy.value,
            fetch_timeout=fetch_timeout,
        )

    @property
    def source(self) -> str:
        return self._adapter.source.value

    @property
    def adapter(self) -> SourceAdapter:
        return self._adapter

    def sync(self, resync: bool = False) -> SyncReport:
        """
        Run one cycle: fetch every scope, upsert every record, report.

        Fetch failures are recorded per scope and do not stop the other
        scopes; storage failures are recorded per record. Nothing is raised.
        The watermark advances to this cycle's start time only when the cycle
        had no errors, so a failed scope is fetched again next time.

        Args:
            resync: Only labels the report; use ``reset()`` to wipe first

        Returns:
            SyncReport with counts, errors and the changes to announce
        """
        start_time = datetime.now(timezone.utc)
        report = SyncReport(
            source=self.source, resync=resync, start_time=start_time, end_time=start_time
        )
        log.info("sync_cycle_started", source=self.source, resync=resync)

        since = self._load_watermark(report)

        for scope in self._adapter.scopes():
            records = self._fetch_scope(scope, since, report)
            if records is None:
                continue

            for record in records:
                try:
                    report.record(self._change_detector.upsert(record))
                except StorageError as e:
                    report.errors.append(f"{record.id}: {e}")
                    log.error(
                        "record_upsert_failed",
                        source=self.source,
                        scope=scope,
                        record_id=record.id,
                        error=str(e),
                    )

        if self._adapter.uses_watermark and report.success:
            try:
                self._timestamp_tracker.save_last_sync(start_time)
            except StorageError as e:
                report.errors.append(f"watermark: {e}")
                log.error("sync_watermark_save_failed", source=self.source, error=str(e))

        report.end_time = datetime.now(timezone.utc)
        report.duration_seconds = (report.end_time - start_time).total_seconds()

        log.info(
            "sync_cycle_completed",
            source=self.source,
            created=report.created,
            updated=report.updated,
            cancelled=report.cancelled,
            unchanged=report.unchanged,
            errors=len(report.errors),
            duration_seconds=report.duration_seconds,
            success=report.success,
        )
        return report

    def reset(self) -> int:
        """Wipe every snapshot and watermark of this source. Returns snapshots removed."""
        removed = self._bucket.wipe()
        log.info("sync_state_reset", source=self.source, removed=removed)
        return removed

    def _load_watermark(self, report: SyncReport) -> datetime | None:
        if not self._adapter.uses_watermark:
            return None
        try:
            since = self._timestamp_tracker.load_last_sync()
        except StorageError as e:
            # Fall back to a full fetch; child-id sets keep it from re-announcing
            report.errors.append(f"watermark: {e}")
            log.error("sync_watermark_load_failed", source=self.source, error=str(e))
            return None
        log.info("loaded_sync_watermark", source=self.source, since=since)
        return since

    def _fetch_scope(
        self, scope: str, since: datetime | None, report: SyncReport
    ) -> list[SyncRecord] | None:
        """Fetch one scope under the deadline; None when it failed."""
        deadline = time.monotonic() + self._fetch_timeout
        try:
            future = self._executor.submit(self._fetch_before, deadline, scope, since)
            records = future.result(timeout=self._fetch_timeout)
        except FutureTimeoutError:
            if not future.cancel():
                future.add_done_callback(
                    lambda _: log.warning(
                        "late_fetch_result_discarded", source=self.source, scope=scope
                    )
                )
            error = f"fetch exceeded {self._fetch_timeout:g}s deadline"
        except FetchError as e:
            error = str(e)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        else:
            log.info(
                "scope_fetched", source=self.source, scope=scope, record_count=len(records)
            )
            return records

        report.errors.append(f"{scope}: {error}")
        log.error("scope_fetch_failed", source=self.source, scope=scope, error=error)
        return None

    def _fetch_before(
        self, deadline: float, scope: str, since: datetime | None
    ) -> list[SyncRecord]:
        # Runs on a fetch thread; retry waits must not outlive the caller
        with retry_deadline(deadline):
            return self._adapter.fetch(scope, since)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._adapter.close()
