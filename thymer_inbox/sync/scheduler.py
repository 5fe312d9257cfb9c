"""Per-source periodic scheduling with on-demand trigger and resync."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

import structlog

from thymer_inbox.exceptions import UnknownSourceError
from thymer_inbox.sync.models import SyncReport, UpsertResult
from thymer_inbox.sync.sync_coordinator import SyncCoordinator

log = structlog.stdlib.get_logger()

BatchCallback = Callable[[str, list[UpsertResult]], None]


class SourceTask:
    """Runs one source's coordinator, never more than one cycle at a time.

    ``run_once`` and ``resync`` may be called from any thread; a call made
    while a cycle is in flight waits for it and then runs its own.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        interval: float,
        initial_delay: float = 0.0,
        on_batch: BatchCallback | None = None,
    ):
        self.coordinator = coordinator
        self.interval = interval
        self.initial_delay = initial_delay
        self._on_batch = on_batch
        self._lock = threading.Lock()
        self.last_report: SyncReport | None = None

    @property
    def source(self) -> str:
        return self.coordinator.source

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def run_once(self) -> SyncReport:
        """Run one cycle now."""
        with self._lock:
            return self._run(resync=False)

    def resync(self) -> SyncReport:
        """Wipe the source's store, then run a cycle, as one uninterrupted step."""
        with self._lock:
            self.coordinator.reset()
            return self._run(resync=True)

    def run_forever(self, stop_event: threading.Event) -> None:
        """Run a cycle every ``interval`` seconds until ``stop_event`` is set."""
        log.info(
            "sync_task_started",
            source=self.source,
            interval_seconds=self.interval,
            initial_delay=self.initial_delay,
        )
        if stop_event.wait(self.initial_delay):
            return

        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                log.exception("sync_task_cycle_crashed", source=self.source, error=str(e))
            if stop_event.wait(self.interval):
                break

        log.info("sync_task_stopped", source=self.source)

    def close(self) -> None:
        """Release the coordinator once any cycle in flight has finished."""
        with self._lock:
            self.coordinator.close()

    def _run(self, resync: bool) -> SyncReport:
        report = self.coordinator.sync(resync=resync)
        self.last_report = report
        # Delivered while still holding the lock so batches keep cycle order
        if report.changes and self._on_batch is not None:
            try:
                self._on_batch(self.source, list(report.changes))
            except Exception as e:
                log.exception(
                    "batch_callback_failed",
                    source=self.source,
                    changes=len(report.changes),
                    error=str(e),
                )
        return report


class Scheduler:
    """Owns one ``SourceTask`` per registered source and their timer threads.

    Different sources run fully independently. ``trigger`` hands work to a
    small executor and returns at once. ``stop`` sets the shared stop event,
    waits for triggered runs already in flight and joins every timer thread;
    ``close`` then releases each coordinator only after its last cycle ended.
    """

    def __init__(self, on_batch: BatchCallback | None = None, max_workers: int = 4):
        self._on_batch = on_batch
        self._max_workers = max_workers
        self._tasks: dict[str, SourceTask] = {}
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def register(
        self,
        coordinator: SyncCoordinator,
        interval: float,
        initial_delay: float = 0.0,
    ) -> SourceTask:
        task = SourceTask(
            coordinator, interval, initial_delay=initial_delay, on_batch=self._on_batch
        )
        with self._lock:
            if task.source in self._tasks:
                raise ValueError(f"Source {task.source!r} is already registered")
            self._tasks[task.source] = task
        log.info("sync_source_registered", source=task.source, interval_seconds=interval)
        return task

    @property
    def sources(self) -> list[str]:
        return sorted(self._tasks)

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stop_event.is_set()

    def has_source(self, source: str) -> bool:
        return source in self._tasks

    def task(self, source: str) -> SourceTask:
        try:
            return self._tasks[source]
        except KeyError:
            raise UnknownSourceError(f"{source} sync not configured") from None

    def trigger(self, source: str, resync: bool = False) -> Future:
        """Run ``source`` now (optionally after a wipe) without waiting for it.

        Raises:
            UnknownSourceError: If no task is registered for ``source``
        """
        task = self.task(source)
        future = self._ensure_executor().submit(task.resync if resync else task.run_once)
        future.add_done_callback(lambda f: self._log_triggered(source, resync, f))
        log.info("sync_triggered", source=source, resync=resync)
        return future

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            self._stop_event.clear()
            for task in self._tasks.values():
                thread = threading.Thread(
                    target=task.run_forever,
                    args=(self._stop_event,),
                    name=f"sync-{task.source}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        log.info("scheduler_started", sources=self.sources)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        with self._lock:
            threads, self._threads = self._threads, []
            executor, self._executor = self._executor, None

        if executor is not None:
            # Queued triggers are dropped; running ones finish and deliver
            executor.shutdown(wait=True, cancel_futures=True)
        for thread in threads:
            thread.join(timeout)
            if thread.is_alive():
                log.warning("sync_thread_still_running", thread=thread.name)
        log.info("scheduler_stopped")

    def close(self) -> None:
        """Stop the timers and release every coordinator."""
        self.stop()
        for task in self._tasks.values():
            task.close()

    def __enter__(self) -> "Scheduler":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="sync-trigger"
                )
            return self._executor

    @staticmethod
    def _log_triggered(source: str, resync: bool, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            log.error("triggered_sync_failed", source=source, resync=resync, error=str(error))
