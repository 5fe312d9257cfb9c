"""Tests for per-source scheduling: single-flight cycles, triggers and resync."""

import threading
import time
from unittest.mock import Mock

import pytest
from conftest import FakeAdapter, make_event, make_issue

from thymer_inbox.exceptions import UnknownSourceError
from thymer_inbox.models.record import SourceKind
from thymer_inbox.sync.models import SyncReport
from thymer_inbox.sync.scheduler import Scheduler, SourceTask
from thymer_inbox.sync.sync_coordinator import SyncCoordinator


def wait_until(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def github_coordinator(store, results=None) -> SyncCoordinator:
    adapter = FakeAdapter(results if results is not None else {"acme/api": [make_issue()]})
    return SyncCoordinator(adapter, store.bucket("github"))


class TestSourceTask:
    def test_cycles_never_overlap(self, store):
        active = 0
        peak = 0
        counter_lock = threading.Lock()

        def slow_fetch():
            nonlocal active, peak
            with counter_lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with counter_lock:
                active -= 1
            return []

        task = SourceTask(github_coordinator(store, {"acme/api": slow_fetch}), interval=60)
        threads = [threading.Thread(target=task.run_once) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert peak == 1
        assert not task.busy

    def test_batch_callback_receives_changes(self, store):
        on_batch = Mock()
        task = SourceTask(github_coordinator(store), interval=60, on_batch=on_batch)

        report = task.run_once()

        on_batch.assert_called_once_with("github", report.changes)
        assert task.last_report is report

    def test_quiet_cycle_skips_callback(self, store):
        on_batch = Mock()
        task = SourceTask(github_coordinator(store), interval=60, on_batch=on_batch)
        task.run_once()

        task.run_once()

        assert on_batch.call_count == 1

    def test_callback_failure_does_not_lose_the_report(self, store):
        task = SourceTask(
            github_coordinator(store),
            interval=60,
            on_batch=Mock(side_effect=RuntimeError("consumer gone")),
        )

        report = task.run_once()

        assert report.created == 1
        assert task.last_report is report

    def test_resync_reannounces_everything(self, store):
        on_batch = Mock()
        task = SourceTask(github_coordinator(store), interval=60, on_batch=on_batch)
        task.run_once()

        report = task.resync()

        assert report.resync is True
        assert [change.verb for change in report.changes] == ["opened"]
        assert on_batch.call_count == 2


class TestScheduler:
    def test_duplicate_source_is_rejected(self, store):
        scheduler = Scheduler()
        scheduler.register(github_coordinator(store), interval=60)

        with pytest.raises(ValueError, match="already registered"):
            scheduler.register(github_coordinator(store), interval=60)

    def test_unknown_source(self, store):
        scheduler = Scheduler()
        scheduler.register(github_coordinator(store), interval=60)

        assert scheduler.sources == ["github"]
        assert not scheduler.has_source("calendar")
        with pytest.raises(UnknownSourceError, match="calendar sync not configured"):
            scheduler.trigger("calendar")

    def test_trigger_runs_in_background(self, store):
        on_batch = Mock()
        scheduler = Scheduler(on_batch=on_batch)
        scheduler.register(github_coordinator(store), interval=60)

        report = scheduler.trigger("github").result(timeout=5)

        assert isinstance(report, SyncReport)
        assert report.created == 1
        on_batch.assert_called_once()
        scheduler.stop()

    def test_trigger_resync(self, store):
        scheduler = Scheduler()
        scheduler.register(github_coordinator(store), interval=60)
        scheduler.trigger("github").result(timeout=5)

        report = scheduler.trigger("github", resync=True).result(timeout=5)

        assert report.resync is True
        assert report.created == 1
        scheduler.stop()

    def test_sources_run_independently(self, store):
        calendar = FakeAdapter({"primary": [make_event()]}, source=SourceKind.CALENDAR)
        scheduler = Scheduler()
        scheduler.register(github_coordinator(store), interval=60)
        scheduler.register(SyncCoordinator(calendar, store.bucket("calendar")), interval=60)

        scheduler.trigger("calendar").result(timeout=5)

        assert scheduler.sources == ["calendar", "github"]
        assert scheduler.task("github").last_report is None
        assert scheduler.task("calendar").last_report.created == 1
        scheduler.stop()

    def test_timer_runs_repeatedly_until_stopped(self, store):
        coordinator = github_coordinator(store)
        scheduler = Scheduler()
        scheduler.register(coordinator, interval=0.02)

        scheduler.start()
        assert scheduler.running
        assert wait_until(lambda: len(coordinator.adapter.calls) >= 3)
        scheduler.stop()
        calls = len(coordinator.adapter.calls)
        time.sleep(0.1)

        assert not scheduler.running
        assert len(coordinator.adapter.calls) == calls

    def test_initial_delay_defers_first_cycle(self, store):
        coordinator = github_coordinator(store)
        scheduler = Scheduler()
        scheduler.register(coordinator, interval=60, initial_delay=30)

        with scheduler:
            time.sleep(0.05)

        assert coordinator.adapter.calls == []

    def test_close_releases_adapters(self, store):
        coordinator = github_coordinator(store)
        scheduler = Scheduler()
        scheduler.register(coordinator, interval=60)

        scheduler.close()

        assert coordinator.adapter.closed

    def test_close_lets_a_triggered_run_finish_and_deliver(self, store):
        started = threading.Event()
        release = threading.Event()

        def slow_scope():
            started.set()
            release.wait(5)
            return [make_issue(number=5)]

        on_batch = Mock()
        coordinator = github_coordinator(
            store, {"acme/slow": slow_scope, "acme/api": [make_issue(number=1)]}
        )
        scheduler = Scheduler(on_batch=on_batch)
        scheduler.register(coordinator, interval=60)

        future = scheduler.trigger("github")
        assert started.wait(5)
        closer = threading.Thread(target=scheduler.close)
        closer.start()
        time.sleep(0.05)

        assert closer.is_alive()
        assert not coordinator.adapter.closed

        release.set()
        closer.join(5)
        report = future.result(timeout=5)

        assert not closer.is_alive()
        assert report.success
        assert report.created == 2
        on_batch.assert_called_once_with("github", report.changes)
        assert coordinator.adapter.closed
