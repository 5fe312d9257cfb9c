"""Centralized provider module wiring configuration into running components.

This module provides factory functions for the source adapters, the
snapshot store, the scheduler and the HTTP application. Swap an adapter or
a renderer here without touching the sync engine.

Default implementations:
- Sources: GitHub REST, Google Calendar v3, Readwise Reader v3 (via requests)
- Store: one SQLite file per source under ``storage.data_dir``
- Renderer: ``FrontmatterRenderer``
"""

from dataclasses import dataclass

import structlog
from fastapi import FastAPI

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.delivery.renderer import ChangeDispatcher, FrontmatterRenderer, Renderer
from thymer_inbox.models.config import AppConfig
from thymer_inbox.server.app import create_app
from thymer_inbox.sources.base import SourceAdapter
from thymer_inbox.sources.calendar_client import CalendarClient, GoogleTokenFile
from thymer_inbox.sources.github_client import GitHubClient
from thymer_inbox.sources.readwise_client import ReadwiseClient
from thymer_inbox.storage.state_store import StateStore
from thymer_inbox.sync.scheduler import Scheduler
from thymer_inbox.sync.sync_coordinator import SyncCoordinator

log = structlog.stdlib.get_logger()


@dataclass
class SourceSpec:
    """An adapter together with how often it should run."""

    adapter: SourceAdapter
    interval: float
    initial_delay: float = 0.0


@dataclass
class InboxService:
    """Every long-lived component of one running server."""

    config: AppConfig
    store: StateStore
    queue: DeliveryQueue
    scheduler: Scheduler
    app: FastAPI


def get_state_store(config: AppConfig) -> StateStore:
    log.info("initializing_state_store", data_dir=str(config.storage.data_dir))
    return StateStore(config.storage.data_dir, lock_timeout=config.storage.lock_timeout)


def get_sources(config: AppConfig) -> list[SourceSpec]:
    """Build an adapter for every source that has enough configuration to run.

    Args:
        config: Application configuration

    Returns:
        One ``SourceSpec`` per enabled source; disabled sources are logged
        and skipped
    """
    timeout = config.sync.request_timeout
    specs: list[SourceSpec] = []

    if config.github.enabled:
        specs.append(
            SourceSpec(
                adapter=GitHubClient(
                    token=config.github.token or "",
                    repos=config.github.repos,
                    api_url=config.github.api_url,
                    timeout=timeout,
                ),
                interval=config.github.interval_seconds,
            )
        )
    else:
        log.info("source_disabled", source="github", reason="token or repos missing")

    if config.calendar.enabled:
        credentials = GoogleTokenFile(
            config.calendar.token_file,
            client_id=config.calendar.client_id,
            client_secret=config.calendar.client_secret,
            timeout=timeout,
        )
        specs.append(
            SourceSpec(
                adapter=CalendarClient(
                    credentials=credentials,
                    calendars=config.calendar.calendars,
                    api_url=config.calendar.api_url,
                    past_days=config.calendar.past_days,
                    future_days=config.calendar.future_days,
                    timeout=timeout,
                ),
                interval=config.calendar.interval_seconds,
            )
        )
    else:
        log.info("source_disabled", source="calendar", reason="calendars or token file missing")

    if config.readwise.enabled:
        specs.append(
            SourceSpec(
                adapter=ReadwiseClient(
                    token=config.readwise.token or "",
                    api_url=config.readwise.api_url,
                    timeout=timeout,
                ),
                interval=config.readwise.interval_seconds,
                initial_delay=config.readwise.initial_delay,
            )
        )
    else:
        log.info("source_disabled", source="readwise", reason="token missing")

    return specs


def build_scheduler(
    config: AppConfig,
    store: StateStore,
    queue: DeliveryQueue,
    sources: list[SourceSpec] | None = None,
    renderer: Renderer | None = None,
) -> Scheduler:
    """Register one coordinator per source, feeding changes into ``queue``."""
    scheduler = Scheduler(on_batch=ChangeDispatcher(queue, renderer or FrontmatterRenderer()))
    for spec in sources if sources is not None else get_sources(config):
        coordinator = SyncCoordinator(
            spec.adapter,
            store.bucket(spec.adapter.source),
            fetch_timeout=config.sync.fetch_timeout,
        )
        scheduler.register(coordinator, spec.interval, initial_delay=spec.initial_delay)
    return scheduler


def create_service(config: AppConfig, sources: list[SourceSpec] | None = None) -> InboxService:
    """Wire store, queue, scheduler and HTTP app from configuration."""
    store = get_state_store(config)
    queue = DeliveryQueue(max_items=config.queue.max_items)
    scheduler = build_scheduler(config, store, queue, sources=sources)
    app = create_app(
        queue,
        scheduler,
        token=config.server.token,
        stream_poll_interval=config.server.stream_poll_interval,
        stream_window=config.server.stream_window,
        allowed_origins=config.server.allowed_origins,
    )
    log.info("inbox_service_created", sources=scheduler.sources)
    return InboxService(config=config, store=store, queue=queue, scheduler=scheduler, app=app)
