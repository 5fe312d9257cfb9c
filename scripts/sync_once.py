#!/usr/bin/env python3
"""
Run one synchronization cycle for the configured sources and print the results.

Nothing is delivered: changes are classified and stored exactly as the
server would, and the rendered items are printed instead of queued. Useful
from cron or to check credentials.

Usage:
    python scripts/sync_once.py [--config CONFIG_PATH] [--source SOURCE] [--resync]
"""

import argparse
import json
import sys

import structlog

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.providers import build_scheduler, get_state_store
from thymer_inbox.utils.config_loader import ConfigLoader, ConfigurationError
from thymer_inbox.utils.logging_config import configure_logging_from_config

log = structlog.stdlib.get_logger()


def perform_sync(config_path: str | None, source: str | None, resync: bool) -> list[dict]:
    """
    Run one cycle per selected source.

    Args:
        config_path: Optional path to configuration file
        source: Only sync this source when given
        resync: Wipe each source's store before syncing

    Returns:
        One statistics dictionary per synced source
    """
    config = ConfigLoader().load_config(config_path)
    configure_logging_from_config(config.logging)

    queue = DeliveryQueue()
    scheduler = build_scheduler(config, get_state_store(config), queue)
    sources = [source] if source else scheduler.sources

    stats = []
    try:
        for name in sources:
            task = scheduler.task(name)
            report = task.resync() if resync else task.run_once()
            stats.append(
                {
                    "source": report.source,
                    "success": report.success,
                    "created": report.created,
                    "updated": report.updated,
                    "cancelled": report.cancelled,
                    "unchanged": report.unchanged,
                    "errors": report.errors,
                    "duration_seconds": report.duration_seconds,
                }
            )
    finally:
        scheduler.close()

    for item in queue.peek_all():
        print(item.content)
        print()

    return stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one Thymer inbox sync cycle")
    parser.add_argument("--config", type=str, default=None, help="Path to configuration file")
    parser.add_argument(
        "--source", choices=["github", "calendar", "readwise"], default=None
    )
    parser.add_argument("--resync", action="store_true", help="Wipe stored state first")
    args = parser.parse_args()

    try:
        stats = perform_sync(args.config, args.source, args.resync)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except Exception as e:
        log.error("sync_once_failed", error=str(e))
        print(f"❌ Sync failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(stats, indent=2))
    return 0 if all(entry["success"] for entry in stats) else 1


if __name__ == "__main__":
    sys.exit(main())
