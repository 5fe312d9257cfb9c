#!/usr/bin/env python3
"""Run the Thymer inbox sync server.

Loads configuration, configures logging, wires the sync sources and serves
the HTTP surface with uvicorn until interrupted.

Usage:
    python scripts/run_server.py [--config CONFIG_PATH] [--port PORT]
"""

import argparse
import sys

import structlog
import uvicorn

from thymer_inbox.providers import create_service
from thymer_inbox.utils.config_loader import ConfigLoader, ConfigurationError
from thymer_inbox.utils.logging_config import configure_logging_from_config

log = structlog.stdlib.get_logger()


def main() -> int:
    parser = argparse.ArgumentParser(description="Thymer inbox sync server")
    parser.add_argument("--config", type=str, default=None, help="Path to configuration file")
    parser.add_argument("--host", type=str, default=None, help="Override server.host")
    parser.add_argument("--port", type=int, default=None, help="Override server.port")
    args = parser.parse_args()

    loader = ConfigLoader()
    try:
        config = loader.load_config(args.config)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    configure_logging_from_config(config.logging)
    loader.validate_config(config)

    host = args.host or config.server.host
    port = args.port or config.server.port

    service = create_service(config)
    log.info("starting_server", host=host, port=port, sources=service.scheduler.sources)

    try:
        uvicorn.run(service.app, host=host, port=port, log_config=None)
    finally:
        service.scheduler.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
