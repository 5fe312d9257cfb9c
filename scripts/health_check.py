#!/usr/bin/env python3
"""
Health check script for the Thymer inbox sync server.

This script checks the pieces a running inbox depends on:
- Configuration validation
- Snapshot store accessibility
- Source credentials
- The HTTP server and its queue depth

Can be used for monitoring, alerting, or before pointing the plugin at a
new machine.

Usage:
    python scripts/health_check.py [--config CONFIG_PATH] [--json]

Exit codes:
    0: All checks passed
    1: One or more checks failed
"""

import argparse
import json
import sys
from datetime import datetime

import requests
import structlog

from thymer_inbox.models.config import AppConfig
from thymer_inbox.providers import get_state_store
from thymer_inbox.sources.calendar_client import GoogleTokenFile
from thymer_inbox.utils.config_loader import ConfigLoader

log = structlog.stdlib.get_logger()


class HealthChecker:
    """Performs health checks on system components."""

    def __init__(self, config_path: str | None = None, timeout: float = 5.0):
        """
        Initialize health checker.

        Args:
            config_path: Optional path to configuration file
            timeout: Seconds to wait for each HTTP request to the server
        """
        self.config_path = config_path
        self.timeout = timeout
        self.results: dict[str, dict] = {}
        self._config: AppConfig | None = None

    def _load_config(self) -> AppConfig:
        if self._config is None:
            self._config = ConfigLoader().load_config(self.config_path)
        return self._config

    def check_configuration(self) -> bool:
        """
        Check if configuration is valid.

        Returns:
            True if configuration is valid, False otherwise
        """
        check_name = "configuration"
        log.info("checking_configuration")

        try:
            loader = ConfigLoader()
            config = self._load_config()
            warnings = loader.validate_config(config)

            self.results[check_name] = {
                "status": "warn" if warnings else "pass",
                "message": "; ".join(warnings) or "Configuration loaded successfully",
                "details": {
                    "github": config.github.enabled,
                    "calendar": config.calendar.enabled,
                    "readwise": config.readwise.enabled,
                },
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Configuration error: {str(e)}",
                "details": {},
            }
            return False

    def check_state_store(self) -> bool:
        """
        Check that every source's snapshot database opens and can be counted.

        Returns:
            True if the store is readable, False otherwise
        """
        check_name = "state_store"
        log.info("checking_state_store")

        try:
            config = self._load_config()
            store = get_state_store(config)
            for source in ("github", "calendar", "readwise"):
                store.bucket(source)

            self.results[check_name] = {
                "status": "pass",
                "message": "Snapshot store is accessible",
                "details": {"data_dir": str(store.data_dir), **store.stats()},
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Snapshot store error: {str(e)}",
                "details": {},
            }
            return False

    def check_calendar_token(self) -> bool:
        """
        Check that the Google token file yields an access token, refreshing it if needed.

        Returns:
            True if a token is available or calendar sync is off, False otherwise
        """
        check_name = "calendar_token"
        log.info("checking_calendar_token")

        try:
            config = self._load_config()
            if not config.calendar.calendars:
                self.results[check_name] = {
                    "status": "skip",
                    "message": "No calendars configured",
                    "details": {},
                }
                return True

            GoogleTokenFile(
                config.calendar.token_file,
                client_id=config.calendar.client_id,
                client_secret=config.calendar.client_secret,
                timeout=self.timeout,
            ).access_token()

            self.results[check_name] = {
                "status": "pass",
                "message": "Google access token is valid",
                "details": {"token_file": str(config.calendar.token_file)},
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Calendar token error: {str(e)}",
                "details": {},
            }
            return False

    def check_server(self) -> bool:
        """
        Check that the server answers ``/health`` and accepts the configured token.

        Returns:
            True if the server is up and authenticated, False otherwise
        """
        check_name = "server"
        log.info("checking_server")

        try:
            config = self._load_config()
            base_url = f"http://{config.server.host}:{config.server.port}"

            requests.get(f"{base_url}/health", timeout=self.timeout).raise_for_status()
            response = requests.get(
                f"{base_url}/peek",
                headers={"Authorization": f"Bearer {config.server.token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()

            self.results[check_name] = {
                "status": "pass",
                "message": "Server is reachable",
                "details": {"url": base_url, "queued_items": response.json()["count"]},
            }
            return True

        except requests.ConnectionError:
            self.results[check_name] = {
                "status": "warn",
                "message": "Server is not running",
                "details": {},
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Server check failed: {str(e)}",
                "details": {},
            }
            return False

    def run_all_checks(self) -> bool:
        """
        Run all health checks.

        Returns:
            True if all checks passed, False otherwise
        """
        checks = [
            self.check_configuration,
            self.check_state_store,
            self.check_calendar_token,
            self.check_server,
        ]

        all_passed = True
        for check in checks:
            try:
                result = check()
                if not result:
                    all_passed = False
            except Exception as e:
                log.error("health_check_crashed", check=check.__name__, error=str(e))
                all_passed = False

        return all_passed

    def get_summary(self) -> dict:
        """
        Get summary of all health check results.

        Returns:
            Dictionary with summary information
        """
        total_checks = len(self.results)
        passed = sum(1 for r in self.results.values() if r["status"] == "pass")
        failed = sum(1 for r in self.results.values() if r["status"] == "fail")
        warnings = sum(1 for r in self.results.values() if r["status"] == "warn")
        skipped = sum(1 for r in self.results.values() if r["status"] == "skip")

        return {
            "timestamp": datetime.now().isoformat(),
            "overall_status": "healthy" if failed == 0 else "unhealthy",
            "total_checks": total_checks,
            "passed": passed,
            "failed": failed,
            "warnings": warnings,
            "skipped": skipped,
            "checks": self.results,
        }


def main():
    """Main entry point for health check script."""
    parser = argparse.ArgumentParser(description="Health check for the Thymer inbox sync server")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )

    args = parser.parse_args()

    checker = HealthChecker(config_path=args.config)
    all_passed = checker.run_all_checks()
    summary = checker.get_summary()

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print("\n" + "=" * 60)
        print("HEALTH CHECK SUMMARY")
        print("=" * 60)
        print(f"Timestamp: {summary['timestamp']}")
        print(f"Overall Status: {summary['overall_status'].upper()}")
        print(f"Passed: {summary['passed']}  Failed: {summary['failed']}")
        print(f"Warnings: {summary['warnings']}  Skipped: {summary['skipped']}")
        print("\n" + "-" * 60)

        for check_name, result in summary["checks"].items():
            status_symbol = {
                "pass": "✓",
                "fail": "✗",
                "warn": "⚠",
                "skip": "○",
            }.get(result["status"], "?")

            print(f"\n{status_symbol} {check_name.replace('_', ' ').title()}")
            print(f"  Message: {result['message']}")

            if result["details"]:
                for key, value in result["details"].items():
                    print(f"    - {key}: {value}")

        print("\n" + "=" * 60)

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
