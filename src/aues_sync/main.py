"""AUES sync trigger: process entry point.

Run locally:
    CRON_SECRET=... DASHBOARD_URL=... MEMBER_SYNC_URL=... python -m aues_sync
"""

from __future__ import annotations

import asyncio
import logging
import sys

from aues_sync.config import get_settings
from aues_sync.exceptions import ConfigurationError
from aues_sync.lifecycle import ExitCode, SyncService

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("aues_sync")


# ---------- Logging ----------

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        stream=sys.stdout,
    )


def report_configuration_error(exc: ConfigurationError) -> None:
    for name in exc.missing:
        logger.error("%s is not set. Please set it in the environment variables.", name)
    for message in exc.invalid:
        logger.error("Invalid configuration value %s", message)


# ---------- Entry point ----------

def main() -> int:
    """Run the sync trigger until a signal or a fatal error.

    Returns:
        Process exit code (0 after a shutdown signal, 1 on any failure).
    """
    configure_logging()
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        report_configuration_error(exc)
        return ExitCode.FAILURE

    logging.getLogger().setLevel(settings.log_level)
    logger.info("Starting AUES sync trigger")

    try:
        return asyncio.run(SyncService(settings).run())
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        return ExitCode.OK
    except Exception:
        logger.exception("Uncaught error; exiting")
        return ExitCode.FAILURE


if __name__ == "__main__":
    sys.exit(main())
