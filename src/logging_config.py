from __future__ import annotations

import logging

from src.config import LoggingSettings

NOISY_LOGGERS = ("PIL", "matplotlib", "urllib3")


def configure_logging(settings: LoggingSettings) -> None:
    """Configure process-wide logging once at startup."""

    level = getattr(logging, settings.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=settings.format, force=True)

    # third-party debug chatter drowns the per-frame stage logs
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
