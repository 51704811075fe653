"""Root logger configuration driven by ``LoggingSettings``."""
from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from .config import LoggingSettings, settings


def setup_logging(config: LoggingSettings | None = None) -> None:
    """Configure the root logger once at application start.

    JSON lines by default, plain text with ``LOG_FORMAT=text``. A file
    handler is added when ``LOG_FILE`` is set.
    """
    config = config or settings.logging

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    if config.format == "json":
        formatter: logging.Formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "logger",
            },
            static_fields={"app": "anvisa-sync"},
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.file:
        handlers.append(logging.FileHandler(config.file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
