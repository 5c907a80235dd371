"""Log output for deployment runs: one JSON object per line, or plain text."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from .config import LoggingConfig

# Keys passed through ``extra=`` by the reconciler and the provider
CONTEXT_FIELDS = ("service", "instance", "index", "endpoint", "location",
                  "elapsed_seconds", "created_count", "failed_count")

_SDK_LOGGERS = ("azure", "azure.core", "azure.identity", "msal", "urllib3")


def _context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """Single-line JSON, suitable for log shipping from CI runners."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context(record))
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Terminal output; context fields are appended as ``key=value`` pairs."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-8s %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head}  [{pairs}]{sep}{tail}"


def configure_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    ``verbose`` forces DEBUG for this run. The Azure SDK loggers are held
    at WARNING regardless.
    """
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if config.format == "json" else TextFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _SDK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
