"""Tests for logging configuration."""

import json
import logging
import sys

from azure_lb_deployer.config import LoggingConfig
from azure_lb_deployer.logging_config import JSONFormatter, TextFormatter, configure_logging


def _record(msg="test", args=()):
    return logging.LogRecord(
        name="test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=args, exc_info=None,
    )


class TestJSONFormatter:
    def test_formats_as_json(self):
        parsed = json.loads(JSONFormatter().format(_record("hello %s", ("world",))))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert "timestamp" in parsed
        assert "created_count" not in parsed

    def test_includes_extra_fields(self):
        record = _record()
        record.service = "shop"  # type: ignore
        record.instance = "web3"  # type: ignore
        record.index = 3  # type: ignore
        record.failed_count = 0  # type: ignore
        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["service"] == "shop"
        assert parsed["instance"] == "web3"
        assert parsed["index"] == 3
        assert parsed["failed_count"] == 0

    def test_includes_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                name="test", level=logging.ERROR, pathname="", lineno=0,
                msg="failed", args=(), exc_info=sys.exc_info(),
            )
        parsed = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad" in parsed["exception"]


class TestTextFormatter:
    def test_plain_message(self):
        line = TextFormatter().format(_record("hello"))
        assert line.endswith("INFO     hello")

    def test_appends_context(self):
        record = _record("created")
        record.instance = "web3"  # type: ignore
        record.index = 3  # type: ignore
        line = TextFormatter().format(record)
        assert line.endswith("created  [instance=web3 index=3]")


class TestConfigureLogging:
    def test_json_format(self):
        configure_logging(LoggingConfig(level="DEBUG", format="json"))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h.formatter, JSONFormatter) for h in root.handlers)

    def test_text_format(self):
        configure_logging(LoggingConfig(level="WARNING", format="text"))
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert any(isinstance(h.formatter, TextFormatter) for h in root.handlers)

    def test_verbose_forces_debug(self):
        configure_logging(LoggingConfig(level="WARNING"), verbose=True)
        assert logging.getLogger().level == logging.DEBUG

    def test_suppresses_noisy_loggers(self):
        configure_logging(LoggingConfig())
        assert logging.getLogger("azure").level >= logging.WARNING
        assert logging.getLogger("urllib3").level >= logging.WARNING
