"""Tests for Trellis logging setup and formatters."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from trellis.core.config import LoggingConfig
from trellis.runtime.logging import (
    LOG_FILENAME,
    ROOT_LOGGER,
    ConsoleFormatter,
    JSONLFormatter,
    get_log_file,
    log_with_context,
    setup_logging,
    setup_logging_from_config,
)


@pytest.fixture(autouse=True)
def reset_trellis_logger() -> Iterator[None]:
    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)


def _record(message: str = "hello", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="trellis.runtime.query_client",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_jsonl_entry(self) -> None:
        entry = json.loads(JSONLFormatter().format(_record(context={"query": "get_feed"})))
        assert entry["level"] == "INFO"
        assert entry["component"] == "query_client"
        assert entry["message"] == "hello"
        assert entry["context"] == {"query": "get_feed"}
        assert "source" not in entry

    def test_jsonl_warning_has_source(self) -> None:
        entry = json.loads(JSONLFormatter().format(_record(level=logging.WARNING)))
        assert entry["source"]["line"] == 10

    def test_console_appends_context(self) -> None:
        line = ConsoleFormatter().format(_record(context={"section": "hero"}))
        assert "[query_client]" in line
        assert line.endswith("hello section=hero")


class TestSetupLogging:
    def test_jsonl_file_written(self, tmp_path: Path) -> None:
        log_dir = setup_logging(tmp_path / "logs", level="DEBUG", console=False)
        assert log_dir == tmp_path / "logs"
        assert get_log_file() == tmp_path / "logs" / LOG_FILENAME

        logger = logging.getLogger("trellis.runtime.actions")
        log_with_context(logger, logging.WARNING, "Action dispatch failed", action="bogus")
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()

        lines = (tmp_path / "logs" / LOG_FILENAME).read_text().strip().splitlines()
        last = json.loads(lines[-1])
        assert last["message"] == "Action dispatch failed"
        assert last["context"] == {"action": "bogus"}
        assert last["component"] == "actions"

    def test_console_only(self, tmp_path: Path) -> None:
        assert setup_logging(tmp_path, jsonl=False) is None
        assert get_log_file() is None
        assert not (tmp_path / LOG_FILENAME).exists()

    def test_repeated_setup_replaces_handlers(self, tmp_path: Path) -> None:
        setup_logging(tmp_path, jsonl=False)
        setup_logging(tmp_path, jsonl=False)
        assert len(logging.getLogger(ROOT_LOGGER).handlers) == 1

    def test_from_config(self, tmp_path: Path) -> None:
        config = LoggingConfig(level="warning", log_dir=str(tmp_path / "cfg"), jsonl=True)
        setup_logging_from_config(config, console=False)
        assert logging.getLogger(ROOT_LOGGER).level == logging.WARNING
        assert (tmp_path / "cfg" / LOG_FILENAME).exists()

    def test_context_merges_kwargs(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("trellis.test")
        with caplog.at_level(logging.INFO, logger="trellis.test"):
            log_with_context(logger, logging.INFO, "msg", {"a": 1}, b=2)
        assert caplog.records[-1].context == {"a": 1, "b": 2}  # type: ignore[attr-defined]
