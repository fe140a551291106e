"""Tests for structured logging configuration.

Covers:
1. JSON file output with timestamp, level and component fields
2. Explicit ``component=`` overrides the logger-derived one
3. Console level filtering leaves the file handler at INFO
"""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from goatherd.telemetry import get_logger
from goatherd.telemetry.logger import configure_logging


def read_records(log_dir: Path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    lines = (log_dir / "current.jsonl").read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


@pytest.fixture
def log_dir(tmp_path: Path) -> Iterator[Path]:
    directory = tmp_path / "logs"
    configure_logging(log_level="ERROR", log_dir=directory, file_logging=True)
    try:
        yield directory
    finally:
        for handler in logging.getLogger().handlers:
            handler.close()
        configure_logging(log_level="WARNING", file_logging=False)


class TestFileLogging:
    """Test the rotating JSON file handler."""

    def test_writes_json_record(self, log_dir: Path) -> None:
        log = get_logger("goatherd.orchestrator.sample")

        log.info("sample_event", run_id="run-1", step=2)

        records = [r for r in read_records(log_dir) if r["event"] == "sample_event"]
        assert len(records) == 1
        record = records[0]
        assert record["run_id"] == "run-1"
        assert record["step"] == 2
        assert record["level"] == "info"
        assert record["component"] == "sample"
        assert "timestamp" in record

    def test_explicit_component_wins(self, log_dir: Path) -> None:
        log = get_logger("goatherd.sessions.sample")

        log.warning("component_event", component="sessions")

        records = [r for r in read_records(log_dir) if r["event"] == "component_event"]
        assert records[0]["component"] == "sessions"

    def test_debug_not_written(self, log_dir: Path) -> None:
        log = get_logger("goatherd.routing.sample")

        log.debug("too_quiet")
        log.info("loud_enough")

        events = [r["event"] for r in read_records(log_dir)]
        assert "too_quiet" not in events
        assert "loud_enough" in events


class TestFallbacks:
    """Test configuration fallbacks."""

    def test_unwritable_log_dir_falls_back_to_console(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")

        try:
            configure_logging(log_level="INFO", log_dir=blocker / "logs", file_logging=True)

            handlers = logging.getLogger().handlers
            assert len(handlers) == 1
            assert isinstance(handlers[0], logging.StreamHandler)
        finally:
            configure_logging(log_level="WARNING", file_logging=False)
