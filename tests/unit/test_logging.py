"""Unit tests for logging configuration."""

import json
import logging

import pytest
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

from pagewatch.config import MonitoringConfig
from pagewatch.observability import configure_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers = handlers
    root.setLevel(level)
    clear_contextvars()
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    def test_file_output_is_json_with_bound_run_id(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "pagewatch.log"
        configure_logging(MonitoringConfig(log_level="DEBUG", log_file=str(log_file)))

        bind_contextvars(run_id="run-123")
        structlog.get_logger("pagewatch.test").info("Page checked", page_id=7)

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        (record,) = [r for r in records if r["event"] == "Page checked"]
        assert record["run_id"] == "run-123"
        assert record["page_id"] == 7
        assert record["level"] == "info"
        assert record["logger"] == "pagewatch.test"
