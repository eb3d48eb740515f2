"""
tests/test_utils/test_logging.py — structlog configuration.
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from canstat_pipeline.utils.logging import configure_logging, get_logger


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_json_lines_on_stderr(self, capsys, restore_logging):
        configure_logging("INFO", "json")
        get_logger("canstat_pipeline.pipelines", pipeline="retrieval").info(
            "pipeline_start", query="cpi"
        )

        captured = capsys.readouterr()
        assert captured.out == ""
        event = json.loads(captured.err.strip().splitlines()[-1])
        assert event["event"] == "pipeline_start"
        assert event["logger"] == "canstat_pipeline.pipelines"
        assert event["pipeline"] == "retrieval"
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_module_logger_created_before_configuration(self, capsys, restore_logging):
        log = get_logger("canstat_pipeline.early")
        configure_logging("WARNING", "json")

        log.info("dropped")
        log.warning("kept")

        events = [json.loads(line)["event"] for line in capsys.readouterr().err.splitlines()]
        assert events == ["kept"]
