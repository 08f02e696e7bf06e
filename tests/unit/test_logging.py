"""Unit tests for chatiq_kb.utils.logging."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from chatiq_kb.utils.logging import NOISY_LOGGERS, configure_logging


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    library_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in library_levels.items():
        logging.getLogger(name).setLevel(saved)


class TestConfigureLogging:
    def test_json_lines_go_to_the_given_stream(self) -> None:
        buffer = io.StringIO()
        configure_logging("INFO", json_output=True, stream=buffer)

        structlog.get_logger("test_logging").info("embedding_job_claimed", job_id="job_c1")

        record = json.loads(buffer.getvalue().strip())
        assert record["event"] == "embedding_job_claimed"
        assert record["level"] == "info"
        assert record["job_id"] == "job_c1"
        assert "timestamp" in record

    def test_level_filters_before_rendering(self) -> None:
        buffer = io.StringIO()
        configure_logging("WARNING", json_output=True, stream=buffer)

        structlog.get_logger("test_logging").info("retrieval_complete")

        assert buffer.getvalue() == ""

    def test_defaults_to_stderr(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("APP_ENV", raising=False)
        configure_logging("INFO")

        structlog.get_logger("test_logging").info("document_ingested", chunks=3)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "document_ingested" in captured.err

    def test_production_env_selects_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")
        buffer = io.StringIO()
        configure_logging("INFO", stream=buffer)

        structlog.get_logger("test_logging").info("embedding_worker_started")

        assert json.loads(buffer.getvalue().strip())["event"] == "embedding_worker_started"

    @pytest.mark.parametrize(
        ("log_level", "expected"),
        [
            ("DEBUG", logging.DEBUG),
            ("INFO", logging.WARNING),
            ("ERROR", logging.ERROR),
        ],
    )
    def test_http_and_sql_libraries_are_quieted(self, log_level: str, expected: int) -> None:
        configure_logging(log_level, json_output=True, stream=io.StringIO())

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == expected
