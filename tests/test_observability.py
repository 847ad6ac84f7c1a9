"""Tests for the observability module.

Tests for metrics collection, logging configuration, and error sanitization.
"""
import logging
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from notetree.observability import (
    MetricsCollector,
    _sanitize_error_message,
    configure_logging,
    is_logging_configured,
    timed_operation,
    traced,
)


class TestErrorMessageSanitization:
    """Tests for error message sanitization."""

    def test_sanitize_none_returns_none(self):
        assert _sanitize_error_message(None) is None

    def test_sanitize_removes_home_directory(self):
        """Home directory paths should be replaced with ~."""
        home = str(Path.home())
        result = _sanitize_error_message(f"{home}/notes/notetree.db: locked")
        assert home not in result
        assert result.startswith("~")

    def test_sanitize_flattens_whitespace(self):
        result = _sanitize_error_message("  Line 1\nLine 2\r   Line 3  ")
        assert result == "Line 1 Line 2 Line 3"

    def test_sanitize_truncates_long_messages(self):
        result = _sanitize_error_message("a" * 300)
        assert len(result) == 200  # default max length
        assert result.endswith("...")

    def test_sanitize_custom_max_length(self):
        result = _sanitize_error_message("a" * 100, max_length=50)
        assert len(result) == 50


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_successful_operation(self):
        collector = MetricsCollector()
        collector.record_operation("execute_batch", 5.0, True)

        recorded = collector.get_metrics()["execute_batch"]
        assert recorded["count"] == 1
        assert recorded["success_rate"] == 1
        assert recorded["last_error"] is None

    def test_record_failed_operation(self):
        collector = MetricsCollector()
        collector.record_operation("execute_batch", 50.0, False, "database is locked")

        recorded = collector.get_metrics()["execute_batch"]
        assert recorded["error_count"] == 1
        assert recorded["success_rate"] == 0
        assert recorded["last_error"] == "database is locked"
        assert recorded["last_error_time"] is not None

    def test_failure_without_message(self):
        collector = MetricsCollector()
        collector.record_operation("op", 1.0, False)
        assert collector.get_metrics()["op"]["last_error"] == "unknown error"

    def test_multiple_operations_aggregated(self):
        collector = MetricsCollector()
        collector.record_operation("op", 100.0, True)
        collector.record_operation("op", 200.0, True)
        collector.record_operation("op", 300.0, False, "Error")

        recorded = collector.get_metrics()["op"]
        assert recorded["count"] == 3
        assert recorded["success_count"] == 2
        assert recorded["avg_duration_ms"] == 200.0
        assert recorded["min_duration_ms"] == 100.0
        assert recorded["max_duration_ms"] == 300.0

    def test_operations_kept_apart(self):
        collector = MetricsCollector()
        collector.record_operation("execute_batch", 10.0, True)
        collector.record_operation("resolve_ancestor_properties", 1.0, True)
        assert set(collector.get_metrics()) == {"execute_batch", "resolve_ancestor_properties"}

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_operation("op", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}

    def test_error_message_sanitized(self):
        collector = MetricsCollector()
        collector.record_operation("op", 1.0, False, "bad\nthing " + "x" * 300)
        last_error = collector.get_metrics()["op"]["last_error"]
        assert "\n" not in last_error
        assert len(last_error) == 200


class TestTimedOperation:
    """Tests for timed_operation and traced."""

    def test_timed_operation_records_success(self):
        collector = MetricsCollector()
        with patch("notetree.observability.metrics", collector):
            with timed_operation("execute_batch", operation_count=2) as op:
                time.sleep(0.01)
                op["result_count"] = 2

        recorded = collector.get_metrics()["execute_batch"]
        assert recorded["success_count"] == 1
        assert recorded["avg_duration_ms"] >= 10

    def test_timed_operation_records_failure(self):
        collector = MetricsCollector()
        with patch("notetree.observability.metrics", collector):
            with pytest.raises(ValueError):
                with timed_operation("execute_batch"):
                    raise ValueError("Test error")

        recorded = collector.get_metrics()["execute_batch"]
        assert recorded["error_count"] == 1
        assert "Test error" in recorded["last_error"]

    def test_traced_uses_function_name(self):
        collector = MetricsCollector()

        class Walker:
            @traced()
            def walk(self, note_id):
                return {"a": [note_id]}

        with patch("notetree.observability.metrics", collector):
            assert Walker().walk("n1") == {"a": ["n1"]}

        assert collector.get_metrics()["walk"]["count"] == 1


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def _restore_logger(self):
        logger = logging.getLogger("notetree")
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.handlers = handlers
        logger.setLevel(level)

    def test_creates_directory_and_file(self, tmp_path):
        log_dir = tmp_path / "logs"

        result = configure_logging(log_dir=log_dir, console=False)

        assert result == log_dir
        assert (log_dir / "notetree.log").exists()
        assert is_logging_configured()

    def test_sets_level(self, tmp_path):
        configure_logging(log_dir=tmp_path, level=logging.DEBUG, console=False)
        assert logging.getLogger("notetree").level == logging.DEBUG

    def test_module_loggers_reach_the_file(self, tmp_path):
        configure_logging(log_dir=tmp_path, console=False)
        logging.getLogger("notetree.services.batch_engine").warning("batch retried")
        for handler in logging.getLogger("notetree").handlers:
            handler.flush()
        assert "batch retried" in (tmp_path / "notetree.log").read_text()
