"""Tests for the observability module.

Tests for metrics collection, operation timing and logging configuration.
"""
import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from notegraph_mcp.observability import (
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    is_logging_configured,
    metrics,
    timed_operation,
    traced,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_and_read(self):
        collector = MetricsCollector()
        collector.record_operation("op", 10.0, True)
        collector.record_operation("op", 30.0, False, error="boom")

        op = collector.get_metrics()["op"]
        assert op["count"] == 2
        assert op["success_count"] == 1
        assert op["error_count"] == 1
        assert op["avg_duration_ms"] == 20.0
        assert op["max_duration_ms"] == 30.0
        assert op["last_error"] == "boom"

    def test_summary(self):
        collector = MetricsCollector()
        assert collector.get_summary()["overall_success_rate"] == 1.0
        collector.record_operation("b", 1.0, True)
        collector.record_operation("a", 1.0, False, error="x")
        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_errors"] == 1
        assert summary["overall_success_rate"] == 0.5
        assert summary["operations_tracked"] == ["a", "b"]

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_operation("op", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}

    def test_save_without_file(self):
        assert MetricsCollector().save_metrics() is False

    def test_save_writes_json(self, tmp_path):
        target = tmp_path / "nested" / "metrics.json"
        collector = MetricsCollector(metrics_file=target)
        collector.record_operation("op", 5.0, True)
        assert collector.save_metrics() is True
        data = json.loads(target.read_text())
        assert data["operations"]["op"]["count"] == 1
        assert not target.with_suffix(".tmp").exists()


class TestTimedOperation:
    def setup_method(self):
        metrics.reset()

    def test_success_is_recorded(self):
        with timed_operation("unit.ok", note_id="n1") as op:
            op["result_count"] = 3
        assert metrics.get_metrics()["unit.ok"]["success_count"] == 1

    def test_error_is_recorded_and_reraised(self):
        with pytest.raises(RuntimeError):
            with timed_operation("unit.fail"):
                raise RuntimeError("kaboom")
        recorded = metrics.get_metrics()["unit.fail"]
        assert recorded["error_count"] == 1
        assert recorded["last_error"] == "kaboom"

    def test_traced_uses_given_name(self):
        @traced("unit.traced")
        def find(query=None):
            return [1, 2]

        assert find(query="x") == [1, 2]
        assert metrics.get_metrics()["unit.traced"]["count"] == 1

    def test_traced_defaults_to_function_name(self):
        @traced()
        def unnamed_operation():
            return None

        unnamed_operation()
        assert "unnamed_operation" in metrics.get_metrics()


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_handlers(self):
        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        before = list(package_logger.handlers)
        level = package_logger.level
        yield
        for handler in list(package_logger.handlers):
            if handler not in before:
                package_logger.removeHandler(handler)
                handler.close()
        package_logger.setLevel(level)

    def test_writes_log_file(self, tmp_path):
        log_dir = configure_logging(log_dir=tmp_path / "logs", console=False)
        logging.getLogger(f"{ROOT_LOGGER_NAME}.test").info("hello log")
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        assert "hello log" in (log_dir / "notegraph.log").read_text()
        assert is_logging_configured()

    def test_reconfiguring_does_not_stack_file_handlers(self, tmp_path):
        configure_logging(log_dir=tmp_path / "one", console=False)
        configure_logging(log_dir=tmp_path / "two", console=False)
        file_handlers = [
            h
            for h in logging.getLogger(ROOT_LOGGER_NAME).handlers
            if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
