"""Unit tests for observability features (structured logging, metrics)."""

import json
import logging
import sys
import threading
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import redis

from recruitflow_core.observability.logging import (
    NOISY_LOGGERS,
    JsonFormatter,
    OperationContext,
    StructuredLogger,
    configure_logging,
    current_operation,
    get_logger,
    operation_scope,
)
from recruitflow_core.observability.metrics import MetricsCollector, broker_queue_depths


def _record(msg="Test message", level=logging.INFO, args=(), exc_info=None):
    return logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Tests for JSON log formatter."""

    def test_format_basic_log_record(self):
        parsed = json.loads(JsonFormatter().format(_record()))

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test.logger"
        assert parsed["service"] == "recruitflow"
        assert "source" not in parsed

    def test_format_log_with_extra_fields(self):
        record = _record()
        record.action_id = 17
        record.operation_id = "sweep-1"

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["action_id"] == 17
        assert parsed["operation_id"] == "sweep-1"

    def test_unserializable_extra_is_stringified(self):
        record = _record()
        record.due_date = datetime(2024, 1, 3, tzinfo=timezone.utc)

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["due_date"] == "2024-01-03 00:00:00+00:00"

    def test_format_log_with_exception(self):
        try:
            raise ValueError("gateway down")
        except ValueError:
            exc_info = sys.exc_info()

        parsed = json.loads(
            JsonFormatter().format(_record("Dispatch failed", logging.ERROR, exc_info=exc_info))
        )

        assert parsed["level"] == "ERROR"
        assert "ValueError" in parsed["exception"]
        assert parsed["source"]["line"] == 42

    def test_format_log_with_message_args(self):
        record = _record("Reminder %s sent to %s", args=(17, "U2"))

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["message"] == "Reminder 17 sent to U2"

    def test_service_name(self):
        parsed = json.loads(JsonFormatter(service_name="recruitflow-worker").format(_record()))

        assert parsed["service"] == "recruitflow-worker"


class TestOperationContext:
    """Tests for operation context."""

    def test_context_to_dict(self):
        context = OperationContext(
            operation_id="req-123",
            acting_user_id="U1",
            operation="POST /followups",
        )

        assert context.to_dict() == {
            "operation_id": "req-123",
            "acting_user_id": "U1",
            "operation": "POST /followups",
        }

    def test_empty_fields_are_omitted(self):
        assert OperationContext().to_dict() == {}

    def test_context_with_extra_data(self):
        context = OperationContext(operation_id="sweep-1", extra={"run": "reminders"})

        assert context.to_dict()["run"] == "reminders"


class TestOperationScope:
    """Tests for the bound operation context."""

    def test_scope_binds_and_resets(self):
        context = OperationContext(operation_id="task-1", operation="followups.run")

        with operation_scope(context) as bound:
            assert current_operation() is bound

        assert current_operation() is None

    def test_formatter_includes_bound_operation(self):
        with operation_scope(OperationContext(operation_id="task-1", operation="followups.run")):
            parsed = json.loads(JsonFormatter().format(_record()))

        assert parsed["operation_id"] == "task-1"
        assert parsed["operation"] == "followups.run"

    def test_record_fields_win_over_bound_operation(self):
        record = _record()
        record.operation_id = "explicit"

        with operation_scope(OperationContext(operation_id="bound")):
            parsed = json.loads(JsonFormatter().format(record))

        assert parsed["operation_id"] == "explicit"

    def test_structured_logger_uses_bound_operation(self, caplog):
        logger = StructuredLogger("test.scoped")

        with caplog.at_level(logging.INFO, logger="test.scoped"):
            with operation_scope(OperationContext(operation_id="req-7", acting_user_id="U1")):
                logger.info("Rule applied", rule_id=4)

        [record] = caplog.records
        assert record.operation_id == "req-7"
        assert record.acting_user_id == "U1"
        assert record.rule_id == 4



class TestStructuredLogger:
    """Tests for structured logger."""

    def test_fields_and_context_reach_the_record(self, caplog):
        logger = StructuredLogger("test.structured")
        context = OperationContext(operation_id="req-123")

        with caplog.at_level(logging.INFO, logger="test.structured"):
            logger.info("Request handled", context=context, status_code=201)

        [record] = caplog.records
        assert record.operation_id == "req-123"
        assert record.status_code == 201

    def test_log_error_with_exception(self, caplog):
        logger = StructuredLogger("test.structured")

        with caplog.at_level(logging.ERROR, logger="test.structured"):
            try:
                raise ValueError("boom")
            except ValueError:
                logger.error("Request failed", exc_info=True)

        assert caplog.records[0].exc_info is not None

    def test_warning_and_debug(self, caplog):
        logger = StructuredLogger("test.structured")

        with caplog.at_level(logging.DEBUG, logger="test.structured"):
            logger.warning("Slow gateway", duration_ms=1200)
            logger.debug("Claim lost", action_id=3)

        assert [r.levelname for r in caplog.records] == ["WARNING", "DEBUG"]


class TestGetLogger:
    def test_same_name_returns_same_instance(self):
        assert get_logger("test.same") is get_logger("test.same")

    def test_different_names(self):
        assert get_logger("test.one").name != get_logger("test.two").name


class TestConfigureLogging:
    """Tests for logging configuration."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        noisy = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
        yield
        root.handlers[:] = handlers
        root.setLevel(level)
        for name, noisy_level in noisy.items():
            logging.getLogger(name).setLevel(noisy_level)

    def test_json_format(self):
        configure_logging(level="debug", json_format=True, service_name="recruitflow-core")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        [handler] = root.handlers
        assert isinstance(handler.formatter, JsonFormatter)
        assert handler.formatter.service_name == "recruitflow-core"

    def test_plain_format(self):
        configure_logging(level="WARNING", json_format=False)

        [handler] = logging.getLogger().handlers
        assert not isinstance(handler.formatter, JsonFormatter)

    def test_library_loggers_are_quieted(self):
        configure_logging(level="INFO")

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger("celery").level == logging.WARNING

    def test_debug_keeps_library_loggers_verbose(self):
        configure_logging(level="DEBUG")

        assert logging.getLogger("httpx").level == logging.DEBUG


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_increment_counter_with_labels(self):
        collector = MetricsCollector()

        collector.increment("reminders_sent", labels={"channel": "push"})
        collector.increment("reminders_sent", labels={"channel": "push"})
        collector.increment("reminders_sent", labels={"channel": "mail"})

        assert collector.get("reminders_sent", labels={"channel": "push"}) == 2
        assert collector.get("reminders_sent") == 0

    def test_set_gauge_overwrites(self):
        collector = MetricsCollector()

        collector.set_gauge("queue_depth", 10)
        collector.set_gauge("queue_depth", 5)

        assert collector.get("queue_depth") == 5

    def test_histogram_stats(self):
        collector = MetricsCollector()
        for value in (0.5, 1.0, 0.3):
            collector.record_histogram("sweep_duration_seconds", value)

        stats = collector.get_histogram_stats("sweep_duration_seconds")

        assert stats["count"] == 3
        assert stats["min"] == 0.3
        assert stats["max"] == 1.0
        assert stats["avg"] == pytest.approx(0.6)

    def test_empty_histogram(self):
        assert MetricsCollector().get_histogram_stats("missing")["count"] == 0

    def test_get_all_and_reset(self):
        collector = MetricsCollector()
        collector.increment("tasks_fired")
        collector.set_gauge("queue_depth", 3)
        collector.record_histogram("sweep_duration_seconds", 1.0)

        snapshot = collector.get_all()
        collector.reset()

        assert snapshot["counters"] == {"tasks_fired": 1}
        assert snapshot["gauges"] == {"queue_depth": 3}
        assert snapshot["histograms"]["sweep_duration_seconds"]["count"] == 1
        assert collector.get_all() == {"counters": {}, "gauges": {}, "histograms": {}}

    def test_concurrent_increments(self):
        collector = MetricsCollector()

        def bump():
            for _ in range(1000):
                collector.increment("reminders_sent")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert collector.get("reminders_sent") == 4000

    def test_labels_are_rendered_in_snapshot(self):
        collector = MetricsCollector()
        collector.increment("reminders_sent", labels={"channel": "push", "kind": "call"})

        assert collector.get_all()["counters"] == {"reminders_sent{channel=push,kind=call}": 1}

    def test_histogram_keeps_latest_samples(self):
        collector = MetricsCollector(max_samples=3)
        for value in (1, 2, 3, 4, 5):
            collector.record_histogram("sweep_duration_seconds", value)

        stats = collector.get_histogram_stats("sweep_duration_seconds")

        assert stats["count"] == 3
        assert stats["min"] == 3
        assert stats["p50"] == 4

    def test_timer_records_duration(self):
        collector = MetricsCollector()

        with collector.timer("sweep_duration_seconds"):
            time.sleep(0.01)

        stats = collector.get_histogram_stats("sweep_duration_seconds")
        assert stats["count"] == 1
        assert stats["min"] > 0

    def test_timer_records_when_block_raises(self):
        collector = MetricsCollector()

        with pytest.raises(RuntimeError):
            with collector.timer("sweep_duration_seconds"):
                raise RuntimeError("sub-sweep failed")

        assert collector.get_histogram_stats("sweep_duration_seconds")["count"] == 1


class TestBrokerQueueDepths:
    """Tests for broker queue depths."""

    def test_queue_depths(self):
        client = MagicMock()
        client.llen.side_effect = lambda name: {"followups": 2, "scheduler": 5}[name]

        with patch("redis.Redis.from_url", return_value=client) as from_url:
            result = broker_queue_depths("redis://test:6379/1")

        assert result == {"followups": 2, "scheduler": 5}
        assert from_url.call_args.args == ("redis://test:6379/1",)
        client.close.assert_called_once()

    def test_unreadable_queue_reports_none(self):
        client = MagicMock()

        def llen(name):
            if name == "scheduler":
                raise redis.ConnectionError("refused")
            return 1

        client.llen.side_effect = llen

        with patch("redis.Redis.from_url", return_value=client):
            result = broker_queue_depths("redis://test:6379/1")

        assert result == {"followups": 1, "scheduler": None}
        client.close.assert_called_once()

    def test_selected_queues(self):
        client = MagicMock()
        client.llen.return_value = 0

        with patch("redis.Redis.from_url", return_value=client):
            assert broker_queue_depths("redis://test:6379/1", queues=("followups",)) == {
                "followups": 0
            }
