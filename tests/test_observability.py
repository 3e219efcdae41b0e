"""Tests for structured logging and metrics."""

import json
import logging
import time
from pathlib import Path

import pytest

from genostore.observability import (
    LogContext,
    LogEntry,
    LogLevel,
    StructuredFormatter,
    StructuredLogger,
    TaskContext,
    Timer,
    configure_logging,
    emit_counter,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
    step_id_var,
    task_id_var,
    unregister_metric_callback,
    workflow_id_var,
)


@pytest.fixture
def received():
    """Metrics seen by a registered callback."""
    events: list[tuple] = []

    def callback(name: str, value: float, labels: dict) -> None:
        events.append((name, value, labels))

    register_metric_callback(callback)
    yield events
    unregister_metric_callback(callback)


def make_record(message: str = "Copied reads.fq", **attrs) -> logging.LogRecord:
    record = logging.LogRecord(
        "genostore.backends.local", logging.INFO, __file__, 1, message, (), attrs.pop("exc_info", None)
    )
    record.__dict__.update(attrs)
    return record


def render(record: logging.LogRecord) -> dict:
    return json.loads(StructuredFormatter().format(record))


class TestContext:
    """Tests for TaskContext and LogContext."""

    def test_empty_outside_task(self) -> None:
        """No identifiers are set outside a task."""
        assert LogContext.current().to_dict() == {}

    def test_task_identifiers(self) -> None:
        """Identifiers are visible inside the block only."""
        with TaskContext(workflow_id="wf-1", step_id="mapping", task_id="4"):
            assert (workflow_id_var.get(), step_id_var.get(), task_id_var.get()) == (
                "wf-1",
                "mapping",
                "4",
            )
            assert LogContext.current().to_dict() == {
                "workflow_id": "wf-1",
                "step_id": "mapping",
                "task_id": "4",
            }

        assert workflow_id_var.get() is None
        assert task_id_var.get() is None

    def test_nesting(self) -> None:
        """An inner task only overrides the identifiers it sets."""
        with TaskContext(workflow_id="wf-1", step_id="filter"):
            with TaskContext(step_id="mapping"):
                assert workflow_id_var.get() == "wf-1"
                assert step_id_var.get() == "mapping"
            assert step_id_var.get() == "filter"

    def test_extra_fields(self) -> None:
        """Extra fields follow the identifiers."""
        context = LogContext(task_id="2", extra={"protocol": "hdfs"})
        assert context.to_dict() == {"task_id": "2", "protocol": "hdfs"}


class TestRendering:
    """Tests for JSON rendering of records."""

    def test_minimal_line(self) -> None:
        """Only the base fields are written when nothing else is known."""
        line = render(make_record())

        assert line["level"] == "INFO"
        assert line["message"] == "Copied reads.fq"
        assert line["logger"] == "genostore.backends.local"
        assert "timestamp" in line
        assert "context" not in line
        assert "error" not in line

    def test_record_context_and_task(self) -> None:
        """Task identifiers are merged with the record context."""
        with TaskContext(workflow_id="wf-2"):
            line = render(make_record(context={"source": "s3://runs/a.bam"}, duration_ms=4.5))

        assert line["context"] == {"workflow_id": "wf-2", "source": "s3://runs/a.bam"}
        assert line["duration_ms"] == 4.5

    def test_exception(self) -> None:
        """The exception type and message are written, not the traceback."""
        try:
            raise FileNotFoundError("genome.fa")
        except FileNotFoundError as e:
            line = render(make_record(exc_info=(type(e), e, e.__traceback__)))

        assert line["error"] == {"type": "FileNotFoundError", "message": "genome.fa"}

    def test_paths_rendered_as_strings(self) -> None:
        """Values JSON cannot encode are written with str()."""
        entry = LogEntry(
            level=LogLevel.DEBUG,
            message="Resolved",
            timestamp="2024-05-01T00:00:00+00:00",
            logger="genostore",
            context={"path": Path("/repo/hg38.fa.gz")},
        )
        assert json.loads(entry.to_json())["context"]["path"] == "/repo/hg38.fa.gz"


class TestStructuredLogger:
    """Tests for StructuredLogger."""

    def test_context_and_duration(self, caplog: pytest.LogCaptureFixture) -> None:
        """Context and duration are attached to the record."""
        logger = get_logger("genostore.backends.s3")

        with caplog.at_level(logging.INFO, logger="genostore.backends.s3"):
            logger.info("Upload complete", context={"bucket": "runs"}, duration_ms=81.0)

        (record,) = caplog.records
        assert record.context == {"bucket": "runs"}
        assert record.duration_ms == 81.0

    def test_error(self, caplog: pytest.LogCaptureFixture) -> None:
        """The error becomes the exception info of the record."""
        logger = StructuredLogger("genostore.backends.s3")
        error = OSError("disk full")

        with caplog.at_level(logging.WARNING, logger="genostore.backends.s3"):
            logger.warning("Cannot remove temporary file", error=error)

        (record,) = caplog.records
        assert record.levelname == "WARNING"
        assert record.exc_info[1] is error

    def test_disabled_level(self, caplog: pytest.LogCaptureFixture) -> None:
        """Records below the logger level are not created."""
        logger = StructuredLogger("genostore.registry")

        with caplog.at_level(logging.WARNING, logger="genostore.registry"):
            logger.debug("Protocol overridden")
            logger.info("Protocol overridden")

        assert caplog.records == []


class TestTimer:
    """Tests for Timer."""

    def test_not_started(self) -> None:
        assert Timer().duration_ms == 0.0

    def test_stopped(self) -> None:
        """The duration is frozen when the block exits."""
        with Timer() as timer:
            time.sleep(0.02)
        elapsed = timer.duration_ms

        assert elapsed >= 15
        time.sleep(0.01)
        assert timer.duration_ms == elapsed


class TestMetrics:
    """Tests for metric callbacks."""

    def test_metric(self, received) -> None:
        """Name, value and labels are forwarded."""
        emit_metric("genostore.s3.bytes", 2048.0, {"bucket": "runs"})
        assert received == [("genostore.s3.bytes", 2048.0, {"bucket": "runs"})]

    def test_counter_and_timer(self, received) -> None:
        """Counters count one, timers forward the duration."""
        emit_counter("genostore.s3.upload_retries")
        emit_timer("genostore.s3.upload", 350.0)

        assert [(name, value) for name, value, _ in received] == [
            ("genostore.s3.upload_retries", 1.0),
            ("genostore.s3.upload", 350.0),
        ]

    def test_labels_not_mutated(self, received) -> None:
        """The workflow label is added to a copy of the labels."""
        labels = {"bucket": "runs"}
        with TaskContext(workflow_id="wf-3"):
            emit_counter("genostore.s3.upload_failures", labels)

        assert received[0][2] == {"bucket": "runs", "workflow_id": "wf-3"}
        assert labels == {"bucket": "runs"}

    def test_failing_callback(self, received) -> None:
        """A failing callback is skipped."""

        def broken(name: str, value: float, labels: dict) -> None:
            raise RuntimeError("bridge down")

        register_metric_callback(broken)
        try:
            emit_counter("genostore.s3.upload_retries")
        finally:
            unregister_metric_callback(broken)

        assert len(received) == 1

    def test_unregister_unknown(self) -> None:
        """Removing a callback that was never registered is a no-op."""
        unregister_metric_callback(lambda *args: None)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json(self, package_logger: logging.Logger) -> None:
        """JSON output replaces previous handlers."""
        configure_logging(LogLevel.DEBUG)
        configure_logging(LogLevel.DEBUG)

        assert package_logger.level == logging.DEBUG
        (handler,) = package_logger.handlers
        assert isinstance(handler.formatter, StructuredFormatter)

    def test_text(self, package_logger: logging.Logger) -> None:
        """Any other format is plain text."""
        configure_logging("WARNING", format="text")

        assert package_logger.level == logging.WARNING
        assert not isinstance(package_logger.handlers[0].formatter, StructuredFormatter)
