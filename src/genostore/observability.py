"""Logging and metrics for storage operations.

Log records are rendered as one JSON object per line. The workflow, step
and task currently being executed are attached to every record through
context variables, so protocols do not have to pass them around.
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partialmethod
from typing import Any, Callable

ROOT_LOGGER = "genostore"

workflow_id_var: ContextVar[str | None] = ContextVar("workflow_id", default=None)
step_id_var: ContextVar[str | None] = ContextVar("step_id", default=None)
task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "workflow_id": workflow_id_var,
    "step_id": step_id_var,
    "task_id": task_id_var,
}


class LogLevel(str, Enum):
    """Log level names accepted by the settings."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LogContext:
    """Identifiers of the running task plus free-form fields."""

    workflow_id: str | None = None
    step_id: str | None = None
    task_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def current(cls) -> "LogContext":
        return cls(**{name: var.get() for name, var in _CONTEXT_VARS.items()})

    def to_dict(self) -> dict[str, Any]:
        """Set identifiers followed by the extra fields."""
        ids = {name: getattr(self, name) for name in _CONTEXT_VARS}
        return {**{k: v for k, v in ids.items() if v}, **self.extra}


@dataclass
class LogEntry:
    """One rendered log line."""

    level: LogLevel
    message: str
    timestamp: str
    logger: str
    context: dict[str, Any] = field(default_factory=dict)
    error: dict[str, Any] | None = None
    duration_ms: float | None = None

    def to_json(self) -> str:
        data: dict[str, Any] = {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "logger": self.logger,
        }
        optional = {"context": self.context, "error": self.error}
        data.update((k, v) for k, v in optional.items() if v)
        if self.duration_ms is not None:
            data["duration_ms"] = self.duration_ms
        # Paths and enums in contexts are rendered with str()
        return json.dumps(data, default=str)


class StructuredFormatter(logging.Formatter):
    """Renders records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        context = LogContext.current().to_dict()
        record_context = getattr(record, "context", None)
        if isinstance(record_context, dict):
            context.update(record_context)

        error = None
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            error = {"type": exc_type.__name__, "message": str(exc_value or "")}

        return LogEntry(
            level=LogLevel(record.levelname),
            message=record.getMessage(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            logger=record.name,
            context=context,
            error=error,
            duration_ms=getattr(record, "duration_ms", None),
        ).to_json()


class StructuredLogger:
    """Logger taking structured context instead of formatted strings.

    Example:
        logger = get_logger(__name__)
        logger.info("Upload complete", context={"bucket": "runs"}, duration_ms=812.0)
        logger.warning("Cannot read symbolic link target", error=exc)
    """

    def __init__(self, name: str) -> None:
        # Level and handlers come from the package logger, see configure_logging
        self.logger = logging.getLogger(name)

    def log(
        self,
        level: LogLevel,
        message: str,
        context: dict[str, Any] | None = None,
        error: BaseException | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Emit a record at ``level``."""
        numeric_level = logging.getLevelName(level.value)
        if not self.logger.isEnabledFor(numeric_level):
            return

        extra: dict[str, Any] = {}
        if context:
            extra["context"] = context
        if duration_ms is not None:
            extra["duration_ms"] = duration_ms

        exc_info = (type(error), error, error.__traceback__) if error is not None else None
        self.logger.log(numeric_level, message, exc_info=exc_info, extra=extra)

    debug = partialmethod(log, LogLevel.DEBUG)
    info = partialmethod(log, LogLevel.INFO)
    warning = partialmethod(log, LogLevel.WARNING)
    error = partialmethod(log, LogLevel.ERROR)


class TaskContext:
    """Attach workflow identifiers to the logs and metrics of a block.

    Example:
        with TaskContext(workflow_id="wf-1", step_id="mapping", task_id="3"):
            genome.copy_to(destination)
    """

    def __init__(
        self,
        workflow_id: str | None = None,
        step_id: str | None = None,
        task_id: str | None = None,
    ) -> None:
        self.values = {"workflow_id": workflow_id, "step_id": step_id, "task_id": task_id}
        self._tokens: list[tuple[ContextVar[str | None], Any]] = []

    def __enter__(self) -> "TaskContext":
        for name, value in self.values.items():
            if value:
                var = _CONTEXT_VARS[name]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, *args: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


class Timer:
    """Measure the wall time of a block; readable while running."""

    def __init__(self) -> None:
        self.started: float | None = None
        self.stopped: float | None = None

    @property
    def duration_ms(self) -> float:
        if self.started is None:
            return 0.0
        end = self.stopped if self.stopped is not None else time.perf_counter()
        return (end - self.started) * 1000

    def __enter__(self) -> "Timer":
        self.started = time.perf_counter()
        self.stopped = None
        return self

    def __exit__(self, *args: Any) -> None:
        self.stopped = time.perf_counter()


# Receives (name, value, labels)
MetricCallback = Callable[[str, float, dict[str, Any]], None]

_metric_callbacks: list[MetricCallback] = []


def register_metric_callback(callback: MetricCallback) -> None:
    """Forward every metric to ``callback``, e.g. a Prometheus or StatsD bridge."""
    _metric_callbacks.append(callback)


def unregister_metric_callback(callback: MetricCallback) -> None:
    if callback in _metric_callbacks:
        _metric_callbacks.remove(callback)


def emit_metric(name: str, value: float, labels: dict[str, Any] | None = None) -> None:
    """Send a metric to the registered callbacks.

    The current workflow id is added to the labels. A failing callback is
    skipped and never fails the storage operation that emitted the metric.
    """
    labels = dict(labels or {})
    workflow_id = workflow_id_var.get()
    if workflow_id:
        labels.setdefault("workflow_id", workflow_id)

    for callback in list(_metric_callbacks):
        try:
            callback(name, value, labels)
        except Exception:
            logging.getLogger(ROOT_LOGGER).debug("Metric callback failed", exc_info=True)


def emit_counter(name: str, labels: dict[str, Any] | None = None) -> None:
    emit_metric(name, 1.0, labels)


def emit_timer(name: str, duration_ms: float, labels: dict[str, Any] | None = None) -> None:
    emit_metric(name, duration_ms, labels)


def configure_logging(level: LogLevel | str = LogLevel.INFO, format: str = "json") -> None:
    """Send genostore logs to stderr.

    Args:
        level: Minimum level
        format: ``json`` for JSON lines, anything else for plain text
    """
    handler = logging.StreamHandler(sys.stderr)
    if format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    package_logger = logging.getLogger(ROOT_LOGGER)
    package_logger.setLevel(LogLevel(level).value)
    package_logger.handlers[:] = [handler]


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
