"""Structured logging infrastructure for the ECS agent scheduler.

Provides structured logging using structlog with scheduler-specific context
such as the task name being scheduled and the job it serves. Supports
human-readable console output and JSON output (stdout or a rotating file).

Example usage:
    from ecs_agents.core.logging import get_logger, configure_logging, with_context

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("orchestrator")

    # Log with key/value fields
    logger.info("task_scheduled", task_arn=arn)

    # Correlate every entry of one scheduling attempt
    ctx = SchedulingContext(task_name="ElasticAgentab12", job_id="build/42/test/1/unit")
    with with_context(ctx):
        logger.info("registering_task_definition")  # includes task_name, job_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field name fragments whose values must never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "auto_register_key",
    "access_key",
    "secret",
    "token",
    "password",
    "credential",
    "authorization",
})


@dataclass(frozen=True)
class SchedulingContext:
    """Immutable correlation context for one scheduling attempt.

    Attributes:
        task_name: Generated task definition family / agent id.
        job_id: Human-readable job identity the task serves.
        attempt_id: Unique id for this attempt (UUID).
        component: Component name for the current operation.
    """

    task_name: str
    job_id: str | None = None
    attempt_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    component: str = "unknown"

    def with_component(self, component: str) -> SchedulingContext:
        """Return a copy of this context bound to another component."""
        return SchedulingContext(
            task_name=self.task_name,
            job_id=self.job_id,
            attempt_id=self.attempt_id,
            component=component,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging (None values dropped)."""
        result: dict[str, Any] = {
            "task_name": self.task_name,
            "attempt_id": self.attempt_id,
            "component": self.component,
        }
        if self.job_id is not None:
            result["job_id"] = self.job_id
        return result


_current_context: ContextVar[SchedulingContext | None] = ContextVar(
    "ecs_agents_context", default=None
)


def get_current_context() -> SchedulingContext | None:
    """Get the current SchedulingContext if set."""
    return _current_context.get()


@contextmanager
def with_context(ctx: SchedulingContext) -> Iterator[SchedulingContext]:
    """Set a SchedulingContext for the duration of a block.

    All log calls within the block include the context fields when the
    context processor is active.

    Args:
        ctx: The SchedulingContext to use for the block.

    Yields:
        The SchedulingContext that was set.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    """Return "[REDACTED]" for values under sensitive keys, else the value."""
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields (one level of nesting)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {
                k: _sanitize_value(k, v) for k, v in value.items()
            }
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active SchedulingContext.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class SchedulerLogger:
    """Component logger wrapping structlog.

    The underlying structlog logger is fetched lazily on each call, so
    loggers created at import time still honour a later
    ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> SchedulerLogger:
        """Create a new logger with additional bound context."""
        new_logger = SchedulerLogger.__new__(SchedulerLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback. Call from within an except block."""
        self._get_logger().exception(event, **kw)


def _get_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]

    if include_context:
        processors.append(_add_context)

    if include_timestamps:
        processors.append(_add_timestamp)

    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure structured logging for the scheduler.

    Call once at startup before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for
            structured output to ``file_path`` (or stdout when unset).
        file_path: Optional rotating log file for JSON output.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to add ISO8601 timestamps.
        include_context: Whether to merge the active SchedulingContext.
    """
    log_level = getattr(logging, level)

    handler: logging.Handler
    if format == "json" and file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
    elif format == "json":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # cache_logger_on_first_use=False so module-level loggers pick up this config
    structlog.configure(
        processors=_get_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> SchedulerLogger:
    """Get a logger bound to a component name.

    Args:
        component: The component name (e.g., "orchestrator", "registry").
        **initial_context: Additional context to bind.

    Returns:
        A SchedulerLogger instance bound to the component.
    """
    return SchedulerLogger(component, **initial_context)


__all__ = [
    "SENSITIVE_PATTERNS",
    "SchedulerLogger",
    "SchedulingContext",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
