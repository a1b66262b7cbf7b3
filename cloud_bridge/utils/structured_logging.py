"""
Structured logging with correlation ids for discovery and collection runs.
"""

import asyncio
import functools
import json
import logging
import logging.handlers
import sys
import threading
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

# Correlation id of the run currently being logged
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Attributes every LogRecord carries; anything else is an extra field
_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'correlation_id', 'taskName', 'message'
})


@dataclass
class LogContext:
    """Context information attached to every message of a contextual logger."""
    correlation_id: Optional[str] = None
    operation: Optional[str] = None
    provider_id: Optional[str] = None
    resource_id: Optional[str] = None
    additional_fields: Optional[Dict[str, Any]] = None

    def as_extra(self) -> Dict[str, Any]:
        extra = {
            key: value for key, value in (
                ("operation", self.operation),
                ("provider_id", self.provider_id),
                ("resource_id", self.resource_id),
            )
            if value
        }
        if self.additional_fields:
            extra.update(self.additional_fields)
        return extra


class CorrelationIdFilter(logging.Filter):
    """Logging filter that stamps the current correlation id on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """
    Formatter that renders each record as one JSON object.

    Extra fields passed through ``extra=`` are kept under the "extra" key
    so provider and resource ids stay queryable in log aggregation.
    """

    def __init__(
        self,
        include_extra_fields: bool = True,
        timestamp_format: str = "%Y-%m-%dT%H:%M:%S.%f"
    ):
        super().__init__()
        self.include_extra_fields = include_extra_fields
        self.timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).strftime(self.timestamp_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
            "thread": threading.current_thread().name,
            "correlation_id": getattr(record, 'correlation_id', '-')
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        if self.include_extra_fields:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _RESERVED_ATTRS:
                    continue
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ContextualLogger:
    """
    Logger wrapper that adds a LogContext to each message.
    """

    def __init__(self, name: str, context: Optional[LogContext] = None):
        self.logger = logging.getLogger(name)
        self.context = context or LogContext()

    def _log(self, level: int, message: str, *args, exc_info: Any = None, **fields) -> None:
        extra = self.context.as_extra()
        extra.update(fields)

        if self.context.correlation_id:
            correlation_id.set(self.context.correlation_id)

        self.logger.log(level, message, *args, exc_info=exc_info, extra=extra)

    def debug(self, message: str, *args, **kwargs) -> None:
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs) -> None:
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs) -> None:
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs) -> None:
        self._log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: str, *args, **kwargs) -> None:
        kwargs['exc_info'] = True
        self._log(logging.ERROR, message, *args, **kwargs)

    def with_context(self, **updates) -> 'ContextualLogger':
        """Create a logger whose context is this one's with ``updates`` applied."""
        merged_fields = {
            **(self.context.additional_fields or {}),
            **updates.pop('additional_fields', {})
        }
        new_context = LogContext(
            correlation_id=updates.get('correlation_id', self.context.correlation_id),
            operation=updates.get('operation', self.context.operation),
            provider_id=updates.get('provider_id', self.context.provider_id),
            resource_id=updates.get('resource_id', self.context.resource_id),
            additional_fields=merged_fields or None
        )
        return ContextualLogger(self.logger.name, new_context)


class LoggingManager:
    """
    Process-wide logging setup: console and rotating file handlers, plain
    or JSON format, and correlation ids on every record.
    """

    def __init__(self):
        self._configured = False
        self._log_handlers: Dict[str, logging.Handler] = {}

    @property
    def configured(self) -> bool:
        return self._configured

    def setup_logging(
        self,
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        max_file_size: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        console_output: bool = True,
        structured_format: bool = False,
        force: bool = False
    ) -> None:
        """
        Configure the root logger.

        Args:
            log_level: Logging level name (DEBUG, INFO, WARNING, ERROR)
            log_file: Path of a rotating log file (optional)
            max_file_size: Size in bytes before the log file rotates
            backup_count: Number of rotated files to keep
            console_output: Whether to log to stdout
            structured_format: Emit JSON lines instead of plain text
            force: Reconfigure even if logging was already set up
        """
        if self._configured and not force:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper()))

        for handler in self._log_handlers.values():
            root_logger.removeHandler(handler)
        self._log_handlers.clear()

        if structured_format:
            formatter: logging.Formatter = StructuredFormatter()
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s'
            )

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            self._install_handler('console', console_handler, formatter)

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            self._install_handler('file', file_handler, formatter)

        # Third-party libraries are noisy at INFO
        for noisy in ('apscheduler', 'aiohttp', 'botocore', 'boto3', 'urllib3', 'watchdog', 'asyncio'):
            logging.getLogger(noisy).setLevel(logging.WARNING)

        self._configured = True

        logging.getLogger(__name__).info(
            "Logging configured",
            extra={"log_level": log_level, "log_file": log_file, "structured_format": structured_format}
        )

    def _install_handler(self, name: str, handler: logging.Handler, formatter: logging.Formatter) -> None:
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIdFilter())
        logging.getLogger().addHandler(handler)
        self._log_handlers[name] = handler

    def create_correlation_id(self) -> str:
        return uuid.uuid4().hex[:12]

    def set_correlation_id(self, corr_id: Optional[str] = None) -> str:
        """Set the correlation id for the current context, generating one if needed."""
        if corr_id is None:
            corr_id = self.create_correlation_id()
        correlation_id.set(corr_id)
        return corr_id

    def get_correlation_id(self) -> Optional[str]:
        return correlation_id.get()


# Global logging manager instance
logging_manager = LoggingManager()


def get_logger(name: str, context: Optional[LogContext] = None) -> ContextualLogger:
    """
    Get a contextual logger instance.

    Args:
        name: Logger name
        context: Optional logging context

    Returns:
        ContextualLogger instance
    """
    return ContextualLogger(name, context)


def with_correlation_id(func):
    """
    Run ``func`` under a fresh correlation id, restoring the previous one after.

    Works for both coroutine functions and plain functions.
    """
    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            token = correlation_id.set(logging_manager.create_correlation_id())
            try:
                return await func(*args, **kwargs)
            finally:
                correlation_id.reset(token)
        return async_wrapper

    @functools.wraps(func)
    def sync_wrapper(*args, **kwargs):
        token = correlation_id.set(logging_manager.create_correlation_id())
        try:
            return func(*args, **kwargs)
        finally:
            correlation_id.reset(token)
    return sync_wrapper
