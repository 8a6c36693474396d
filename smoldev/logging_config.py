"""
smoldev - Centralized Logging Configuration
Supports both plain text (console) and JSON structured logging
"""

import logging
import sys
import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional, Union
from contextvars import ContextVar


# Context variables for run tracing; each generation task sets its own file_path
run_id_var: ContextVar[str] = ContextVar('run_id', default='')
file_path_var: ContextVar[str] = ContextVar('file_path', default='')


def get_run_id() -> str:
    """Get current run ID from context"""
    return run_id_var.get() or ''


def set_run_id(run_id: str) -> None:
    """Set run ID in context"""
    run_id_var.set(run_id)


def get_file_path() -> str:
    """Get the file currently being generated from context"""
    return file_path_var.get() or ''


def set_file_path(file_path: str) -> None:
    """Set the file currently being generated in context"""
    file_path_var.set(file_path)


def generate_run_id() -> str:
    """Generate a unique run ID"""
    return str(uuid.uuid4())[:8]


_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName', 'run_id', 'file_path',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging
    One object per line, easy to feed into log tooling
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        run_id = get_run_id()
        if run_id:
            log_data["run_id"] = run_id

        file_path = get_file_path()
        if file_path:
            log_data["file_path"] = file_path

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        # Extra fields passed via extra={...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    """
    Readable formatter that includes context variables (run_id, file_path)
    """

    def format(self, record: logging.LogRecord) -> str:
        record.run_id = get_run_id() or '-'
        record.file_path = get_file_path() or '-'

        return super().format(record)


class SmolDevLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_stage_event(self, stage: str, event: str, **kwargs) -> None:
        """Log a pipeline stage transition"""
        self.info(
            f"Stage {stage}: {event}",
            extra={
                "event_type": "stage",
                "stage": stage,
                "stage_event": event,
                **kwargs
            }
        )

    def log_error_with_context(self, error: BaseException, context: str = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=error,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )


def setup_logging(
    level: Union[int, str] = logging.WARNING,
    log_file: Optional[str] = None,
    json_logs: bool = False,
) -> SmolDevLogger:
    """Setup logging configuration for a CLI run"""

    logging.setLoggerClass(SmolDevLogger)

    logger = logging.getLogger("smoldev")
    logger.__class__ = SmolDevLogger
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)
    logger.setLevel(logging.DEBUG if log_file else level)
    logger.propagate = False

    logger.handlers.clear()

    detailed_format = (
        "%(asctime)s | %(levelname)-8s | "
        "[%(run_id)s] [%(file_path)s] | "
        "%(funcName)s:%(lineno)d | %(message)s"
    )
    simple_format = "%(levelname)-8s | %(message)s"

    # Console goes to stderr; stdout carries the progress display
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(JSONFormatter() if json_logs else ContextualFormatter(simple_format))
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=10485760,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter() if json_logs else ContextualFormatter(detailed_format))
        logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

    logger.debug(
        "Logging initialized",
        extra={
            "log_level": logging.getLevelName(level),
            "json_logging": json_logs
        }
    )

    return logger


logger: SmolDevLogger = logging.getLogger("smoldev")  # type: ignore[assignment]
logger.__class__ = SmolDevLogger


__all__ = [
    'logger',
    'setup_logging',
    'get_run_id',
    'set_run_id',
    'get_file_path',
    'set_file_path',
    'generate_run_id',
    'JSONFormatter',
    'ContextualFormatter',
    'SmolDevLogger',
]
