"""
Structured Logging Utilities for Market History Downloader

Provides consistent, structured logging with proper formatting, error context,
and performance monitoring for the download pipeline. Records emitted through
a bound ContextLogger carry the work item or feed request they belong to.
"""

import logging
import json
import time
import functools
from typing import Dict, Any, Optional, Union
from datetime import datetime, timezone
from pathlib import Path
import sys


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured logging with consistent formatting"""

    def __init__(self, include_timestamp: bool = True, include_level: bool = True):
        self.include_timestamp = include_timestamp
        self.include_level = include_level
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line"""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat() if self.include_timestamp else None,
            'level': record.levelname if self.include_level else None,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ContextLogger(logging.LoggerAdapter):
    """Adapter stamping bound fields (work item, ticker, request id) onto every record"""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        extra['extra_fields'] = {**self.extra, **extra.get('extra_fields', {})}
        kwargs['extra'] = extra
        return msg, kwargs

    def bind(self, **context) -> 'ContextLogger':
        return ContextLogger(self.logger, {**self.extra, **context})


def bind_context(logger: Union[logging.Logger, ContextLogger], **context) -> ContextLogger:
    """Logger whose records all carry the given fields"""
    if isinstance(logger, ContextLogger):
        return logger.bind(**context)
    return ContextLogger(logger, context)


class PerformanceLogger:
    """Context manager for performance logging"""

    def __init__(self, logger: Union[logging.Logger, ContextLogger], operation: str, **extra_fields):
        self.logger = logger
        self.operation = operation
        self.extra_fields = extra_fields
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.debug(
            f"Starting {self.operation}",
            extra={'extra_fields': {**self.extra_fields, 'operation': self.operation, 'status': 'started'}}
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time

        performance_metrics = {
            'operation': self.operation,
            'duration_seconds': round(self.duration, 3),
            'status': 'completed' if exc_type is None else 'failed'
        }

        if exc_type is not None:
            performance_metrics['error'] = {
                'type': exc_type.__name__,
                'message': str(exc_val)
            }

        log_level = logging.INFO if exc_type is None else logging.ERROR
        self.logger.log(
            log_level,
            f"Completed {self.operation} in {self.duration:.3f}s",
            extra={
                'extra_fields': {**self.extra_fields, 'performance_metrics': performance_metrics}
            }
        )
        # Never swallow the exception
        return False


def performance_monitor(operation: str = None, **extra_fields):
    """Decorator for automatic performance monitoring"""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            op_name = operation or f"{func.__module__}.{func.__name__}"

            with PerformanceLogger(logger, op_name, **extra_fields):
                return func(*args, **kwargs)
        return wrapper
    return decorator


def setup_structured_logging(
    log_level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    console_output: bool = True,
    include_timestamp: bool = True,
    include_level: bool = True
) -> logging.Logger:
    """
    Setup structured logging with consistent formatting

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        console_output: Whether to output to console
        include_timestamp: Whether to include timestamp in logs
        include_level: Whether to include log level in logs

    Returns:
        Configured root logger
    """
    formatter = StructuredFormatter(include_timestamp, include_level)

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Set specific loggers to reduce noise
    logging.getLogger('google.cloud').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    return logger


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log message with additional context fields"""
    logger.log(level, message, extra={'extra_fields': context})


def log_error_with_context(logger: logging.Logger, message: str, error: Exception, **context):
    """Log error with full context and exception details"""
    error_context = {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **context
    }

    logger.error(
        message,
        extra={'extra_fields': error_context},
        exc_info=(type(error), error, error.__traceback__)
    )


def log_operation_start(logger: logging.Logger, operation: str, **context):
    """Log the start of an operation"""
    log_with_context(logger, logging.INFO, f"Starting {operation}", status='started', **context)


def log_operation_success(logger: logging.Logger, operation: str, **context):
    """Log successful completion of an operation"""
    log_with_context(logger, logging.INFO, f"Completed {operation}", status='success', **context)


def log_operation_failure(logger: logging.Logger, operation: str, error: Exception, **context):
    """Log failure of an operation"""
    log_error_with_context(logger, f"Failed {operation}", error, status='failed', **context)


def log_data_processing(logger: logging.Logger, operation: str, count: int, **context):
    """Log data processing operations with counts"""
    log_with_context(
        logger,
        logging.INFO,
        f"Processed {count} items in {operation}",
        operation=operation,
        item_count=count,
        **context
    )
