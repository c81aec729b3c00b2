"""
Error Handling Utilities for Market History Downloader

Provides the domain exception hierarchy, error classification and structured
error reporting used by the dispatcher and the command entry point.
"""

import logging
import threading
from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from .logger import log_error_with_context


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification"""
    NETWORK = "network"
    FEED = "feed"
    DATA_VALIDATION = "data_validation"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    SYSTEM = "system"
    BUSINESS_LOGIC = "business_logic"


class HistoryDownloaderError(Exception):
    """Base class for all downloader errors"""


class ConfigurationError(HistoryDownloaderError):
    """Missing or invalid input required to start a run"""


class FeedError(HistoryDownloaderError):
    """The feed connector failed to serve a request"""

    def __init__(self, message: str, ticker: Optional[str] = None, request: Optional[str] = None):
        super().__init__(message)
        self.ticker = ticker
        self.request = request


class StorageError(HistoryDownloaderError):
    """The writer sink failed to persist a sequence"""


@dataclass
class ItemFailure:
    """A single work item that failed during a batch"""
    item: Any
    error: Exception

    def __str__(self) -> str:
        return f"{self.item}: {type(self.error).__name__}: {self.error}"


class BatchDownloadError(HistoryDownloaderError):
    """Aggregate failure raised once every work item of a batch was attempted"""

    def __init__(self, failures: List[ItemFailure], total: int):
        self.failures = list(failures)
        self.total = total
        summary = "; ".join(str(f) for f in self.failures[:5])
        if len(self.failures) > 5:
            summary += f"; ... ({len(self.failures) - 5} more)"
        super().__init__(f"{len(self.failures)} of {total} work items failed: {summary}")


class ErrorContext:
    """Context information for errors"""

    def __init__(self, **kwargs):
        self.timestamp = datetime.now(timezone.utc)
        self.operation = kwargs.get('operation')
        self.component = kwargs.get('component')
        self.work_item = kwargs.get('work_item')
        self.additional_data = kwargs.get('additional_data', {})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            'timestamp': self.timestamp.isoformat(),
            'operation': self.operation,
            'component': self.component,
            'work_item': str(self.work_item) if self.work_item is not None else None,
            'additional_data': self.additional_data
        }


class EnhancedError(Exception):
    """Error with structured classification information"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': self.context.to_dict(),
            'original_error': {
                'type': type(self.original_error).__name__ if self.original_error else None,
                'message': str(self.original_error) if self.original_error else None
            }
        }


class ErrorHandler:
    """Centralized error classification and accounting, safe to share between workers"""

    # Checked in order, first match wins
    TYPE_CATEGORIES = [
        (ConfigurationError, ErrorCategory.CONFIGURATION),
        (FeedError, ErrorCategory.FEED),
        (StorageError, ErrorCategory.STORAGE),
        (ConnectionError, ErrorCategory.NETWORK),
        (TimeoutError, ErrorCategory.NETWORK),
        (OSError, ErrorCategory.STORAGE),
        (ValueError, ErrorCategory.DATA_VALIDATION),
        (MemoryError, ErrorCategory.SYSTEM),
    ]

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.error_counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def handle_error(self, error: Exception, context: Optional[ErrorContext] = None) -> EnhancedError:
        """Classify, log and count an error"""
        category = self._classify_error(error)
        severity = self._determine_severity(category)

        enhanced_error = EnhancedError(
            message=str(error) or type(error).__name__,
            category=category,
            severity=severity,
            context=context,
            original_error=error
        )

        self._log_error(enhanced_error)
        self._update_error_counts(category)

        return enhanced_error

    def _classify_error(self, error: Exception) -> ErrorCategory:
        """Classify error based on type, then message"""
        for error_type, category in self.TYPE_CATEGORIES:
            if isinstance(error, error_type):
                return category

        error_message = str(error).lower()

        if any(keyword in error_message for keyword in ['connection', 'timeout', 'network', 'socket']):
            return ErrorCategory.NETWORK
        if any(keyword in error_message for keyword in ['config', 'setting', 'environment', 'missing']):
            return ErrorCategory.CONFIGURATION
        if any(keyword in error_message for keyword in ['storage', 'file', 'disk', 'bucket']):
            return ErrorCategory.STORAGE
        if any(keyword in error_message for keyword in ['invalid', 'malformed', 'parse']):
            return ErrorCategory.DATA_VALIDATION

        return ErrorCategory.BUSINESS_LOGIC

    def _determine_severity(self, category: ErrorCategory) -> ErrorSeverity:
        """Determine error severity based on category"""
        if category == ErrorCategory.CONFIGURATION:
            return ErrorSeverity.CRITICAL
        elif category in [ErrorCategory.SYSTEM, ErrorCategory.STORAGE]:
            return ErrorSeverity.HIGH
        elif category in [ErrorCategory.NETWORK, ErrorCategory.FEED]:
            return ErrorSeverity.MEDIUM
        else:
            return ErrorSeverity.LOW

    def _log_error(self, enhanced_error: EnhancedError):
        """Log enhanced error with structured information"""
        log_error_with_context(
            self.logger,
            f"{enhanced_error.severity.value.capitalize()} severity error: {enhanced_error.message}",
            enhanced_error.original_error or enhanced_error,
            category=enhanced_error.category.value,
            severity=enhanced_error.severity.value,
            context=enhanced_error.context.to_dict()
        )

    def _update_error_counts(self, category: ErrorCategory):
        """Update error counts for monitoring"""
        key = f"{category.value}_errors"
        with self._lock:
            self.error_counts[key] = self.error_counts.get(key, 0) + 1

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of error counts"""
        with self._lock:
            counts = self.error_counts.copy()
        return {
            'total_errors': sum(counts.values()),
            'error_breakdown': counts,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
