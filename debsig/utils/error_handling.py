"""
Error Handling Utilities for debsig-verify

Provides consistent error reporting for the paths that are allowed to fail
loudly. Verification failures never come through here: they are folded into
boolean outcomes where they happen. What remains are environment errors
(sandbox, process spawn), bad inputs (policy files, package archives,
configuration) and unexpected bugs, which the front end reports once with
full context before exiting.

USAGE:
    from debsig.utils.error_handling import (
        handle_error,
        ErrorCategory,
    )

    try:
        run()
    except DebsigError as e:
        handle_error(e, "verify", ErrorCategory.SANDBOX)
"""

import logging
import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..exceptions import (
    ConfigError,
    PackageError,
    PolicyError,
    SandboxError,
    VerifierExitError,
    VerifierIOError,
    VerifierSpawnError,
)

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    # Private trust store setup or teardown
    SANDBOX = "sandbox"

    # External verifier process handling
    PROCESS = "process"

    # Policy files
    POLICY = "policy"

    # Package archives
    PACKAGE = "package"

    # Configuration errors
    CONFIG = "configuration"

    # File system errors
    FILESYSTEM = "filesystem"

    # Unknown/uncategorized
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Warning - something unexpected but not critical
    WARNING = "warning"

    # Error - operation failed, input rejected
    ERROR = "error"

    # Fatal - the run must stop
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: BaseException
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.error), self.error, self.error.__traceback__
            ))

    @property
    def reason(self) -> str:
        """Short human readable reason."""
        return getattr(self.error, 'reason', None) or str(self.error)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'additional_context': self.additional_context,
        }

    def format_log_message(self, include_trace: bool = False) -> str:
        """Format a log message, optionally with the stack trace."""
        lines = [
            f"{self.operation} failed [{self.severity.value}]: {self.error}",
            f"  Category: {self.category.value}",
            f"  Type: {type(self.error).__name__}",
        ]

        if self.additional_context:
            lines.append("  Context:")
            for key, value in self.additional_context.items():
                lines.append(f"    {key}: {value}")

        if include_trace:
            lines.append("  Stack Trace:")
            for line in self.stack_trace.split('\n'):
                if line.strip():
                    lines.append(f"    {line}")

        return '\n'.join(lines)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Pick the category matching one of the verifier's exception types."""
    if isinstance(error, SandboxError):
        return ErrorCategory.SANDBOX
    if isinstance(error, (VerifierSpawnError, VerifierIOError, VerifierExitError)):
        return ErrorCategory.PROCESS
    if isinstance(error, PolicyError):
        return ErrorCategory.POLICY
    if isinstance(error, PackageError):
        return ErrorCategory.PACKAGE
    if isinstance(error, ConfigError):
        return ErrorCategory.CONFIG
    if isinstance(error, OSError):
        return ErrorCategory.FILESYSTEM
    return ErrorCategory.UNKNOWN


def determine_severity(
    error: BaseException,
    category: ErrorCategory,
) -> ErrorSeverity:
    """
    Determine the severity level for an error based on type and category.
    """
    if isinstance(error, (SystemExit, KeyboardInterrupt)):
        return ErrorSeverity.FATAL

    # Environment failures cannot be recovered from
    if category in (ErrorCategory.SANDBOX, ErrorCategory.PROCESS):
        return ErrorSeverity.FATAL

    if isinstance(error, FileNotFoundError):
        return ErrorSeverity.WARNING

    return ErrorSeverity.ERROR


def handle_error(
    error: BaseException,
    operation: str,
    category: Optional[ErrorCategory] = None,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
) -> ErrorContext:
    """
    Handle an error with logging.

    Args:
        error: The exception that occurred
        operation: Name of the operation that failed
        category: Category of the error (derived from the type if omitted)
        severity: Severity level (auto-determined if not provided)
        additional_context: Additional context information
        reraise: Whether to re-raise the exception after handling

    Returns:
        ErrorContext with full error details
    """
    if category is None:
        category = categorize_error(error)

    if severity is None:
        severity = determine_severity(error, category)

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=additional_context or {},
    )

    log_level_map = {
        ErrorSeverity.WARNING: logging.WARNING,
        ErrorSeverity.ERROR: logging.ERROR,
        ErrorSeverity.FATAL: logging.CRITICAL,
    }
    log_level = log_level_map.get(severity, logging.ERROR)

    logger.log(log_level, context.format_log_message())
    logger.debug(context.stack_trace)

    if reraise:
        raise error

    return context


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'categorize_error',
    'determine_severity',
    'handle_error',
]
