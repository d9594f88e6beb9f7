"""
Utility modules for debsig-verify.

Provides common utilities including:
- Error handling with categorized logging
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    categorize_error,
    determine_severity,
    handle_error,
)

__all__ = [
    # Error handling
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'categorize_error',
    'determine_severity',
    'handle_error',
]
