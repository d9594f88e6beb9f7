"""
Logging Configuration for debsig-verify.

Provides centralized logging configuration with a verbosity toggle and
structured log formatting. Every resolution and verification step logs a
line at VERBOSE or DEBUG level, so ``-v``/``-d`` on the command line shows
which keyring was consulted, which identity was resolved, and why a match did
or did not hold.

Usage:
    from debsig.logging_config import setup_logging, get_logger

    # Setup at startup
    setup_logging(verbosity=Verbosity.DEBUG)

    # Get a module logger
    logger = get_logger('debsig.openpgp.gpg')
    logger.verbose("Using keyring %s", keyring)
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import RuntimeConfig


# =============================================================================
# LOGGING LEVELS
# =============================================================================

TRACE = 5
VERBOSE = 15


class Verbosity(IntEnum):
    """Front end verbosity mapped to logging levels."""
    QUIET = logging.ERROR
    NORMAL = logging.INFO
    VERBOSE = VERBOSE
    DEBUG = logging.DEBUG
    TRACE = TRACE


logging.addLevelName(TRACE, 'TRACE')
logging.addLevelName(VERBOSE, 'VERBOSE')

_setup_lock = threading.Lock()


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class DebsigFormatter(logging.Formatter):
    """Formatter with optional color and JSON output."""

    COLORS = {
        'TRACE': '\033[90m',      # Gray
        'DEBUG': '\033[36m',      # Cyan
        'VERBOSE': '\033[94m',    # Light blue
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33;1m',  # Bold yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[31;1m', # Bold red
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, json_format: bool = False,
                 stream=None):
        stream = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        level_name = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            level_str = f"{color}{level_name:8}{reset}"
        else:
            level_str = f"{level_name:8}"

        feature = self._extract_feature(record.name)
        msg = record.getMessage()

        extra_str = ""
        if hasattr(record, 'extra_data') and record.extra_data:
            extra_items = [f"{k}={v}" for k, v in record.extra_data.items()]
            extra_str = f" | {', '.join(extra_items)}"

        text = f"debsig: {level_str} [{feature}] {msg}{extra_str}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'feature': self._extract_feature(record.name),
        }

        if hasattr(record, 'extra_data') and record.extra_data:
            data['extra'] = record.extra_data

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data)

    def _extract_feature(self, logger_name: str) -> str:
        """Extract feature area from logger name."""
        parts = logger_name.split('.')
        if len(parts) >= 2 and parts[0] == 'debsig':
            # debsig.openpgp.gpg -> openpgp
            return parts[1]
        return parts[0] if parts and parts[0] else 'core'


# =============================================================================
# CUSTOM LOGGER CLASS
# =============================================================================

class DebsigLogger(logging.Logger):
    """Logger with TRACE and VERBOSE levels and structured extras."""

    def trace(self, msg: str, *args, **kwargs):
        """Log at TRACE level (ultra-verbose)."""
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    def verbose(self, msg: str, *args, **kwargs):
        """Log at VERBOSE level."""
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, msg, args, **kwargs)

    def log_with_data(self, level: int, msg: str, data: Dict[str, Any], **kwargs):
        """Log with structured extra data."""
        if not self.isEnabledFor(level):
            return
        extra = kwargs.get('extra', {})
        extra['extra_data'] = data
        kwargs['extra'] = extra
        self._log(level, msg, (), **kwargs)


logging.setLoggerClass(DebsigLogger)


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def setup_logging(
    verbosity: Verbosity = Verbosity.NORMAL,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    stream=None,
) -> None:
    """
    Initialize the logging system.

    Args:
        verbosity: Minimum level shown
        log_file: Optional file path for log output
        console: Enable console output (stderr)
        json_format: Use JSON format for logs
        stream: Console stream override (defaults to stderr)
    """
    with _setup_lock:
        level = int(Verbosity(verbosity))

        root = logging.getLogger('debsig')
        root.setLevel(level)
        root.propagate = False

        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()

        if console:
            console_stream = stream if stream is not None else sys.stderr
            console_handler = logging.StreamHandler(console_stream)
            console_handler.setLevel(level)
            console_handler.setFormatter(DebsigFormatter(
                use_colors=True,
                json_format=json_format,
                stream=console_stream,
            ))
            root.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(DebsigFormatter(
                use_colors=False,
                json_format=json_format,
            ))
            root.addHandler(file_handler)


def get_logger(name: str) -> DebsigLogger:
    """
    Get a logger with the TRACE and VERBOSE helpers.

    Args:
        name: Logger name (e.g., 'debsig.openpgp.gpg')

    Returns:
        DebsigLogger instance
    """
    logger = logging.getLogger(name)
    if not isinstance(logger, DebsigLogger):
        # Created before the logger class was installed
        logger.__class__ = DebsigLogger
    return logger


# =============================================================================
# ENVIRONMENT VARIABLE CONFIGURATION
# =============================================================================

def verbosity_from_environment(default: Verbosity = Verbosity.NORMAL) -> Verbosity:
    """Pick the verbosity requested through DEBSIG_DEBUG / DEBSIG_VERBOSE."""
    if RuntimeConfig.is_debug():
        return Verbosity.DEBUG
    if RuntimeConfig.is_verbose():
        return Verbosity.VERBOSE
    return default


def configure_from_environment(verbosity: Optional[Verbosity] = None) -> None:
    """Configure logging from environment variables; an explicit verbosity wins."""
    setup_logging(
        verbosity=verbosity if verbosity is not None else verbosity_from_environment(),
        log_file=os.environ.get('DEBSIG_LOG_FILE'),
        json_format=os.environ.get('DEBSIG_LOG_JSON', '').lower() in ('1', 'true', 'yes'),
    )


__all__ = [
    'TRACE',
    'VERBOSE',
    'Verbosity',
    'setup_logging',
    'configure_from_environment',
    'verbosity_from_environment',
    'get_logger',
    'DebsigLogger',
    'DebsigFormatter',
]
