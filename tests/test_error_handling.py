"""
Tests for debsig/utils/error_handling.py
"""

import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from debsig.exceptions import (
    ConfigError,
    PackageError,
    PolicyError,
    SandboxError,
    VerifierExitError,
    VerifierSpawnError,
)
from debsig.utils.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    categorize_error,
    determine_severity,
    handle_error,
)


class TestCategorization:
    """Tests for error categories and severities."""

    @pytest.mark.unit
    @pytest.mark.parametrize("error, category", [
        (SandboxError("x"), ErrorCategory.SANDBOX),
        (VerifierSpawnError("x"), ErrorCategory.PROCESS),
        (VerifierExitError("x", returncode=2), ErrorCategory.PROCESS),
        (PolicyError("x"), ErrorCategory.POLICY),
        (PackageError("x"), ErrorCategory.PACKAGE),
        (ConfigError("x"), ErrorCategory.CONFIG),
        (FileNotFoundError("x"), ErrorCategory.FILESYSTEM),
        (RuntimeError("x"), ErrorCategory.UNKNOWN),
    ])
    def test_categorize(self, error, category):
        assert categorize_error(error) is category

    @pytest.mark.unit
    def test_environment_failures_are_fatal(self):
        assert determine_severity(SandboxError("x"), ErrorCategory.SANDBOX) is ErrorSeverity.FATAL
        assert determine_severity(VerifierSpawnError("x"), ErrorCategory.PROCESS) is ErrorSeverity.FATAL

    @pytest.mark.unit
    def test_input_errors(self):
        assert determine_severity(PolicyError("x"), ErrorCategory.POLICY) is ErrorSeverity.ERROR
        assert determine_severity(FileNotFoundError("x"), ErrorCategory.FILESYSTEM) is ErrorSeverity.WARNING


class TestHandleError:
    """Tests for handle_error."""

    @pytest.mark.unit
    def test_logs_and_returns_context(self, caplog):
        error = PackageError("cannot read hello.deb: No such file", reason="cannot read package")
        with caplog.at_level(logging.ERROR, logger="debsig"):
            context = handle_error(error, "verifying hello.deb",
                                   additional_context={"path": "hello.deb"})
        assert context.category is ErrorCategory.PACKAGE
        assert context.severity is ErrorSeverity.ERROR
        assert context.reason == "cannot read package"
        assert "verifying hello.deb failed [error]: cannot read hello.deb" in caplog.text
        assert "path: hello.deb" in caplog.text

    @pytest.mark.unit
    def test_explicit_severity(self, caplog):
        with caplog.at_level(logging.CRITICAL, logger="debsig"):
            context = handle_error(PolicyError("bad"), "loading", severity=ErrorSeverity.FATAL)
        assert context.severity is ErrorSeverity.FATAL
        assert caplog.records[-1].levelno == logging.CRITICAL

    @pytest.mark.unit
    def test_reraise(self):
        with pytest.raises(SandboxError):
            handle_error(SandboxError("gone"), "initializing", reraise=True)

    @pytest.mark.unit
    def test_to_dict(self):
        data = handle_error(ConfigError("bad key"), "loading config").to_dict()
        assert data["error_type"] == "ConfigError"
        assert data["category"] == "configuration"
        assert data["operation"] == "loading config"

    @pytest.mark.unit
    def test_trace_in_message(self):
        try:
            raise PolicyError("broken")
        except PolicyError as e:
            context = handle_error(e, "parsing")
        assert "Stack Trace:" in context.format_log_message(include_trace=True)
        assert "raise PolicyError" in context.stack_trace

