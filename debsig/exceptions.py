"""
debsig-verify Exceptions

Environment-level failures (sandbox, process spawn) are fatal and abort the
run. Input problems (policy, package, configuration) are reported to the
front end. Verification failures and resolution misses are never raised.
"""


class DebsigError(Exception):
    """Base exception for all verifier errors."""

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.reason = reason or message


class SandboxError(DebsigError):
    """Raised when the private trust store cannot be set up."""
    pass


class VerifierSpawnError(DebsigError):
    """Raised when the external verifier cannot be started."""
    pass


class VerifierIOError(DebsigError):
    """Raised when a pipe to or from the external verifier breaks."""
    pass


class VerifierExitError(DebsigError):
    """Raised when a caller escalates a non-zero verifier exit."""

    def __init__(self, message: str, returncode: int = None):
        super().__init__(message)
        self.returncode = returncode


class PolicyError(DebsigError):
    """Raised when a policy file cannot be parsed."""
    pass


class PackageError(DebsigError):
    """Raised when a package archive is unreadable or corrupt."""
    pass


class ConfigError(DebsigError):
    """Raised when the verifier configuration is invalid."""
    pass
