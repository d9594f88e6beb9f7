"""
Centralized Constants Module for debsig-verify.

Collects the paths, environment variable names, GnuPG invocation vectors and
format constants used across the verifier so they can be audited in one
place.

Usage:
    from debsig.constants import Paths, GnuPG, SignatureKind

    keyring = Path(Paths.KEYRINGS_DIR) / origin / match.keyring_file
    cmd = [program, *GnuPG.COMMON_ARGS, *GnuPG.VERIFY_ARGS]
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    validator: Optional[Callable[[T], bool]] = None,
) -> T:
    """Get a configuration value with environment variable override.

    Args:
        env_var: Environment variable name (will be prefixed with DEBSIG_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        validator: Optional validation function

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"DEBSIG_{env_var}"
    env_value = os.environ.get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if validator is not None and not validator(converted):
            logger.warning(
                f"{full_env_var}={env_value} failed validation, using default"
            )
            return default

        logger.debug(f"Using {full_env_var}={converted} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


def _env_flag(env_var: str) -> bool:
    """Interpret DEBSIG_<env_var> as a boolean flag."""
    return os.environ.get(f"DEBSIG_{env_var}", '').lower() in ('1', 'true', 'yes')


# =============================================================================
# ENVIRONMENT SURFACE
# =============================================================================

@dataclass(frozen=True)
class EnvVars:
    """Environment variables read or written by the verifier."""
    # Overrides the gpg executable, read once when the sandbox initializes
    GNUPG_PROGRAM: str = "DEBSIG_GNUPG_PROGRAM"
    # Set internally for every gpg child; never read from the caller
    GNUPG_HOME: str = "GNUPGHOME"
    CONFIG_FILE: str = "DEBSIG_VERIFY_CONFIG"


# =============================================================================
# PATH CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Paths:
    """
    Filesystem locations of policies and keyrings.

    Both are relative to the administrative root (``--root``), matching the
    layout dpkg uses for its configuration.
    """
    ROOT_DIR: str = "/"
    POLICIES_DIR: str = "/etc/debsig/policies"
    KEYRINGS_DIR: str = "/usr/share/debsig/keyrings"
    POLICY_SUFFIX: str = ".pol"
    SANDBOX_PREFIX: str = "debsig-verify."
    WORKDIR_PREFIX: str = "debsig-data."


class Permissions(IntEnum):
    """File permission modes used for private scratch space."""
    SECURE_FILE = 0o600                 # rw-------


# =============================================================================
# GNUPG INVOCATION
# =============================================================================

@dataclass(frozen=True)
class GnuPG:
    """
    Argument vectors for the external OpenPGP verifier.

    These must stay bit-compatible with what gpg expects for the list, dump
    and verify operations. Every invocation is non-interactive and ignores
    user configuration and default keyrings.
    """
    DEFAULT_PROGRAM: str = "gpg"
    COMMON_ARGS: Tuple[str, ...] = (
        "--no-options",
        "--no-default-keyring",
        "--batch",
        "--no-secmem-warning",
        "--no-permission-warning",
        "--no-mdc-warning",
        "--no-auto-check-trustdb",
    )
    LIST_KEYS_ARGS: Tuple[str, ...] = (
        "--quiet",
        "--with-colons",
        "--show-keys",
    )
    LIST_PACKETS_ARGS: Tuple[str, ...] = ("--list-packets", "-q", "-")
    # Legacy digests are reported as weak instead of silently trusted
    WEAK_DIGEST_ARGS: Tuple[str, ...] = ("--weak-digest", "sha1")


@dataclass(frozen=True)
class OutputFormat:
    """Markers and field positions in gpg output."""
    # Colon listing (doc/DETAILS in GnuPG)
    RECORD_PUB: str = "pub"
    RECORD_FPR: str = "fpr"
    RECORD_UID: str = "uid"
    FIELD_USER_ID: int = 10
    FIELD_FINGERPRINT: int = 10

    # --list-packets dump
    COMMENT_PREFIX: str = "#"
    SIGNATURE_PACKET: str = ":signature packet:"
    KEYID_TOKEN: str = "keyid"
    ISSUER_FINGERPRINT: str = "issuer fpr v"
    FINGERPRINT_LENGTH: int = 40
    LONG_KEYID_LENGTH: int = 16


class SignatureKind(Enum):
    """Package signature sections recognized in a .deb archive."""
    ORIGIN = "origin"
    MAINTAINER = "maint"
    ARCHIVE = "archive"
    BUILDER = "builder"

    @property
    def member_name(self) -> str:
        """Archive member holding this signature."""
        return f"_gpg{self.value}"

    @classmethod
    def from_policy(cls, value: str) -> 'SignatureKind':
        """Map a policy ``Type`` attribute to a signature kind."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"unknown signature type '{value}'") from None


# =============================================================================
# EXIT STATUS
# =============================================================================

class ExitStatus(IntEnum):
    """Process exit status of the command line front end."""
    OK = 0
    VERIFY_FAILED = 1
    NO_POLICY = 2
    FATAL = 3


@dataclass(frozen=True)
class Version:
    """Version and format constants."""
    VERSION: str = "0.23.0"
    POLICY_NAMESPACE: str = "https://www.debian.org/debsig/1.0/"


class RuntimeConfig:
    """Runtime values that can be overridden via environment variables."""

    @staticmethod
    def get_gpg_timeout() -> Optional[float]:
        """Get the per-invocation gpg timeout (unset means no timeout)."""
        return _env_override(
            "GNUPG_TIMEOUT", None, converter=float,
            validator=lambda value: value > 0,
        )

    @staticmethod
    def is_verbose() -> bool:
        return _env_flag("VERBOSE")

    @staticmethod
    def is_debug() -> bool:
        return _env_flag("DEBUG")


__all__ = [
    'EnvVars',
    'Paths',
    'Permissions',
    'GnuPG',
    'OutputFormat',
    'SignatureKind',
    'ExitStatus',
    'Version',
    'RuntimeConfig',
]
