"""
Signature Backend interface.

The policy evaluator only ever talks to a ``SignatureBackend``. The GnuPG
subprocess backend is the one shipped today; another engine can be plugged
in by subclassing and registering it, without touching policy evaluation.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from ..constants import OutputFormat, SignatureKind
from ..logging_config import get_logger
from ..policy.model import Match

logger = get_logger(__name__)


class SignatureBackend(ABC):
    """
    Capability surface of a signature verification engine.

    All identifiers returned are normalized upper-case hex (fingerprint when
    known, key id otherwise) or, for resolve_identity's fallback, the
    caller's identity verbatim.
    """

    name = "abstract"

    def __init__(self, keyrings_dir: Union[str, Path]):
        self.keyrings_dir = Path(keyrings_dir)

    def keyring_path(self, origin: str, keyring_file: str) -> Optional[Path]:
        """
        Locate a keyring below the origin's keyring directory.

        Returns None (a resolution miss) when the file does not exist or the
        name would leave the origin directory.
        """
        name = Path(keyring_file)
        if name.is_absolute() or len(name.parts) != 1 or name.name in ('.', '..'):
            logger.debug(f"Rejecting keyring name {keyring_file!r} for origin {origin}")
            return None
        if Path(origin).name != origin or origin in ('', '.', '..'):
            logger.debug(f"Rejecting origin {origin!r}")
            return None

        path = self.keyrings_dir / origin / keyring_file
        if not path.is_file():
            logger.debug(f"Could not find {keyring_file} keyring at {path}")
            return None
        return path

    def prepare(self) -> None:
        """
        One-time setup before matches are evaluated concurrently.

        Backends with lazily created shared state initialize it here.
        """

    @abstractmethod
    def resolve_identity(self, origin: str, match: Match) -> Optional[str]:
        """
        Resolve the identity a Match requires to a key identifier.

        Returns None when the match names no identity or its keyring is
        missing. When the keyring has no key carrying the identity, the
        identity itself is returned unchanged.
        """

    @abstractmethod
    def extract_signer(self, signature: Optional[bytes],
                       kind: SignatureKind) -> Optional[str]:
        """Identify the key that made a raw signature (None if unknown)."""

    @abstractmethod
    def verify(self, origin: str, match: Match,
               data_path: Union[str, Path], signature_path: Union[str, Path]) -> bool:
        """Cryptographically verify data against a detached signature."""


def normalize_identifier(identifier: Optional[str]) -> Optional[str]:
    """Canonical form of a key identifier: no spaces, upper case, no 0x."""
    if identifier is None:
        return None
    value = identifier.replace(' ', '').upper()
    if value.startswith('0X'):
        value = value[2:]
    return value


def identifiers_match(signer: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a signature's signer with an expected key identifier.

    Case and spacing are ignored. A key id (at least 16 hex digits) matches
    a fingerprint that ends with it, so policies written with long key ids
    keep working against signatures that carry an issuer fingerprint.
    """
    signer = normalize_identifier(signer)
    expected = normalize_identifier(expected)
    if not signer or not expected:
        return False
    if signer == expected:
        return True

    shorter, longer = sorted((signer, expected), key=len)
    return (
        len(shorter) >= OutputFormat.LONG_KEYID_LENGTH
        and len(longer) == OutputFormat.FINGERPRINT_LENGTH
        and longer.endswith(shorter)
    )


# =============================================================================
# BACKEND REGISTRY
# =============================================================================

_backends: Dict[str, Callable[..., SignatureBackend]] = {}


def register_backend(name: str, factory: Callable[..., SignatureBackend]) -> None:
    """Make a backend available under a name."""
    _backends[name] = factory


def get_backend(name: str, **kwargs) -> SignatureBackend:
    """Instantiate a registered backend."""
    try:
        factory = _backends[name]
    except KeyError:
        raise ValueError(
            f"unknown signature backend '{name}' (available: {', '.join(sorted(_backends))})"
        ) from None
    return factory(**kwargs)


def available_backends():
    return sorted(_backends)


__all__ = [
    'SignatureBackend',
    'normalize_identifier',
    'identifiers_match',
    'register_backend',
    'get_backend',
    'available_backends',
]
