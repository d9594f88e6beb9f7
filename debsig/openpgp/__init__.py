"""
OpenPGP layer for debsig-verify.

Drives an external OpenPGP implementation (GnuPG) instead of implementing
any cryptography:
- process: scoped child processes with streamed stdout
- sandbox: the private, process-wide GNUPGHOME
- parsers: colon key listings and packet dumps
- backend: the interface the policy evaluator depends on
- gpg: the GnuPG implementation of that interface
"""

from .backend import (
    SignatureBackend,
    available_backends,
    get_backend,
    identifiers_match,
    normalize_identifier,
    register_backend,
)
from .gpg import GnuPGBackend
from .parsers import (
    KeyListingParser,
    PacketDumpParser,
    get_colon_field,
    parse_key_listing,
    parse_packet_dump,
)
from .process import (
    ExitDisposition,
    ProcessOutcome,
    VerifierProcess,
    run_verifier,
    run_verifier_status,
)
from .sandbox import (
    TrustStoreSandbox,
    get_sandbox,
    reset_sandbox,
    sandbox_session,
)

__all__ = [
    # Backends
    'SignatureBackend',
    'GnuPGBackend',
    'available_backends',
    'get_backend',
    'identifiers_match',
    'normalize_identifier',
    'register_backend',
    # Parsers
    'KeyListingParser',
    'PacketDumpParser',
    'get_colon_field',
    'parse_key_listing',
    'parse_packet_dump',
    # Processes
    'ExitDisposition',
    'ProcessOutcome',
    'VerifierProcess',
    'run_verifier',
    'run_verifier_status',
    # Sandbox
    'TrustStoreSandbox',
    'get_sandbox',
    'reset_sandbox',
    'sandbox_session',
]
