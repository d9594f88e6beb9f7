"""
debsig-verify - check package signatures against administrator policy.

Packages carry detached OpenPGP signatures (origin, maintainer, archive,
builder). A policy installed for the package's origin says which of them
must be present, which keyrings they must verify against and which keys
must have made them. Cryptography is delegated to GnuPG.

    from debsig import DebPackage, GnuPGBackend, PolicyEvaluator, load_policy

    policy = load_policy('/etc/debsig/policies/7CD73F641E04EF2D/debian.pol')
    evaluator = PolicyEvaluator(GnuPGBackend('/usr/share/debsig/keyrings'))
    if evaluator.verify_package(policy, DebPackage('hello.deb')):
        ...
"""

from .constants import ExitStatus, SignatureKind, Version
from .exceptions import (
    ConfigError,
    DebsigError,
    PackageError,
    PolicyError,
    SandboxError,
    VerifierExitError,
    VerifierIOError,
    VerifierSpawnError,
)
from .openpgp import GnuPGBackend, SignatureBackend, get_backend
from .package import DebPackage, PackageReader
from .policy import GroupKind, Match, Policy, SelectorGroup, load_policy
from .policy.evaluator import PolicyEvaluator, VerificationResult, verify_package
from .verifier import RunResult, list_policies, verify_deb

__version__ = Version.VERSION

__all__ = [
    '__version__',
    'ExitStatus',
    'SignatureKind',
    # Errors
    'DebsigError',
    'ConfigError',
    'PackageError',
    'PolicyError',
    'SandboxError',
    'VerifierExitError',
    'VerifierIOError',
    'VerifierSpawnError',
    # Engine
    'GnuPGBackend',
    'SignatureBackend',
    'get_backend',
    'DebPackage',
    'PackageReader',
    'GroupKind',
    'Match',
    'Policy',
    'SelectorGroup',
    'load_policy',
    'PolicyEvaluator',
    'VerificationResult',
    'verify_package',
    # Run harness
    'RunResult',
    'list_policies',
    'verify_deb',
]
