"""
Policy Evaluator - decide whether a package's signatures satisfy a policy.

For every Match of every Selector Group the evaluator asks the signature
backend three questions:

    1. does the signature of the match's kind verify against its keyring?
    2. which key made that signature?              (extract_signer)
    3. which key does the policy name?             (resolve_identity)

A Match is satisfied when (1) holds and, if the match names an identity,
(2) and (3) agree. Groups then combine their matches (see policy.model) and
the package passes only if every group passes.

Selection groups are evaluated the same way minus step (1): they only decide
whether a policy is the one that applies to a package.

Verification failures never raise. Only environment errors (sandbox, process
spawn, unreadable package) propagate to the caller.
"""

import os
import shutil
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Sequence, Tuple

from ..config import default_config
from ..constants import Paths, Permissions, SignatureKind
from ..exceptions import PackageError
from ..logging_config import get_logger
from ..openpgp.backend import SignatureBackend, get_backend, identifiers_match
from ..package.ar import PackageReader
from .model import GroupKind, Match, Policy, SelectorGroup

logger = get_logger(__name__)


class EvaluationMode(Enum):
    """Which groups of a policy are being evaluated."""
    SELECTION = "selection"
    VERIFICATION = "verification"


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class MatchResult:
    """Outcome of one Match."""
    match: Match
    satisfied: bool
    reason: str
    signer: Optional[str] = None
    expected: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'match': self.match.to_dict(),
            'satisfied': self.satisfied,
            'reason': self.reason,
            'signer': self.signer,
            'expected': self.expected,
        }


@dataclass
class GroupResult:
    """Outcome of one Selector Group."""
    group: SelectorGroup
    matches: List[MatchResult] = field(default_factory=list)

    @property
    def satisfied_count(self) -> int:
        return sum(1 for m in self.matches if m.satisfied)

    @property
    def passed(self) -> bool:
        return self.group.is_satisfied(self.satisfied_count)

    @property
    def reason(self) -> str:
        kind = self.group.kind.value
        if not self.group.matches:
            return f"{kind} group has no matches"
        total = len(self.group.matches)
        count = self.satisfied_count
        if self.group.kind is GroupKind.OPTIONAL:
            return f"{kind} group: {count} of {total} satisfied, {self.group.min_required} needed"
        if self.group.kind is GroupKind.REJECT:
            return f"{kind} group: {count} of {total} matched"
        return f"{kind} group: {count} of {total} satisfied"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.group.kind.value,
            'min_required': self.group.min_required,
            'passed': self.passed,
            'reason': self.reason,
            'matches': [m.to_dict() for m in self.matches],
        }


@dataclass
class VerificationResult:
    """
    Outcome of evaluating a policy against a package.

    Truthy iff the package passed.
    """
    policy: Policy
    mode: EvaluationMode
    groups: List[GroupResult] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        if self.mode is EvaluationMode.VERIFICATION and not self.groups:
            return False
        return all(g.passed for g in self.groups)

    @property
    def failed_groups(self) -> List[GroupResult]:
        return [g for g in self.groups if not g.passed]

    @property
    def reason(self) -> str:
        if self.passed:
            return f"{self.mode.value} passed"
        if not self.groups:
            return f"policy has no {self.mode.value} groups"
        return "; ".join(g.reason for g in self.failed_groups)

    def __bool__(self) -> bool:
        return self.passed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'origin': self.policy.origin,
            'policy': self.policy.source,
            'mode': self.mode.value,
            'passed': self.passed,
            'reason': self.reason,
            'duration_ms': self.duration_ms,
            'groups': [g.to_dict() for g in self.groups],
        }


# =============================================================================
# PER-RUN PACKAGE STATE
# =============================================================================

class PackageWorkspace:
    """
    Signature material of one package for one evaluation.

    Each signature blob is read once and, when a verification needs it,
    written once into a private scratch directory next to the signed data.
    The directory is removed on close.
    """

    def __init__(self, package: PackageReader, backend: SignatureBackend):
        self.package = package
        self.backend = backend
        self._lock = threading.RLock()
        self._dir: Optional[Path] = None
        self._blobs: Dict[SignatureKind, Optional[bytes]] = {}
        self._signers: Dict[SignatureKind, Optional[str]] = {}
        self._signature_paths: Dict[SignatureKind, Path] = {}
        self._data_path: Optional[Path] = None

    def blob(self, kind: SignatureKind) -> Optional[bytes]:
        with self._lock:
            if kind not in self._blobs:
                self._blobs[kind] = self.package.read_signature(kind)
            return self._blobs[kind]

    def signer(self, kind: SignatureKind) -> Optional[str]:
        """Key that made the signature of this kind, asked of the backend once."""
        with self._lock:
            if kind not in self._signers:
                self._signers[kind] = self.backend.extract_signer(self.blob(kind), kind)
            return self._signers[kind]

    def _directory(self) -> Path:
        if self._dir is None:
            try:
                self._dir = Path(tempfile.mkdtemp(prefix=Paths.WORKDIR_PREFIX))
            except OSError as e:
                raise PackageError(f"cannot create scratch directory: {e}",
                                   reason="cannot extract package data") from e
        return self._dir

    def _create(self, name: str) -> Tuple[Path, BinaryIO]:
        path = self._directory() / name
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, Permissions.SECURE_FILE)
        return path, os.fdopen(fd, 'wb')

    def signature_path(self, kind: SignatureKind) -> Path:
        with self._lock:
            if kind not in self._signature_paths:
                blob = self.blob(kind)
                try:
                    path, f = self._create(kind.member_name)
                    with f:
                        f.write(blob or b"")
                except OSError as e:
                    raise PackageError(f"cannot write {kind.member_name}: {e}",
                                       reason="cannot extract package data") from e
                self._signature_paths[kind] = path
            return self._signature_paths[kind]

    def data_path(self) -> Path:
        with self._lock:
            if self._data_path is None:
                try:
                    path, f = self._create("data")
                    with f:
                        self.package.write_signed_data(f)
                except OSError as e:
                    raise PackageError(f"cannot write signed data: {e}",
                                       reason="cannot extract package data") from e
                self._data_path = path
            return self._data_path

    def close(self) -> None:
        with self._lock:
            path, self._dir = self._dir, None
            self._signature_paths.clear()
            self._data_path = None
        if path is not None:
            shutil.rmtree(path, ignore_errors=True)

    def __enter__(self) -> 'PackageWorkspace':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# =============================================================================
# EVALUATOR
# =============================================================================

class PolicyEvaluator:
    """
    Evaluates policies against packages through a signature backend.

    Usage:
        evaluator = PolicyEvaluator(GnuPGBackend(keyrings_dir))
        result = evaluator.verify_package(policy, DebPackage(path))
        if not result:
            for group in result.failed_groups:
                print(group.reason)
    """

    def __init__(self, backend: SignatureBackend, max_workers: int = 1):
        """
        Args:
            backend: Signature backend answering verify/resolve/extract
            max_workers: Matches evaluated concurrently (1 = sequential)
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.backend = backend
        self.max_workers = max_workers

    def verify_package(self, policy: Policy, package: PackageReader) -> VerificationResult:
        """Evaluate the verification groups of a policy."""
        return self._evaluate(policy, package, policy.verification, EvaluationMode.VERIFICATION)

    def select(self, policy: Policy, package: PackageReader) -> VerificationResult:
        """Evaluate the selection groups: does this policy apply to the package?"""
        return self._evaluate(policy, package, policy.selection, EvaluationMode.SELECTION)

    def _evaluate(self, policy: Policy, package: PackageReader,
                  groups: Sequence[SelectorGroup], mode: EvaluationMode) -> VerificationResult:
        start = time.monotonic()
        logger.debug(f"Evaluating {mode.value} of policy {policy.source or policy.origin}")

        jobs = [(index, match) for index, group in enumerate(groups) for match in group.matches]
        verify = mode is EvaluationMode.VERIFICATION

        with PackageWorkspace(package, self.backend) as workspace:
            def run(job):
                return self._evaluate_match(policy.origin, job[1], workspace, verify)

            if self.max_workers > 1 and len(jobs) > 1:
                # Shared backend state must exist before threads race for it
                self.backend.prepare()
                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    outcomes = list(executor.map(run, jobs))
            else:
                outcomes = [run(job) for job in jobs]

        group_results = [GroupResult(group) for group in groups]
        for (index, _), outcome in zip(jobs, outcomes):
            group_results[index].matches.append(outcome)

        result = VerificationResult(
            policy=policy,
            mode=mode,
            groups=group_results,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        for group in group_results:
            logger.debug(f"{group.reason}: {'pass' if group.passed else 'fail'}")
        logger.verbose(f"Policy {policy.source or policy.origin}: {result.reason}")
        return result

    def _evaluate_match(self, origin: str, match: Match,
                        workspace: PackageWorkspace, verify: bool) -> MatchResult:
        result = self._check_match(origin, match, workspace, verify)
        logger.debug(
            f"{match.describe()} ({match.keyring_file}): "
            f"{'satisfied' if result.satisfied else 'unsatisfied'}, {result.reason}"
        )
        return result

    def _check_match(self, origin: str, match: Match,
                     workspace: PackageWorkspace, verify: bool) -> MatchResult:
        kind = match.signature_kind

        if not workspace.blob(kind):
            return MatchResult(match, False, f"package has no {kind.value} signature")

        if verify:
            data_path = workspace.data_path()
            signature_path = workspace.signature_path(kind)
            if not self.backend.verify(origin, match, data_path, signature_path):
                return MatchResult(
                    match, False,
                    f"{kind.value} signature does not verify against {match.keyring_file}",
                )

        if match.identity is None:
            return MatchResult(match, True, "signature verified" if verify else "signature present")

        expected = self.backend.resolve_identity(origin, match)
        if expected is None:
            return MatchResult(match, False, f"cannot resolve {match.identity} in {match.keyring_file}")

        signer = workspace.signer(kind)
        if signer is None:
            return MatchResult(match, False, f"cannot determine signer of {kind.value} signature",
                               expected=expected)

        if not identifiers_match(signer, expected):
            return MatchResult(match, False, f"signed by {signer}, policy requires {expected}",
                               signer=signer, expected=expected)

        return MatchResult(match, True, f"signed by {signer}", signer=signer, expected=expected)


def verify_package(policy: Policy, package: PackageReader,
                   backend: Optional[SignatureBackend] = None,
                   max_workers: int = 1) -> VerificationResult:
    """
    Verify a package against a policy.

    Without a backend, the GnuPG backend is built from the default
    configuration (keyring directory, gpg timeout).
    """
    if backend is None:
        config = default_config()
        backend = get_backend("gpg", keyrings_dir=config.keyrings_path, timeout=config.gpg_timeout)
    return PolicyEvaluator(backend, max_workers=max_workers).verify_package(policy, package)


__all__ = [
    'EvaluationMode',
    'MatchResult',
    'GroupResult',
    'VerificationResult',
    'PackageWorkspace',
    'PolicyEvaluator',
    'verify_package',
]
