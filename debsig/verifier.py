"""
Run harness - verify one .deb file the way the command line tool does.

    1. read the origin signature; without one nothing can be verified
    2. ask the backend which key made it (the origin id)
    3. look up policies under <policies_dir>/<fingerprint>, then under
       <policies_dir>/<long key id>
    4. take the first policy whose Origin id matches the signer and whose
       Selection groups pass
    5. evaluate its Verification groups

Runs use the process trust-store sandbox unless the caller hands in one of
its own; an explicit sandbox is removed when the run ends, on every exit
path. The process sandbox lives until the front end leaves
``sandbox_session()`` or the interpreter exits.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import VerifierConfig, default_config
from .constants import ExitStatus, OutputFormat, SignatureKind
from .logging_config import get_logger
from .openpgp.backend import SignatureBackend, identifiers_match
from .openpgp.gpg import GnuPGBackend
from .openpgp.sandbox import TrustStoreSandbox, sandbox_session
from .package.ar import DebPackage
from .policy.evaluator import PolicyEvaluator, VerificationResult
from .policy.loader import find_policies, load_policies, load_policy
from .policy.model import Policy

logger = get_logger(__name__)


@dataclass
class RunResult:
    """Outcome of verifying one package file."""
    status: ExitStatus
    message: str
    package: str
    signer: Optional[str] = None
    policy: Optional[Policy] = None
    verification: Optional[VerificationResult] = None
    considered: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status is ExitStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': int(self.status),
            'message': self.message,
            'package': self.package,
            'signer': self.signer,
            'policy': self.policy.source if self.policy else None,
            'considered': list(self.considered),
            'verification': self.verification.to_dict() if self.verification else None,
        }


def origin_candidates(signer: str) -> List[str]:
    """Policy directory names to try for a signer: fingerprint, then long key id."""
    candidates = [signer]
    if len(signer) > OutputFormat.LONG_KEYID_LENGTH:
        candidates.append(signer[-OutputFormat.LONG_KEYID_LENGTH:])
    return candidates


def _candidate_policies(config: VerifierConfig, signer: str) -> List[Policy]:
    policies = []
    for origin_id in origin_candidates(signer):
        paths = find_policies(config.policies_path, origin_id)
        for policy in load_policies(paths):
            if identifiers_match(signer, policy.origin):
                policies.append(policy)
            else:
                logger.verbose(
                    f"Skipping {policy.source}: origin id {policy.origin} does not match {signer}"
                )
    return policies


def _named_policy(config: VerifierConfig, signer: str, name: str) -> Optional[Policy]:
    """Resolve --use-policy: a file path, or a policy name in the origin directory."""
    path = Path(name)
    if path.is_file():
        return load_policy(path)

    wanted = {name, f"{name}.pol"}
    for origin_id in origin_candidates(signer):
        for candidate in find_policies(config.policies_path, origin_id):
            if candidate.name in wanted:
                return load_policy(candidate)
    return None


class _Run:
    """State shared by verify_deb and list_policies for one package."""

    def __init__(self, path: Union[str, Path], config: VerifierConfig,
                 backend: SignatureBackend):
        self.path = str(path)
        self.config = config
        self.backend = backend
        self.package = DebPackage(path)
        self.evaluator = PolicyEvaluator(backend, max_workers=config.max_workers)

    def origin_signer(self) -> Tuple[Optional[str], Optional[str]]:
        """Returns (signer, problem)."""
        present = ", ".join(kind.value for kind in self.package.signature_kinds())
        logger.verbose(f"Signatures present: {present or 'none'}")
        blob = self.package.read_signature(SignatureKind.ORIGIN)
        if not blob:
            return None, "Origin Signature check failed. This deb might not be signed."
        signer = self.backend.extract_signer(blob, SignatureKind.ORIGIN)
        if signer is None:
            return None, "Could not get the origin signer of the package"
        logger.verbose(f"Origin signer {signer}")
        return signer, None

    def applicable(self, signer: str) -> Tuple[List[Policy], List[str]]:
        """Policies whose Selection groups pass, in lookup order, plus all considered."""
        applicable, considered = [], []
        for policy in _candidate_policies(self.config, signer):
            considered.append(policy.source)
            selection = self.evaluator.select(policy, self.package)
            if selection:
                applicable.append(policy)
            else:
                logger.verbose(f"Selection of {policy.source} failed: {selection.reason}")
        return applicable, considered


def _run_scope(sandbox: Optional[TrustStoreSandbox]):
    """Explicit sandboxes are torn down with the run; the process one is not."""
    if sandbox is not None:
        return sandbox_session(sandbox)
    return nullcontext()


def _backend_for(config: VerifierConfig, sandbox: Optional[TrustStoreSandbox],
                 backend: Optional[SignatureBackend]) -> SignatureBackend:
    if backend is not None:
        return backend
    return GnuPGBackend(config.keyrings_path, sandbox=sandbox, timeout=config.gpg_timeout)


def verify_deb(
    path: Union[str, Path],
    config: Optional[VerifierConfig] = None,
    backend: Optional[SignatureBackend] = None,
    use_policy: Optional[str] = None,
    sandbox: Optional[TrustStoreSandbox] = None,
) -> RunResult:
    """
    Verify a package file against the installed policies.

    Args:
        path: The .deb file
        config: Verifier configuration (default: default_config())
        backend: Signature backend (default: GnuPG in the sandbox)
        use_policy: Policy file or name to use instead of policy selection
        sandbox: Trust store to scope the run to, torn down afterwards
            (default: the process sandbox, left in place)

    Returns:
        RunResult; exit status OK, VERIFY_FAILED or NO_POLICY

    Raises:
        DebsigError: environment or input errors (sandbox, spawn, bad package)
    """
    config = config or default_config()

    with _run_scope(sandbox):
        run = _Run(path, config, _backend_for(config, sandbox, backend))
        logger.verbose(f"Starting verification for: {run.path}")

        signer, problem = run.origin_signer()
        if signer is None:
            return RunResult(ExitStatus.NO_POLICY, problem, run.path)

        if use_policy:
            policy = _named_policy(config, signer, use_policy)
            if policy is None:
                return RunResult(ExitStatus.NO_POLICY, f"Policy {use_policy} not found",
                                 run.path, signer=signer)
            considered = [policy.source]
        else:
            applicable, considered = run.applicable(signer)
            if not applicable:
                return RunResult(
                    ExitStatus.NO_POLICY,
                    f"No applicable policy found for origin {signer}",
                    run.path, signer=signer, considered=considered,
                )
            policy = applicable[0]

        logger.verbose(f"Using policy file: {policy.source}")
        verification = run.evaluator.verify_package(policy, run.package)

    if verification:
        status, message = ExitStatus.OK, f"Verified package from '{policy.origin_name or policy.origin}'"
    else:
        status, message = ExitStatus.VERIFY_FAILED, f"Verification failed: {verification.reason}"

    return RunResult(
        status, message, str(path),
        signer=signer, policy=policy, verification=verification, considered=considered,
    )


def list_policies(
    path: Union[str, Path],
    config: Optional[VerifierConfig] = None,
    backend: Optional[SignatureBackend] = None,
    sandbox: Optional[TrustStoreSandbox] = None,
) -> List[str]:
    """Policy files that would apply to a package, in the order they are tried."""
    config = config or default_config()

    with _run_scope(sandbox):
        run = _Run(path, config, _backend_for(config, sandbox, backend))
        signer, problem = run.origin_signer()
        if signer is None:
            logger.error(problem)
            return []
        applicable, _ = run.applicable(signer)

    return [policy.source for policy in applicable]


__all__ = [
    'RunResult',
    'origin_candidates',
    'verify_deb',
    'list_policies',
]
