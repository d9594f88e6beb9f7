"""
GnuPG Backend - drives an external ``gpg`` to resolve and verify signers.

Three invocations are used, all non-interactive, with user configuration
and default keyrings disabled, inside the private trust store:

    list keys    gpg ... --quiet --with-colons --show-keys KEYRING
    dump packets gpg ... --list-packets -q -          (signature on stdin)
    verify       gpg ... --weak-digest sha1 --keyring KEYRING --verify SIG DATA

Verification outcomes are folded into booleans; only environment errors
(sandbox creation, spawn failure, broken pipes) propagate as exceptions.
"""

from pathlib import Path
from typing import List, Optional, Union

from ..constants import GnuPG, SignatureKind
from ..logging_config import get_logger
from ..policy.model import Match
from .backend import SignatureBackend, normalize_identifier, register_backend
from .parsers import KeyListingParser, PacketDumpParser
from .process import VerifierProcess, run_verifier_status
from .sandbox import TrustStoreSandbox, get_sandbox

logger = get_logger(__name__)


class GnuPGBackend(SignatureBackend):
    """
    Signature backend delegating to the GnuPG command line tool.

    Usage:
        backend = GnuPGBackend('/usr/share/debsig/keyrings')
        signer = backend.extract_signer(blob, SignatureKind.ORIGIN)
        ok = backend.verify(origin, match, data_path, sig_path)
    """

    name = "gpg"

    def __init__(
        self,
        keyrings_dir: Union[str, Path],
        sandbox: Optional[TrustStoreSandbox] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            keyrings_dir: Directory holding one keyring directory per origin
            sandbox: Trust store to run gpg in (default: the process sandbox)
            timeout: Seconds after which a gpg invocation is killed
        """
        super().__init__(keyrings_dir)
        self._sandbox = sandbox
        self.timeout = timeout

    @property
    def sandbox(self) -> TrustStoreSandbox:
        """The explicit sandbox, else whichever process sandbox is current."""
        if self._sandbox is not None:
            return self._sandbox
        return get_sandbox()

    def prepare(self) -> None:
        self.sandbox.ensure_initialized()

    def _command(self, *arguments: str) -> List[str]:
        return [*GnuPG.COMMON_ARGS, *arguments]

    def _spawn(self, arguments: List[str], stdin_data: Optional[bytes] = None) -> VerifierProcess:
        sandbox = self.sandbox
        sandbox.ensure_initialized()
        return VerifierProcess(
            sandbox.program,
            arguments,
            stdin_data=stdin_data,
            env=sandbox.environment(),
            timeout=self.timeout,
        )

    def resolve_identity(self, origin: str, match: Match) -> Optional[str]:
        if match.identity is None:
            return None

        self.sandbox.ensure_initialized()

        keyring = self.keyring_path(origin, match.keyring_file)
        if keyring is None:
            logger.debug(f"resolve_identity: could not find {match.keyring_file} keyring")
            return None

        parser = KeyListingParser(match.identity)
        arguments = self._command(*GnuPG.LIST_KEYS_ARGS, str(keyring))
        with self._spawn(arguments) as proc:
            for line in proc.iter_lines():
                if parser.feed(line):
                    break
            outcome = proc.wait()

        if not outcome.succeeded:
            logger.debug(f"resolve_identity: listing {keyring} {outcome.describe()}")

        if parser.result is None:
            # No key carries the identity; compare it as configured
            logger.debug(f"resolve_identity: no match, falling back to {match.identity}")
            return match.identity

        resolved = normalize_identifier(parser.result)
        logger.debug(f"resolve_identity: mapped {match.identity} -> {resolved}")
        return resolved

    def extract_signer(self, signature: Optional[bytes],
                       kind: SignatureKind) -> Optional[str]:
        if not signature:
            return None

        parser = PacketDumpParser()
        arguments = self._command(*GnuPG.LIST_PACKETS_ARGS)
        with self._spawn(arguments, stdin_data=signature) as proc:
            for line in proc.iter_lines():
                if parser.feed(line):
                    break
            outcome = proc.wait()

        if not outcome.succeeded:
            logger.debug(f"extract_signer: packet dump {outcome.describe()}")

        signer = normalize_identifier(parser.result)
        if signer is None:
            logger.debug(f"extract_signer: failed for {kind.value}")
        else:
            logger.debug(f"extract_signer: got {signer} for {kind.value} key")
        return signer

    def verify(self, origin: str, match: Match,
               data_path: Union[str, Path], signature_path: Union[str, Path]) -> bool:
        sandbox = self.sandbox
        sandbox.ensure_initialized()

        keyring = self.keyring_path(origin, match.keyring_file)
        if keyring is None:
            logger.debug(f"verify: could not find {match.keyring_file} keyring")
            return False

        arguments = self._command(
            *GnuPG.WEAK_DIGEST_ARGS,
            "--keyring", str(keyring),
            "--verify", str(signature_path), str(data_path),
        )
        outcome = run_verifier_status(
            sandbox.program,
            arguments,
            env=sandbox.environment(),
            timeout=self.timeout,
        )
        if not outcome.succeeded:
            logger.debug(
                f"verify: gpg {outcome.describe()} for {match.signature_kind.value} "
                f"signature against {keyring}"
            )
            return False

        logger.debug(f"verify: good {match.signature_kind.value} signature against {keyring}")
        return True


register_backend(GnuPGBackend.name, GnuPGBackend)


__all__ = [
    'GnuPGBackend',
]
