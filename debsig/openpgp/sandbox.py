"""
Trust-Store Sandbox - private GnuPG home for the verifier.

gpg insists on a writable home directory even when it only reads keyring
files. Pointing it at the caller's real home would let existing key state
leak into verification results (and let verification write into the
caller's trust store), so every gpg child runs with GNUPGHOME set to a
private directory created with mkdtemp.

There is exactly one sandbox per process. It is created lazily by the first
backend call, under a lock so concurrent first calls agree on one directory,
and it is removed exactly once: either explicitly when the front end leaves
``sandbox_session()``, or by the atexit hook registered at creation as a
backstop for error exits. Library callers may run any number of packages
through the same sandbox.
"""

import atexit
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from ..constants import EnvVars, GnuPG, Paths
from ..exceptions import SandboxError
from ..logging_config import get_logger

logger = get_logger(__name__)


class TrustStoreSandbox:
    """
    Process-scoped temporary trust store.

    Usage:
        sandbox = get_sandbox()
        env = sandbox.environment()
        subprocess.run([sandbox.program, ...], env=env)
    """

    def __init__(
        self,
        prefix: str = Paths.SANDBOX_PREFIX,
        parent_dir: Optional[str] = None,
        register_exit_hook: bool = True,
    ):
        """
        Args:
            prefix: Name prefix for the temporary directory
            parent_dir: Where to create it (default: the system temp dir)
            register_exit_hook: Register teardown with atexit on creation
        """
        self._prefix = prefix
        self._parent_dir = parent_dir
        self._register_exit_hook = register_exit_hook

        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._program: Optional[str] = None
        self._torn_down = False

    @property
    def initialized(self) -> bool:
        return self._path is not None

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def ensure_initialized(self) -> Path:
        """
        Create the sandbox on first call; later calls return the same path.

        Raises:
            SandboxError: if the directory or the exit hook cannot be set up,
                or the sandbox was already torn down
        """
        with self._lock:
            if self._torn_down:
                raise SandboxError("trust store sandbox already torn down")
            if self._path is not None:
                return self._path

            program = os.environ.get(EnvVars.GNUPG_PROGRAM) or GnuPG.DEFAULT_PROGRAM

            try:
                path = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._parent_dir))
            except OSError as e:
                raise SandboxError(
                    f"cannot create temporary directory with prefix '{self._prefix}': {e}",
                    reason="cannot create trust store sandbox",
                ) from e

            if self._register_exit_hook:
                try:
                    atexit.register(self.teardown)
                except Exception as e:
                    shutil.rmtree(path, ignore_errors=True)
                    raise SandboxError(f"cannot set atexit cleanup handler: {e}") from e

            self._path = path
            self._program = program
            logger.debug(f"Using {path} as {EnvVars.GNUPG_HOME} for {program}")
            return path

    @property
    def path(self) -> Path:
        return self.ensure_initialized()

    @property
    def program(self) -> str:
        """The gpg executable, fixed when the sandbox was created."""
        self.ensure_initialized()
        return self._program

    def environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Child environment with the trust store home pointed at the sandbox."""
        home = self.ensure_initialized()
        env = dict(os.environ if base is None else base)
        env[EnvVars.GNUPG_HOME] = str(home)
        return env

    def teardown(self) -> bool:
        """
        Remove the sandbox directory and its contents.

        Runs at most once; returns True only for the call that removed it.
        """
        with self._lock:
            if self._path is None or self._torn_down:
                return False
            self._torn_down = True
            path = self._path

        if self._register_exit_hook:
            atexit.unregister(self.teardown)

        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.error(f"Cannot remove trust store sandbox {path}: {e}")
        else:
            logger.debug(f"Removed trust store sandbox {path}")
        return True

    def __enter__(self) -> 'TrustStoreSandbox':
        self.ensure_initialized()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.teardown()
        return False


# =============================================================================
# PROCESS-WIDE INSTANCE
# =============================================================================

_sandbox: Optional[TrustStoreSandbox] = None
_sandbox_lock = threading.Lock()


def get_sandbox() -> TrustStoreSandbox:
    """Get the process-wide sandbox (not yet initialized on first call)."""
    global _sandbox
    with _sandbox_lock:
        if _sandbox is None:
            _sandbox = TrustStoreSandbox()
        return _sandbox


def reset_sandbox() -> None:
    """Tear down and forget the process-wide sandbox."""
    global _sandbox
    with _sandbox_lock:
        sandbox, _sandbox = _sandbox, None
    if sandbox is not None:
        sandbox.teardown()


@contextmanager
def sandbox_session(sandbox: Optional[TrustStoreSandbox] = None) -> Iterator[TrustStoreSandbox]:
    """
    Scope a sandbox so teardown happens on every exit path.

    Without an explicit sandbox the scope is the process-wide one, which is
    torn down and forgotten on exit. Use that form once per process, around
    everything that runs gpg.
    """
    if sandbox is None:
        try:
            yield get_sandbox()
        finally:
            reset_sandbox()
        return

    try:
        yield sandbox
    finally:
        sandbox.teardown()


__all__ = [
    'TrustStoreSandbox',
    'get_sandbox',
    'reset_sandbox',
    'sandbox_session',
]
