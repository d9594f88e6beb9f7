"""
Verifier Process Bridge - runs the external OpenPGP tool.

Each invocation owns one child process and its pipes. The child is started
from a fixed argument vector (never through a shell), its stdout is exposed
as an incremental line iterator, and optional stdin bytes are streamed in
from a feeder thread so a child that writes before it finishes reading can
never deadlock against us.

``VerifierProcess`` is a context manager: leaving the block closes every
pipe and reaps the child on every path, killing it first if it is still
running.

Exit dispositions:
    CLEAN      exit status 0
    NONZERO    exit status != 0 (a verification failure, not fatal)
    SIGNALED   terminated by a signal (also a failure)
    TIMED_OUT  killed by the optional caller-facing timeout
"""

import signal
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Sequence

from ..exceptions import VerifierExitError, VerifierIOError, VerifierSpawnError
from ..logging_config import TRACE, get_logger

logger = get_logger(__name__)


class ExitDisposition(Enum):
    """How a verifier process ended."""
    CLEAN = "clean"
    NONZERO = "nonzero"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ProcessOutcome:
    """Exit disposition of a reaped verifier process."""
    disposition: ExitDisposition
    returncode: Optional[int] = None
    signal_number: Optional[int] = None
    stderr: bytes = b""

    @property
    def succeeded(self) -> bool:
        return self.disposition is ExitDisposition.CLEAN

    def describe(self) -> str:
        """Short description for diagnostics."""
        if self.disposition is ExitDisposition.CLEAN:
            return "exited cleanly"
        if self.disposition is ExitDisposition.NONZERO:
            return f"exited with status {self.returncode}"
        if self.disposition is ExitDisposition.SIGNALED:
            try:
                name = signal.Signals(self.signal_number).name
            except ValueError:
                name = str(self.signal_number)
            return f"terminated by signal {name}"
        return "killed after timeout"

    def check(self, operation: str) -> 'ProcessOutcome':
        """Escalate any unclean exit to a hard failure."""
        if not self.succeeded:
            raise VerifierExitError(
                f"{operation}: verifier {self.describe()}",
                returncode=self.returncode,
            )
        return self

    @classmethod
    def from_returncode(cls, returncode: int, stderr: bytes = b"",
                        timed_out: bool = False) -> 'ProcessOutcome':
        if timed_out:
            return cls(ExitDisposition.TIMED_OUT, returncode, None, stderr)
        if returncode == 0:
            return cls(ExitDisposition.CLEAN, 0, None, stderr)
        if returncode < 0:
            return cls(ExitDisposition.SIGNALED, returncode, -returncode, stderr)
        return cls(ExitDisposition.NONZERO, returncode, None, stderr)


class VerifierProcess:
    """
    One external verifier invocation.

    Usage:
        with VerifierProcess('gpg', ['--list-packets', '-'], stdin_data=blob) as proc:
            for line in proc.iter_lines():
                parser.feed(line)
            outcome = proc.wait()
    """

    def __init__(
        self,
        executable: str,
        arguments: Sequence[str],
        stdin_data: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        capture_stdout: bool = True,
    ):
        """
        Args:
            executable: Program name or path of the verifier
            arguments: Argument vector, passed verbatim
            stdin_data: Bytes written to the child's stdin (None: no input)
            env: Complete environment for the child
            timeout: Seconds after which the child is killed
            capture_stdout: Pipe stdout back (False discards it)
        """
        self.argv = [executable, *arguments]
        self._stdin_data = stdin_data
        self._env = env
        self._timeout = timeout
        self._capture_stdout = capture_stdout

        self._process: Optional[subprocess.Popen] = None
        self._threads = []
        self._stderr_chunks = []
        self._feed_error: Optional[BaseException] = None
        self._timer: Optional[threading.Timer] = None
        self._timed_out = threading.Event()
        self._outcome: Optional[ProcessOutcome] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def start(self) -> 'VerifierProcess':
        """Spawn the child. Spawn failures are fatal."""
        if self._process is not None:
            return self

        logger.trace(f"Spawning {self.argv}")
        try:
            self._process = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE if self._stdin_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE if self._capture_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=self._env,
                close_fds=True,
                shell=False,
            )
        except OSError as e:
            raise VerifierSpawnError(
                f"unable to execute {self.argv[0]}: {e}",
                reason=f"cannot run {self.argv[0]}",
            ) from e

        self._spawn_thread(self._drain_stderr, "stderr")
        if self._stdin_data is not None:
            self._spawn_thread(self._feed_stdin, "stdin")

        if self._timeout is not None:
            self._timer = threading.Timer(self._timeout, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()

        return self

    def _spawn_thread(self, target, role: str) -> None:
        thread = threading.Thread(
            target=target,
            name=f"verifier-{self._process.pid}-{role}",
            daemon=True,
        )
        thread.start()
        self._threads.append(thread)

    def _feed_stdin(self) -> None:
        pipe = self._process.stdin
        try:
            pipe.write(self._stdin_data)
        except BrokenPipeError:
            # The child stopped reading; its exit status tells the story
            logger.debug(f"{self.argv[0]} closed its input early")
        except OSError as e:
            self._feed_error = e
        finally:
            try:
                pipe.close()
            except BrokenPipeError:
                pass

    def _drain_stderr(self) -> None:
        for chunk in iter(lambda: self._process.stderr.read(4096), b""):
            self._stderr_chunks.append(chunk)

    def _on_timeout(self) -> None:
        if self._process.poll() is None:
            logger.warning(f"{self.argv[0]} did not finish within {self._timeout}s, killing it")
            self._timed_out.set()
            self._process.kill()

    def iter_lines(self) -> Iterator[bytes]:
        """Yield stdout lines as the child writes them."""
        if self._process is None:
            self.start()
        if self._process.stdout is None:
            return
        try:
            for line in self._process.stdout:
                yield line
        except (OSError, ValueError) as e:
            raise VerifierIOError(f"error reading from {self.argv[0]}: {e}") from e

    def wait(self) -> ProcessOutcome:
        """Drain remaining output, reap the child and report how it ended."""
        if self._outcome is not None:
            return self._outcome
        if self._process is None:
            self.start()

        if self._process.stdout is not None and not self._process.stdout.closed:
            # Unread output would block the child on a full pipe
            for _ in self.iter_lines():
                pass

        returncode = self._process.wait()
        for thread in self._threads:
            thread.join()
        if self._timer is not None:
            self._timer.cancel()

        if self._feed_error is not None:
            raise VerifierIOError(
                f"error writing to {self.argv[0]}: {self._feed_error}"
            ) from self._feed_error

        stderr = b"".join(self._stderr_chunks)
        self._outcome = ProcessOutcome.from_returncode(
            returncode, stderr, timed_out=self._timed_out.is_set()
        )
        if stderr:
            logger.debug(f"{self.argv[0]} stderr: {stderr.decode('utf-8', 'replace').rstrip()}")
        logger.log_with_data(TRACE, f"{self.argv[0]} {self._outcome.describe()}", {
            'disposition': self._outcome.disposition.value,
            'returncode': returncode,
            'stderr_bytes': len(stderr),
        })
        return self._outcome

    def close(self) -> None:
        """Release pipes and reap the child, killing it if still running."""
        if self._timer is not None:
            self._timer.cancel()
        process = self._process
        if process is None:
            return

        if process.poll() is None:
            process.kill()
        process.wait()
        for thread in self._threads:
            thread.join()
        for pipe in (process.stdin, process.stdout, process.stderr):
            if pipe is not None and not pipe.closed:
                try:
                    pipe.close()
                except BrokenPipeError:
                    pass

    def __enter__(self) -> 'VerifierProcess':
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def run_verifier(
    executable: str,
    arguments: Sequence[str],
    stdin_data: Optional[bytes] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> VerifierProcess:
    """
    Start a verifier whose output the caller streams.

    Returns a started VerifierProcess; use it as a context manager.
    """
    return VerifierProcess(
        executable, arguments, stdin_data=stdin_data, env=env, timeout=timeout,
    ).start()


def run_verifier_status(
    executable: str,
    arguments: Sequence[str],
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> ProcessOutcome:
    """Run a verifier for its exit status only, discarding stdout."""
    with VerifierProcess(
        executable, arguments, env=env, timeout=timeout, capture_stdout=False,
    ) as proc:
        return proc.wait()


__all__ = [
    'ExitDisposition',
    'ProcessOutcome',
    'VerifierProcess',
    'run_verifier',
    'run_verifier_status',
]
