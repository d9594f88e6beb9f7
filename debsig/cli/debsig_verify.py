#!/usr/bin/env python3
"""
debsig-verify - verify the signatures of a Debian binary package

Checks the package's origin signature, finds the policy installed for that
origin and verifies the package against it.

Usage:
    debsig-verify hello_2.10_amd64.deb
    debsig-verify -v --root /srv/chroot hello_2.10_amd64.deb
    debsig-verify --list-policies hello_2.10_amd64.deb
    debsig-verify --use-policy strict hello_2.10_amd64.deb

Exit status:
    0   package verified
    1   verification failed
    2   no origin signature, or no applicable policy
    3   fatal error (unreadable package, gpg unavailable, ...)

Environment:
    DEBSIG_GNUPG_PROGRAM   gpg executable to run (default: gpg)
    DEBSIG_VERIFY_CONFIG   YAML configuration file
    DEBSIG_GNUPG_TIMEOUT   Seconds after which a gpg run is killed
    DEBSIG_VERBOSE         Verbose output when set to 1
    DEBSIG_DEBUG           Debug output when set to 1
    DEBSIG_LOG_FILE        Also write log lines to this file
    DEBSIG_LOG_JSON        Log JSON lines when set to 1
"""

import argparse
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from ..config import default_config
from ..constants import ExitStatus, Version
from ..exceptions import DebsigError
from ..logging_config import Verbosity, configure_from_environment, get_logger
from ..openpgp.sandbox import sandbox_session
from ..utils.error_handling import ErrorSeverity, handle_error
from ..verifier import list_policies, verify_deb

logger = get_logger(__name__)

TERMINATING_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='debsig-verify',
        description='Verify the signatures of a Debian binary package against local policy',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  debsig-verify hello_2.10_amd64.deb
  debsig-verify --list-policies hello_2.10_amd64.deb
  debsig-verify --use-policy strict.pol hello_2.10_amd64.deb
        """
    )

    level = parser.add_mutually_exclusive_group()
    level.add_argument(
        '-q', '--quiet', action='store_true',
        help='Only report errors'
    )
    level.add_argument(
        '-v', '--verbose', action='store_true',
        help='Describe each step of the verification'
    )
    level.add_argument(
        '-d', '--debug', action='store_true',
        help='Show gpg invocations and parser decisions'
    )

    parser.add_argument(
        '--root', metavar='DIR',
        help='Administrative root the policy and keyring paths are relative to'
    )
    parser.add_argument(
        '--policies-dir', metavar='DIR',
        help='Policy directory (default: /etc/debsig/policies)'
    )
    parser.add_argument(
        '--keyrings-dir', metavar='DIR',
        help='Keyring directory (default: /usr/share/debsig/keyrings)'
    )
    parser.add_argument(
        '--config', metavar='FILE',
        help='YAML configuration file'
    )
    parser.add_argument(
        '--list-policies', action='store_true',
        help='List the policies that apply to the package and exit'
    )
    parser.add_argument(
        '--use-policy', metavar='FILE',
        help='Verify against this policy (file or name) instead of selecting one'
    )
    parser.add_argument(
        '--version', action='version',
        version=f'%(prog)s {Version.VERSION}'
    )
    parser.add_argument(
        'deb',
        help='Package file to verify'
    )

    return parser


def _verbosity(args: argparse.Namespace) -> Optional[Verbosity]:
    if args.quiet:
        return Verbosity.QUIET
    if args.debug:
        return Verbosity.DEBUG
    if args.verbose:
        return Verbosity.VERBOSE
    return None


def _terminate(signum, frame):
    logger.error(f"Received {signal.Signals(signum).name}, removing trust store sandbox")
    sys.exit(128 + signum)


def _install_signal_handlers() -> Dict[int, Any]:
    """Turn terminating signals into SystemExit so sandbox cleanup runs."""
    if threading.current_thread() is not threading.main_thread():
        return {}
    return {sig: signal.signal(sig, _terminate) for sig in TERMINATING_SIGNALS}


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_from_environment(_verbosity(args))

    previous_handlers = _install_signal_handlers()
    try:
        with sandbox_session():
            return _run(args)
    finally:
        _restore_signal_handlers(previous_handlers)


def _run(args: argparse.Namespace) -> int:
    try:
        config = default_config(args.config).with_overrides(
            root=args.root,
            policies_dir=args.policies_dir,
            keyrings_dir=args.keyrings_dir,
        )

        if args.list_policies:
            policies = list_policies(args.deb, config)
            if not policies:
                logger.error(f"No applicable policy found for {args.deb}")
                return int(ExitStatus.NO_POLICY)
            for path in policies:
                print(path)
            return int(ExitStatus.OK)

        result = verify_deb(args.deb, config, use_policy=args.use_policy)

    except DebsigError as e:
        handle_error(e, f"verifying {args.deb}", severity=ErrorSeverity.FATAL)
        return int(ExitStatus.FATAL)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return int(ExitStatus.FATAL)

    if result.passed:
        logger.info(result.message)
    else:
        logger.error(result.message)
        if result.verification is not None:
            for group in result.verification.failed_groups:
                for match in group.matches:
                    logger.verbose(f"  {match.match.describe()}: {match.reason}")
    return int(result.status)


if __name__ == '__main__':
    sys.exit(main())
