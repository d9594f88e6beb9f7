"""
Pytest configuration and shared fixtures for debsig-verify tests.

Provides temporary directories, a recording signature backend, builders for
.deb archives and policy files, and a scripted stand-in for gpg that speaks
the three protocols the GnuPG backend relies on.
"""

import logging
import os
import shutil
import stat
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Tuple

import pytest

# Add the parent directory to the path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from debsig.constants import SignatureKind
from debsig.openpgp.backend import SignatureBackend
from debsig.openpgp.sandbox import reset_sandbox
from debsig.policy.model import GroupKind, Match, Policy, SelectorGroup


ORIGIN_FPR = "AABBCCDDEEFF00112233445566778899AABBCCDD"
MAINT_FPR = "1111222233334444555566667777888899990000"
OTHER_FPR = "FFEEDDCCBBAA99887766554433221100FFEEDDCC"


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="debsig_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def keyrings_dir(temp_dir: Path) -> Path:
    """Keyring tree with an 'origin.gpg' keyring for the test origin."""
    directory = temp_dir / "keyrings"
    origin_dir = directory / ORIGIN_FPR[-16:]
    origin_dir.mkdir(parents=True)
    write_keyring(origin_dir / "origin.gpg", [(ORIGIN_FPR, "Origin Archive <archive@example.org>")])
    write_keyring(origin_dir / "maint.gpg", [(MAINT_FPR, "Jane Maintainer <jane@example.org>")])
    write_keyring(origin_dir / "other.gpg", [(OTHER_FPR, "Someone Else <else@example.org>")])
    return directory


@pytest.fixture(autouse=True)
def isolate_process_state(monkeypatch):
    """Fresh sandbox singleton and logging configuration for every test."""
    monkeypatch.delenv("DEBSIG_VERIFY_CONFIG", raising=False)
    monkeypatch.delenv("DEBSIG_GNUPG_TIMEOUT", raising=False)
    monkeypatch.delenv("DEBSIG_VERBOSE", raising=False)
    monkeypatch.delenv("DEBSIG_DEBUG", raising=False)
    monkeypatch.delenv("DEBSIG_LOG_FILE", raising=False)
    monkeypatch.delenv("DEBSIG_LOG_JSON", raising=False)
    yield
    reset_sandbox()
    root = logging.getLogger('debsig')
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)


# ===========================================================================
# Recording Backend
# ===========================================================================

class FakeBackend(SignatureBackend):
    """
    Signature backend answering from tables instead of gpg.

    verify() succeeds when the match's keyring holds the signer of the
    signature file; signer identity is taken from the blob text
    ``sig:<FINGERPRINT>``.
    """

    name = "fake"

    def __init__(self, keyrings: Optional[Dict[str, Dict[str, str]]] = None,
                 identities: Optional[Dict[str, str]] = None):
        super().__init__("/nonexistent")
        # keyring file -> {fingerprint: uid}
        self.keyrings = keyrings or {}
        self.identities = identities or {}
        self.calls: List[Tuple[str, ...]] = []
        self.prepared = 0

    def prepare(self) -> None:
        self.prepared += 1

    @staticmethod
    def signer_of(blob: Optional[bytes]) -> Optional[str]:
        if not blob or not blob.startswith(b"sig:"):
            return None
        return blob[4:].decode().strip()

    def resolve_identity(self, origin, match):
        self.calls.append(("resolve", match.keyring_file))
        if match.identity is None or match.keyring_file not in self.keyrings:
            return None
        for fpr, uid in self.keyrings[match.keyring_file].items():
            if uid == match.identity:
                return fpr
        return match.identity

    def extract_signer(self, signature, kind):
        self.calls.append(("extract", kind.value))
        return self.signer_of(signature)

    def verify(self, origin, match, data_path, signature_path):
        self.calls.append(("verify", match.keyring_file))
        keyring = self.keyrings.get(match.keyring_file)
        if keyring is None:
            return False
        if not Path(data_path).read_bytes():
            return False
        return self.signer_of(Path(signature_path).read_bytes()) in keyring


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Backend with origin.gpg, maint.gpg and other.gpg keyrings."""
    return FakeBackend(keyrings={
        "origin.gpg": {ORIGIN_FPR: "Origin Archive <archive@example.org>"},
        "maint.gpg": {MAINT_FPR: "Jane Maintainer <jane@example.org>"},
        "other.gpg": {OTHER_FPR: "Someone Else <else@example.org>"},
    })


class FakePackage:
    """In-memory package reader."""

    def __init__(self, signatures: Dict[SignatureKind, bytes], data: bytes = b"payload"):
        self.signatures = signatures
        self.data = data
        self.reads: List[SignatureKind] = []

    def check_sig_exists(self, kind):
        return len(self.signatures.get(kind, b""))

    def read_signature(self, kind):
        self.reads.append(kind)
        return self.signatures.get(kind)

    def write_signed_data(self, fileobj):
        fileobj.write(self.data)
        return len(self.data)

    def signature_kinds(self):
        return [kind for kind in SignatureKind if self.check_sig_exists(kind)]


def signed_by(fingerprint: str) -> bytes:
    return f"sig:{fingerprint}".encode()


@pytest.fixture
def origin_signed_package() -> FakePackage:
    return FakePackage({SignatureKind.ORIGIN: signed_by(ORIGIN_FPR)})


# ===========================================================================
# Policy Builders
# ===========================================================================

def make_match(keyring_file: str = "origin.gpg", identity: Optional[str] = None,
               kind: SignatureKind = SignatureKind.ORIGIN) -> Match:
    return Match(keyring_file=keyring_file, identity=identity, signature_kind=kind)


def make_policy(*groups: SelectorGroup, selection: Iterable[SelectorGroup] = (),
                origin: str = ORIGIN_FPR[-16:]) -> Policy:
    return Policy(origin=origin, verification=tuple(groups), selection=tuple(selection))


def required(*matches: Match) -> SelectorGroup:
    return SelectorGroup(GroupKind.REQUIRED, matches)


def optional(min_required: int, *matches: Match) -> SelectorGroup:
    return SelectorGroup(GroupKind.OPTIONAL, matches, min_required=min_required)


def reject(*matches: Match) -> SelectorGroup:
    return SelectorGroup(GroupKind.REJECT, matches)


POLICY_TEMPLATE = """<?xml version="1.0"?>
<!DOCTYPE Policy SYSTEM "https://www.debian.org/debsig/1.0/policy.dtd">
<Policy xmlns="https://www.debian.org/debsig/1.0/">
  <Origin Name="Test Archive" id="{origin}" Description="Test packages"/>
  <Selection>
    <Required Type="origin" File="origin.gpg" id="{origin}"/>
  </Selection>
  <Verification MinOptional="{min_optional}">
    <Required Type="origin" File="{keyring}" id="{origin}"/>
{extra}  </Verification>
</Policy>
"""


def policy_xml(origin: str = ORIGIN_FPR[-16:], keyring: str = "origin.gpg",
               min_optional: int = 0, extra: str = "") -> str:
    return POLICY_TEMPLATE.format(origin=origin, keyring=keyring,
                                  min_optional=min_optional, extra=extra)


@pytest.fixture
def policies_dir(temp_dir: Path) -> Path:
    """Policy tree with one policy for the test origin."""
    directory = temp_dir / "policies" / ORIGIN_FPR[-16:]
    directory.mkdir(parents=True)
    (directory / "archive.pol").write_text(policy_xml())
    return temp_dir / "policies"


# ===========================================================================
# Package Archives
# ===========================================================================

def ar_member(name: str, data: bytes, mtime: int = 0) -> bytes:
    header = (
        f"{name + '/':<16}"
        f"{mtime:<12}"
        f"{0:<6}"
        f"{0:<6}"
        f"{'100644':<8}"
        f"{len(data):<10}"
    ).encode("ascii") + b"`\n"
    padding = b"\n" if len(data) % 2 else b""
    return header + data + padding


def build_deb(path: Path, signatures: Optional[Dict[str, bytes]] = None,
              control: bytes = b"control-tarball", data: bytes = b"data-tarball!") -> Path:
    """Write a minimal binary package with optional _gpg* members."""
    content = b"!<arch>\n"
    content += ar_member("debian-binary", b"2.0\n")
    content += ar_member("control.tar.xz", control)
    content += ar_member("data.tar.xz", data)
    for name, blob in (signatures or {}).items():
        content += ar_member(name, blob)
    path.write_bytes(content)
    return path


@pytest.fixture
def signed_deb(temp_dir: Path) -> Path:
    return build_deb(temp_dir / "hello_1.0_all.deb", {"_gpgorigin": signed_by(ORIGIN_FPR)})


# ===========================================================================
# gpg Stand-in
# ===========================================================================

def write_keyring(path: Path, keys: Iterable[Tuple[str, str]]) -> Path:
    """Keyring file understood by the gpg stand-in: 'FPR|uid' per line."""
    path.write_text("".join(f"{fpr}|{uid}\n" for fpr, uid in keys))
    return path


FAKE_GPG = '''\
#!{python}
"""Minimal gpg stand-in for the list, dump and verify protocols."""
import os
import sys

args = sys.argv[1:]
home = os.environ.get("GNUPGHOME")
if not home or not os.path.isdir(home):
    sys.stderr.write("gpg: no private home\\n")
    sys.exit(2)
with open(os.path.join(home, "invocations"), "a") as log:
    log.write(" ".join(args) + "\\n")

def keys(path):
    with open(path) as f:
        return [line.rstrip("\\n").split("|", 1) for line in f if "|" in line]

if "--show-keys" in args:
    for fpr, uid in keys(args[-1]):
        print("pub:-:255:22:%s:1600000000:::-:::scSC::::::23::0:" % fpr[-16:])
        print("fpr:::::::::%s:" % fpr)
        print("uid:-::::1600000000::HASH::%s::::::::::0:" % uid.replace(":", "\\\\x3a"))
    sys.exit(0)

if "--list-packets" in args:
    blob = sys.stdin.buffer.read().decode()
    if not blob.startswith("sig:"):
        sys.stderr.write("gpg: no valid OpenPGP data found\\n")
        sys.exit(2)
    fpr = blob[4:].strip()
    print("# off=0 ctb=89 tag=2 hlen=3 plen=307")
    print(":signature packet: algo 1, keyid %s" % fpr[-16:])
    print("\\tversion 4, created 1600000000, md5len 0, sigclass 0x00")
    print("\\thashed subpkt 33 len 21 (issuer fpr v4 %s)" % fpr)
    sys.exit(0)

if "--verify" in args:
    keyring = args[args.index("--keyring") + 1]
    sig, data = args[args.index("--verify") + 1:]
    with open(sig) as f:
        blob = f.read()
    with open(data, "rb") as f:
        payload = f.read()
    signer = blob[4:].strip() if blob.startswith("sig:") else None
    if payload and signer in [fpr for fpr, _ in keys(keyring)]:
        sys.exit(0)
    sys.stderr.write("gpg: BAD signature\\n")
    sys.exit(1)

sys.exit(2)
'''


@pytest.fixture
def fake_gpg(temp_dir: Path, monkeypatch) -> Path:
    """Install the gpg stand-in as DEBSIG_GNUPG_PROGRAM."""
    program = temp_dir / "bin" / "gpg"
    program.parent.mkdir()
    program.write_text(FAKE_GPG.format(python=sys.executable))
    program.chmod(program.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("DEBSIG_GNUPG_PROGRAM", str(program))
    return program


# ===========================================================================
# Sample gpg Output
# ===========================================================================

KEY_LISTING = textwrap.dedent(f"""\
    tru::1:1600000000:0:3:1:5
    pub:-:255:22:{OTHER_FPR[-16:]}:1600000000:::-:::scSC::::::23::0:
    fpr:::::::::{OTHER_FPR}:
    uid:-::::1600000000::HASH1::Someone Else <else@example.org>::::::::::0:
    pub:-:255:22:{ORIGIN_FPR[-16:]}:1600000000:::-:::scSC::::::23::0:
    fpr:::::::::{ORIGIN_FPR}:
    uid:-::::1600000000::HASH2::Origin Archive <archive@example.org>::::::::::0:
    sub:-:255:18:0123456789ABCDEF:1600000000::::::e::::::23:
    fpr:::::::::0000111122223333444455556666777788889999:
    """)

PACKET_DUMP = textwrap.dedent(f"""\
    # off=0 ctb=89 tag=2 hlen=3 plen=307
    :signature packet: algo 1, keyid {ORIGIN_FPR[-16:]}
    \tversion 4, created 1600000000, md5len 0, sigclass 0x00
    \tdigest algo 10, begin of digest 5b 2c
    \thashed subpkt 33 len 21 (issuer fpr v4 {ORIGIN_FPR})
    \thashed subpkt 2 len 4 (sig created 2020-09-13)
    \tsubpkt 16 len 8 (issuer key ID {ORIGIN_FPR[-16:]})
    \tdata: [4095 bits]
    """)


# ===========================================================================
# Markers Registration
# ===========================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "security: Security-specific tests")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
