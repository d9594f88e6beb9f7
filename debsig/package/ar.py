"""
Package Reader - signature and data members of a .deb archive.

A binary package is a Unix ``ar`` archive:

    !<arch>\\n
    [60-byte header][data, padded to an even length]   debian-binary
    [60-byte header][data]                             control.tar.*
    [60-byte header][data]                             data.tar.*
    [60-byte header][data]                             _gpgorigin, _gpgmaint, ...

Signatures are detached signatures over the concatenation of the
``debian-binary``, ``control.tar*`` and ``data.tar*`` members, in archive
order. Archive contents are untrusted: every header field is validated and
member extents are checked against the file size before anything is read.
"""

import io
import os
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Union

from ..constants import SignatureKind
from ..exceptions import PackageError
from ..logging_config import get_logger

logger = get_logger(__name__)

AR_MAGIC = b"!<arch>\n"
AR_HEADER_SIZE = 60
AR_FMAG = b"`\n"

DEBIAN_BINARY = "debian-binary"
SIGNED_MEMBER_PREFIXES = ("control.tar", "data.tar")

_COPY_CHUNK = 64 * 1024


class PackageReader(ABC):
    """
    What the policy evaluator needs from a package.

    Implementations hand out raw signature blobs by kind and can reproduce
    the byte stream those signatures were made over.
    """

    @abstractmethod
    def check_sig_exists(self, kind: SignatureKind) -> int:
        """Length of the signature of this kind, 0 when absent."""

    @abstractmethod
    def read_signature(self, kind: SignatureKind) -> Optional[bytes]:
        """Raw signature bytes, or None when absent."""

    @abstractmethod
    def write_signed_data(self, fileobj: BinaryIO) -> int:
        """Write the signed byte stream to fileobj; returns bytes written."""

    def signature_kinds(self) -> List[SignatureKind]:
        """Signature kinds present in the package."""
        return [kind for kind in SignatureKind if self.check_sig_exists(kind)]


@dataclass(frozen=True)
class ArMember:
    """Location of one archive member."""
    name: str
    offset: int
    size: int
    mtime: int = 0
    mode: int = 0o644


class _MemberStream(io.RawIOBase):
    """Read-only view of one member's bytes within the archive file."""

    def __init__(self, fileobj: BinaryIO, member: ArMember):
        self._file = fileobj
        self._member = member
        self._remaining = member.size
        self._file.seek(member.offset)

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._remaining <= 0:
            return 0
        view = memoryview(buffer)[:self._remaining]
        count = self._file.readinto(view)
        if not count:
            raise PackageError(f"unexpected end of archive in member {self._member.name}")
        self._remaining -= count
        return count


class DebPackage(PackageReader):
    """
    Binary package read through its ``ar`` container.

    Usage:
        package = DebPackage('/var/cache/apt/archives/hello_2.10_amd64.deb')
        if package.check_sig_exists(SignatureKind.ORIGIN):
            blob = package.read_signature(SignatureKind.ORIGIN)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._members: Dict[str, ArMember] = {}
        self._order: List[ArMember] = []
        self._index()

    def _index(self) -> None:
        try:
            size = os.path.getsize(self.path)
            with open(self.path, 'rb') as f:
                self._scan(f, size)
        except OSError as e:
            raise PackageError(f"cannot read {self.path}: {e}",
                               reason="cannot read package") from e

        if not self._order or self._order[0].name != DEBIAN_BINARY:
            raise PackageError(f"{self.path} is not a Debian binary package",
                               reason="not a debian package")
        logger.debug(f"Indexed {len(self._order)} members of {self.path}")

    def _scan(self, f: BinaryIO, file_size: int) -> None:
        if f.read(len(AR_MAGIC)) != AR_MAGIC:
            raise PackageError(f"{self.path} is not an ar archive",
                               reason="bad archive magic")

        offset = len(AR_MAGIC)
        while offset < file_size:
            header = f.read(AR_HEADER_SIZE)
            if header == b"\n" and offset + 1 == file_size:
                # Trailing padding byte
                break
            if len(header) != AR_HEADER_SIZE:
                raise PackageError(f"truncated member header at offset {offset} in {self.path}",
                                   reason="truncated archive")

            member = self._parse_header(header, offset + AR_HEADER_SIZE)
            end = member.offset + member.size
            if end > file_size:
                raise PackageError(
                    f"member {member.name} extends past end of {self.path}",
                    reason="truncated archive",
                )

            if member.name in self._members:
                logger.warning(f"Ignoring duplicate member {member.name} in {self.path}")
            else:
                self._members[member.name] = member
                self._order.append(member)

            offset = end + (end % 2)
            f.seek(offset)

    def _parse_header(self, header: bytes, data_offset: int) -> ArMember:
        if header[58:60] != AR_FMAG:
            raise PackageError(f"corrupt member header at offset {data_offset - AR_HEADER_SIZE}",
                               reason="corrupt archive")
        try:
            name = header[0:16].decode('ascii').rstrip(' ')
            mtime = int(header[16:28].strip() or b"0")
            mode = int(header[40:48].strip() or b"644", 8)
            size = int(header[48:58].strip())
        except (UnicodeDecodeError, ValueError) as e:
            raise PackageError(f"corrupt member header at offset {data_offset - AR_HEADER_SIZE}: {e}",
                               reason="corrupt archive") from e

        # GNU ar terminates names with a slash
        if name.endswith('/') and name != '/':
            name = name[:-1]
        if not name or size < 0:
            raise PackageError(f"corrupt member header at offset {data_offset - AR_HEADER_SIZE}",
                               reason="corrupt archive")
        return ArMember(name=name, offset=data_offset, size=size, mtime=mtime, mode=mode)

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    @property
    def members(self) -> List[ArMember]:
        return list(self._order)

    def find_member(self, name: str) -> Optional[ArMember]:
        return self._members.get(name)

    @contextmanager
    def open_member(self, name: str) -> Iterator[BinaryIO]:
        """Open a member as a stream positioned at its first byte."""
        member = self.find_member(name)
        if member is None:
            raise PackageError(f"no member {name} in {self.path}", reason="missing member")
        try:
            f = open(self.path, 'rb')
        except OSError as e:
            raise PackageError(f"cannot read {self.path}: {e}", reason="cannot read package") from e
        with f:
            yield io.BufferedReader(_MemberStream(f, member))

    def read_member(self, name: str) -> bytes:
        with self.open_member(name) as stream:
            return stream.read()

    # -------------------------------------------------------------------------
    # PackageReader
    # -------------------------------------------------------------------------

    def check_sig_exists(self, kind: SignatureKind) -> int:
        member = self.find_member(kind.member_name)
        return member.size if member is not None else 0

    def read_signature(self, kind: SignatureKind) -> Optional[bytes]:
        if not self.check_sig_exists(kind):
            return None
        return self.read_member(kind.member_name)

    def signed_members(self) -> List[ArMember]:
        """Members covered by package signatures, in archive order."""
        members = [
            m for m in self._order
            if m.name == DEBIAN_BINARY or m.name.startswith(SIGNED_MEMBER_PREFIXES)
        ]
        for prefix in SIGNED_MEMBER_PREFIXES:
            if not any(m.name.startswith(prefix) for m in members):
                raise PackageError(f"{self.path} has no {prefix}* member",
                                   reason="missing member")
        return members

    def write_signed_data(self, fileobj: BinaryIO) -> int:
        written = 0
        for member in self.signed_members():
            with self.open_member(member.name) as stream:
                shutil.copyfileobj(stream, fileobj, _COPY_CHUNK)
            written += member.size
        logger.debug(f"Wrote {written} bytes of signed data from {self.path}")
        return written


__all__ = [
    'PackageReader',
    'ArMember',
    'DebPackage',
]
