"""
Output Protocol Parsers - line-oriented gpg output.

Two grammars are understood, each by a small incremental state machine fed
one line at a time while gpg is still writing:

Key listing (``--with-colons --show-keys``)::

    pub:-:255:22:7D3B3F1CDFB0E8F6:1600000000:::-:::scSC::::::23::0:
    fpr:::::::::0123456789ABCDEF0123456789ABCDEF01234567:
    uid:-::::1600000000::HASH::Archive Signing Key <archive@example.org>::::::::::0:

    UNKNOWN --pub--> PUBLIC_KEY --fpr--> FINGERPRINT --uid == target--> done

Packet dump (``--list-packets``)::

    # off=0 ctb=89 tag=2 hlen=3 plen=307
    :signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6
        hashed subpkt 33 len 21 (issuer fpr v4 0123456789ABCDEF0123456789ABCDEF01234567)

    UNKNOWN --":signature packet:"--> SIGNATURE --"issuer fpr v<N>"--> done

The package under verification is untrusted and gpg echoes parts of it, so
no line is assumed to be well-formed: anything that does not have the
expected shape is skipped.
"""

import re
import string
from enum import Enum
from typing import Iterable, List, Optional, Union

from ..constants import OutputFormat
from ..logging_config import get_logger

logger = get_logger(__name__)

Line = Union[bytes, str]

_HEX_DIGITS = frozenset(string.hexdigits)
_COLON_ESCAPE = re.compile(r'\\x([0-9a-fA-F]{2})')


def _to_text(line: Line) -> str:
    if isinstance(line, bytes):
        line = line.decode('utf-8', errors='replace')
    return line.rstrip('\r\n')


def is_hex(value: str) -> bool:
    return bool(value) and all(ch in _HEX_DIGITS for ch in value)


def split_colon_fields(line: str) -> List[str]:
    """
    Split a colon listing line on unescaped colons.

    The last element is whatever follows the final colon (usually empty).
    """
    fields = []
    current = []
    escaped = False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == '\\':
            current.append(ch)
            escaped = True
        elif ch == ':':
            fields.append(''.join(current))
            current = []
        else:
            current.append(ch)
    fields.append(''.join(current))
    return fields


def get_colon_field(line: Line, field_num: int) -> Optional[str]:
    """
    Return the 1-indexed colon-delimited field of a line.

    The field must be terminated by a colon; a line with fewer than
    ``field_num`` terminated fields yields None.
    """
    if field_num < 1:
        return None
    fields = split_colon_fields(_to_text(line))
    if len(fields) - 1 < field_num:
        return None
    return fields[field_num - 1]


def unescape_colon_value(value: str) -> str:
    """Undo gpg's ``\\xNN`` escaping of user ids in colon listings."""
    return _COLON_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)


# =============================================================================
# KEY LISTING
# =============================================================================

class KeyListingState(Enum):
    UNKNOWN = "unknown"
    PUBLIC_KEY = "public_key"
    FINGERPRINT = "fingerprint"


class KeyListingParser:
    """
    Map a user id to the fingerprint of the key carrying it.

    Only a ``uid`` record seen after the ``fpr`` record that follows the
    current ``pub`` record belongs to that key. A new ``pub`` record starts
    over. ``result`` stays None when nothing matched.
    """

    def __init__(self, target: str):
        self.target = target
        self.state = KeyListingState.UNKNOWN
        self.result: Optional[str] = None
        self.done = False
        self._fingerprint: Optional[str] = None

    def feed(self, line: Line) -> bool:
        """Consume one line; returns True once a match ends the scan."""
        if self.done:
            return True

        text = _to_text(line)
        record = get_colon_field(text, 1)
        if record is None:
            return False

        if record == OutputFormat.RECORD_PUB:
            self.state = KeyListingState.PUBLIC_KEY
            self._fingerprint = None
        elif record == OutputFormat.RECORD_FPR and self.state is KeyListingState.PUBLIC_KEY:
            fingerprint = get_colon_field(text, OutputFormat.FIELD_FINGERPRINT)
            if fingerprint and is_hex(fingerprint):
                self._fingerprint = fingerprint
                self.state = KeyListingState.FINGERPRINT
        elif record == OutputFormat.RECORD_UID and self.state is KeyListingState.FINGERPRINT:
            uid = get_colon_field(text, OutputFormat.FIELD_USER_ID)
            if uid is not None and unescape_colon_value(uid) == self.target:
                self.result = self._fingerprint
                self.done = True
                logger.trace(f"uid {self.target!r} belongs to {self._fingerprint}")

        return self.done


def parse_key_listing(lines: Iterable[Line], target: str) -> Optional[str]:
    """Run a KeyListingParser over complete output."""
    parser = KeyListingParser(target)
    for line in lines:
        if parser.feed(line):
            break
    return parser.result


# =============================================================================
# PACKET DUMP
# =============================================================================

class PacketDumpState(Enum):
    UNKNOWN = "unknown"
    SIGNATURE = "signature"


class PacketDumpParser:
    """
    Find the issuer of the first signature packet in a packet dump.

    The issuer fingerprint subpacket is authoritative; the key id on the
    signature packet line is kept as a fallback for signatures that carry
    no fingerprint.
    """

    def __init__(self, fingerprint_length: int = OutputFormat.FINGERPRINT_LENGTH):
        self.fingerprint_length = fingerprint_length
        self.state = PacketDumpState.UNKNOWN
        self.keyid: Optional[str] = None
        self.fingerprint: Optional[str] = None
        self.done = False

    @property
    def result(self) -> Optional[str]:
        return self.fingerprint or self.keyid

    def feed(self, line: Line) -> bool:
        """Consume one line; returns True once scanning can stop."""
        if self.done:
            return True

        text = _to_text(line)
        if text.startswith(OutputFormat.COMMENT_PREFIX):
            return False

        if text.startswith(OutputFormat.SIGNATURE_PACKET):
            if self.state is PacketDumpState.SIGNATURE:
                # Next signature: its subpackets are not ours
                self.done = True
                return True
            self.state = PacketDumpState.SIGNATURE
            self.keyid = self._extract_keyid(text)
            return False

        if self.state is PacketDumpState.SIGNATURE:
            fingerprint = self._extract_fingerprint(text)
            if fingerprint is not None:
                self.fingerprint = fingerprint
                self.done = True
                logger.trace(f"issuer fingerprint {fingerprint} overrides keyid {self.keyid}")

        return self.done

    @staticmethod
    def _extract_keyid(text: str) -> Optional[str]:
        index = text.find(OutputFormat.KEYID_TOKEN)
        if index < 0:
            return None
        rest = text[index + len(OutputFormat.KEYID_TOKEN):].lstrip()
        token = re.split(r'[\s,)]', rest, maxsplit=1)[0]
        return token if is_hex(token) else None

    def _extract_fingerprint(self, text: str) -> Optional[str]:
        index = text.find(OutputFormat.ISSUER_FINGERPRINT)
        if index < 0:
            return None
        rest = text[index + len(OutputFormat.ISSUER_FINGERPRINT):]

        # Key version number, then whitespace
        version = len(rest) - len(rest.lstrip(string.digits))
        if version == 0:
            return None
        rest = rest[version:]
        token = rest.lstrip()
        if token == rest:
            return None

        token = token[:self.fingerprint_length]
        if len(token) != self.fingerprint_length or not is_hex(token):
            return None
        return token


def parse_packet_dump(lines: Iterable[Line]) -> Optional[str]:
    """Run a PacketDumpParser over complete output."""
    parser = PacketDumpParser()
    for line in lines:
        if parser.feed(line):
            break
    return parser.result


__all__ = [
    'get_colon_field',
    'split_colon_fields',
    'unescape_colon_value',
    'KeyListingState',
    'KeyListingParser',
    'parse_key_listing',
    'PacketDumpState',
    'PacketDumpParser',
    'parse_packet_dump',
]
