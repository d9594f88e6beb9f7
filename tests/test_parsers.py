"""
Tests for debsig/openpgp/parsers.py - gpg output grammars

Tests cover:
- Colon field extraction and escaping
- Key listing state machine (pub -> fpr -> uid)
- Packet dump state machine (signature packet -> issuer fingerprint)
- Malformed and adversarial lines
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from debsig.openpgp.parsers import (
    KeyListingParser,
    KeyListingState,
    PacketDumpParser,
    PacketDumpState,
    get_colon_field,
    parse_key_listing,
    parse_packet_dump,
    split_colon_fields,
    unescape_colon_value,
)
from conftest import KEY_LISTING, ORIGIN_FPR, OTHER_FPR, PACKET_DUMP


# ===========================================================================
# Colon Fields
# ===========================================================================

class TestColonFields:
    """Tests for get_colon_field and friends."""

    @pytest.mark.unit
    def test_first_field(self):
        assert get_colon_field("pub:-:255:", 1) == "pub"

    @pytest.mark.unit
    def test_field_ten(self):
        line = f"fpr:::::::::{ORIGIN_FPR}:"
        assert get_colon_field(line, 10) == ORIGIN_FPR

    @pytest.mark.unit
    def test_unterminated_field_is_missing(self):
        """A field must be followed by a colon to count."""
        assert get_colon_field("fpr:::::::::ABCDEF", 10) is None

    @pytest.mark.unit
    def test_short_line(self):
        assert get_colon_field("pub:", 5) is None
        assert get_colon_field("", 1) is None

    @pytest.mark.unit
    def test_zero_index(self):
        assert get_colon_field("pub:", 0) is None

    @pytest.mark.unit
    def test_bytes_input(self):
        assert get_colon_field(b"uid:-::::1::H::Name <a@b>::\n", 10) == "Name <a@b>"

    @pytest.mark.unit
    def test_invalid_utf8_does_not_crash(self):
        assert get_colon_field(b"uid:\xff\xfe:", 1) == "uid"

    @pytest.mark.unit
    def test_escaped_colon_is_not_a_separator(self):
        assert split_colon_fields("a\\:b:c:") == ["a\\:b", "c", ""]

    @pytest.mark.unit
    def test_unescape(self):
        assert unescape_colon_value("Name \\x3a Team") == "Name : Team"
        assert unescape_colon_value("plain") == "plain"


# ===========================================================================
# Key Listing
# ===========================================================================

class TestKeyListingParser:
    """Tests for the pub/fpr/uid state machine."""

    @pytest.mark.unit
    def test_resolves_matching_uid(self):
        result = parse_key_listing(KEY_LISTING.splitlines(), "Origin Archive <archive@example.org>")
        assert result == ORIGIN_FPR

    @pytest.mark.unit
    def test_uid_belongs_to_its_own_key(self):
        result = parse_key_listing(KEY_LISTING.splitlines(), "Someone Else <else@example.org>")
        assert result == OTHER_FPR

    @pytest.mark.unit
    def test_no_match_returns_none(self):
        assert parse_key_listing(KEY_LISTING.splitlines(), "Nobody <no@example.org>") is None

    @pytest.mark.unit
    def test_stops_at_first_match(self):
        parser = KeyListingParser("Someone Else <else@example.org>")
        consumed = 0
        for line in KEY_LISTING.splitlines():
            consumed += 1
            if parser.feed(line):
                break
        assert parser.done
        assert consumed == 4
        assert parser.feed("garbage") is True

    @pytest.mark.unit
    def test_pub_without_fpr_or_uid(self):
        """A pub line followed by end of stream yields nothing."""
        parser = KeyListingParser("anything")
        assert parser.feed("pub:-:255:22:0123456789ABCDEF:1600000000:::-:::scSC:") is False
        assert parser.state is KeyListingState.PUBLIC_KEY
        assert parser.result is None

    @pytest.mark.unit
    def test_uid_before_fpr_is_ignored(self):
        lines = [
            "pub:-:255:22:0123456789ABCDEF:1:::-:::scSC:",
            "uid:-::::1::H::Target <t@example.org>::",
            f"fpr:::::::::{ORIGIN_FPR}:",
        ]
        assert parse_key_listing(lines, "Target <t@example.org>") is None

    @pytest.mark.unit
    def test_new_pub_resets_fingerprint(self):
        lines = [
            "pub:-:255:22:0123456789ABCDEF:1:::-:::scSC:",
            f"fpr:::::::::{ORIGIN_FPR}:",
            "pub:-:255:22:FEDCBA9876543210:1:::-:::scSC:",
            "uid:-::::1::H::Target <t@example.org>::",
        ]
        assert parse_key_listing(lines, "Target <t@example.org>") is None

    @pytest.mark.unit
    def test_escaped_uid_matches(self):
        lines = [
            "pub:-:255:22:0123456789ABCDEF:1:::-:::scSC:",
            f"fpr:::::::::{ORIGIN_FPR}:",
            "uid:-::::1::H::Team\\x3a Archive <t@example.org>::",
        ]
        assert parse_key_listing(lines, "Team: Archive <t@example.org>") == ORIGIN_FPR

    @pytest.mark.unit
    def test_subkey_fingerprint_not_used(self):
        """fpr lines of subkeys do not replace the primary fingerprint."""
        parser = KeyListingParser("Origin Archive <archive@example.org>")
        for line in KEY_LISTING.splitlines():
            parser.feed(line)
        assert parser.result == ORIGIN_FPR
        assert parser.state is KeyListingState.FINGERPRINT

    @pytest.mark.security
    def test_non_hex_fingerprint_rejected(self):
        lines = [
            "pub:-:255:22:0123456789ABCDEF:1:::-:::scSC:",
            "fpr:::::::::NOT-A-FINGERPRINT:",
            "uid:-::::1::H::Target <t@example.org>::",
        ]
        assert parse_key_listing(lines, "Target <t@example.org>") is None

    @pytest.mark.security
    @pytest.mark.parametrize("line", [
        "", ":", "::::", "pub", "fpr:", "uid:::::::::", "\x00\x01\x02", "x" * 10000,
    ])
    def test_malformed_lines_are_skipped(self, line):
        parser = KeyListingParser("Target")
        assert parser.feed(line) is False
        assert parser.result is None


# ===========================================================================
# Packet Dump
# ===========================================================================

class TestPacketDumpParser:
    """Tests for the signature packet state machine."""

    @pytest.mark.unit
    def test_fingerprint_overrides_keyid(self):
        parser = PacketDumpParser()
        for line in PACKET_DUMP.splitlines():
            if parser.feed(line):
                break
        assert parser.keyid == ORIGIN_FPR[-16:]
        assert parser.fingerprint == ORIGIN_FPR
        assert parser.result == ORIGIN_FPR

    @pytest.mark.unit
    def test_keyid_fallback(self):
        lines = [
            ":signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6",
            "\tversion 4, created 1600000000, md5len 0, sigclass 0x00",
        ]
        assert parse_packet_dump(lines) == "7D3B3F1CDFB0E8F6"

    @pytest.mark.unit
    def test_nothing_found(self):
        assert parse_packet_dump(["# off=0 ctb=89 tag=2", "random text"]) is None

    @pytest.mark.unit
    def test_fingerprint_truncated_to_fixed_length(self):
        lines = [
            ":signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6",
            f"\thashed subpkt 33 len 21 (issuer fpr v4 {ORIGIN_FPR}EXTRA)",
        ]
        assert parse_packet_dump(lines) == ORIGIN_FPR

    @pytest.mark.unit
    def test_comment_lines_skipped(self):
        lines = [
            "# :signature packet: algo 1, keyid 0000000000000000",
            f"# hashed subpkt 33 len 21 (issuer fpr v4 {OTHER_FPR})",
        ]
        parser = PacketDumpParser()
        for line in lines:
            parser.feed(line)
        assert parser.state is PacketDumpState.UNKNOWN
        assert parser.result is None

    @pytest.mark.unit
    def test_issuer_before_signature_packet_ignored(self):
        lines = [
            f"\thashed subpkt 33 len 21 (issuer fpr v4 {OTHER_FPR})",
            ":signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6",
        ]
        assert parse_packet_dump(lines) == "7D3B3F1CDFB0E8F6"

    @pytest.mark.unit
    def test_only_first_signature_counts(self):
        lines = [
            ":signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6",
            ":signature packet: algo 1, keyid 0123456789ABCDEF",
            f"\thashed subpkt 33 len 21 (issuer fpr v4 {OTHER_FPR})",
        ]
        assert parse_packet_dump(lines) == "7D3B3F1CDFB0E8F6"

    @pytest.mark.unit
    def test_v5_fingerprint_marker(self):
        lines = [
            ":signature packet: algo 22, keyid 7D3B3F1CDFB0E8F6",
            f"\thashed subpkt 33 len 33 (issuer fpr v5 {ORIGIN_FPR})",
        ]
        assert parse_packet_dump(lines) == ORIGIN_FPR

    @pytest.mark.security
    def test_short_fingerprint_rejected(self):
        lines = [
            ":signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6",
            "\thashed subpkt 33 len 21 (issuer fpr v4 ABCDEF)",
        ]
        assert parse_packet_dump(lines) == "7D3B3F1CDFB0E8F6"

    @pytest.mark.security
    def test_non_hex_keyid_rejected(self):
        assert parse_packet_dump([":signature packet: algo 1, keyid ZZZZ"]) is None

    @pytest.mark.security
    @pytest.mark.parametrize("line", [
        "issuer fpr v", "issuer fpr v4", "issuer fpr vX AAAA", "issuer fpr v4" + "A" * 40,
        "", "\xff" * 100,
    ])
    def test_malformed_issuer_lines(self, line):
        parser = PacketDumpParser()
        parser.feed(":signature packet: algo 1, keyid 7D3B3F1CDFB0E8F6")
        parser.feed(line)
        assert parser.fingerprint is None

    @pytest.mark.unit
    def test_bytes_lines(self):
        lines = [line.encode() + b"\n" for line in PACKET_DUMP.splitlines()]
        assert parse_packet_dump(lines) == ORIGIN_FPR
