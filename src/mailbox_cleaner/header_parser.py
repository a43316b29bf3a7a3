"""Sender header parsing with fallbacks for malformed input."""

import logging
import re
from email.header import decode_header, make_header
from email.utils import parseaddr
from typing import NamedTuple

UNKNOWN_SENDER_EMAIL = "unknown@example.com"
UNKNOWN_SENDER_NAME = "Unknown Sender"

_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_ADDRESS_SHAPE = re.compile(r"[^\s@<>]+@[^\s@<>]+")


class ParsedSender(NamedTuple):
    email: str
    display_name: str


UNKNOWN_SENDER = ParsedSender(UNKNOWN_SENDER_EMAIL, UNKNOWN_SENDER_NAME)


def decode_header_value(value: str) -> str:
    """Decode RFC 2047 encoded words, returning the input unchanged if that fails."""
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError, ValueError):
        return value


class HeaderParser:
    """Turns a raw From header into an (email, display name) pair.

    parse() never raises. A header the address parser cannot handle falls
    back to a regex search for anything shaped like an address, and if that
    finds nothing the sentinel UNKNOWN_SENDER is returned.
    """

    def parse(self, raw_header: str) -> ParsedSender:
        if not raw_header or not raw_header.strip():
            return UNKNOWN_SENDER

        try:
            return self._parse_address(decode_header_value(raw_header))
        except Exception as e:
            logging.debug(f"Address parsing failed for {raw_header!r}: {e}")

        fallback = self.extract_email_fallback(raw_header)
        if fallback:
            return ParsedSender(fallback, fallback)
        return UNKNOWN_SENDER

    def _parse_address(self, header: str) -> ParsedSender:
        name, address = parseaddr(header)
        address = address.strip()
        if not address or "@" not in address or not _ADDRESS_SHAPE.fullmatch(address):
            raise ValueError(f"no usable address in {header!r}")
        return ParsedSender(address.lower(), name.strip().strip('"').strip())

    @staticmethod
    def extract_email_fallback(raw_header: str) -> str:
        """Return the first address-like substring, lowercased, or an empty string."""
        match = _EMAIL_PATTERN.search(raw_header or "")
        return match.group(0).lower() if match else ""
