"""IMAP session management.

This module contains the ImapConnection class which owns the single
authenticated IMAP session and exposes the protocol operations the scan
and deletion services need: UID SEARCH, header-only UID FETCH, flagging
messages as deleted and EXPUNGE.
"""

import asyncio
import email
import imaplib
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from . import config
from .exceptions import EmailTransportError, NotConnectedError
from .header_parser import decode_header_value
from .models import ImapConfig, MessageEnvelope

# Envelope fields plus size; BODY.PEEK keeps the \Seen flag untouched
FETCH_ITEMS = "(UID RFC822.SIZE BODY.PEEK[HEADER.FIELDS (FROM SUBJECT DATE)])"
NO_SUBJECT = "No Subject"

MessageUid = Union[int, str, bytes]

_UID_RE = re.compile(r"UID (\d+)")
_SIZE_RE = re.compile(r"RFC822\.SIZE (\d+)")
_FETCH_START_RE = re.compile(r"^\d+ \(")

# Large mailboxes return UID SEARCH results far beyond imaplib's default line limit
imaplib._MAXLINE = max(imaplib._MAXLINE, config.IMAP_MAX_LINE)


def uid_to_str(uid: MessageUid) -> str:
    """Normalize a UID given as int, str or bytes to its decimal string form.

    Raises:
        ValueError: If the value is not a positive decimal number
    """
    text = uid.decode() if isinstance(uid, bytes) else str(uid).strip()
    if not text.isdigit() or int(text) == 0:
        raise ValueError(f"Invalid message UID: {uid!r}")
    return text


def build_uid_set(uids: Iterable[MessageUid]) -> str:
    """Join UIDs into an IMAP sequence set (comma-separated)."""
    return ",".join(uid_to_str(uid) for uid in uids)


def parse_message_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a Date header into a naive UTC datetime, or None if it is unusable."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        logging.debug(f"Unparseable Date header: {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def parse_fetch_response(data: List[Any]) -> List[MessageEnvelope]:
    """Turn the raw data of a header FETCH into MessageEnvelope records.

    imaplib returns one ``(metadata, literal)`` tuple per message, followed by
    a bytes fragment closing the response. Some servers put the UID in that
    trailing fragment, so fragments are folded back into the preceding
    metadata before parsing.
    """
    records: List[List[Any]] = []
    for item in data or []:
        if isinstance(item, tuple) and len(item) >= 2:
            records.append([_to_text(item[0]), item[1]])
        elif isinstance(item, bytes):
            text = _to_text(item)
            if _FETCH_START_RE.match(text) or not records:
                records.append([text, b""])
            else:
                records[-1][0] += " " + text

    envelopes = []
    for meta, header_bytes in records:
        uid_match = _UID_RE.search(meta)
        if not uid_match:
            logging.warning(f"Skipping FETCH response without UID: {meta!r}")
            continue

        message = email.message_from_bytes(header_bytes or b"")
        from_header = message.get("From")
        subject = decode_header_value(str(message.get("Subject") or "")).strip()
        size_match = _SIZE_RE.search(meta)

        envelopes.append(MessageEnvelope(
            uid=int(uid_match.group(1)),
            from_header=str(from_header).strip() if from_header is not None else None,
            subject=subject or NO_SUBJECT,
            date=parse_message_date(message.get("Date")),
            size=int(size_match.group(1)) if size_match else None,
        ))
    return envelopes


class ImapConnection:
    """Owner of the one live IMAP session and its selected mailbox.

    The class is not thread-safe: connect() and disconnect() are expected to
    be driven by a single caller. All blocking imaplib calls are pushed to
    the event loop's default executor so the hosting loop keeps running.

    Attributes:
        mailbox: Name of the mailbox selected by the last successful connect
    """

    def __init__(self) -> None:
        self._mail: Optional[imaplib.IMAP4] = None
        self.mailbox: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        """Whether a session exists and still has its mailbox selected.

        A command that fails with a socket error or a protocol abort drops
        the session, so a dead transport reports False from then on.
        """
        return self._mail is not None and getattr(self._mail, "state", None) == "SELECTED"

    def require_session(self) -> imaplib.IMAP4:
        """Return the live session.

        Raises:
            NotConnectedError: If there is no connected session
        """
        if not self.is_connected or self._mail is None:
            raise NotConnectedError("Not connected to IMAP server")
        return self._mail

    async def connect(self, imap_config: Optional[ImapConfig]) -> bool:
        """Open, authenticate and select the mailbox described by ``imap_config``.

        Any previous session is closed first. On failure every partially
        opened resource is released and the manager is left disconnected.

        Args:
            imap_config: Connection settings; None is treated as a failure

        Returns:
            True when the mailbox is open read-write, False otherwise
        """
        if imap_config is None:
            logging.error("IMAP connection requested without a configuration")
            return False

        if self._mail is not None:
            await self.disconnect()

        loop = asyncio.get_event_loop()
        mail: Optional[imaplib.IMAP4] = None
        try:
            logging.info(
                f"Connecting to IMAP server: {imap_config.server}:{imap_config.port} (ssl={imap_config.use_ssl})"
            )
            mail = await loop.run_in_executor(None, lambda: self._open_transport(imap_config))
            logging.info("IMAP connection established")

            await loop.run_in_executor(None, lambda: mail.login(imap_config.username, imap_config.password))
            logging.info("IMAP login successful")

            mailbox = imap_config.mailbox or "INBOX"
            quoted_mailbox = mailbox if mailbox.startswith('"') else f'"{mailbox}"'
            typ, data = await loop.run_in_executor(None, lambda: mail.select(quoted_mailbox, readonly=False))
            if typ != "OK":
                raise EmailTransportError(f"Failed to select mailbox {quoted_mailbox}: {data}")
            logging.info(f"Selected mailbox {quoted_mailbox} read-write ({_to_text(data[0]) if data else '?'} messages)")
        except Exception:
            logging.exception("IMAP connection/login failed")
            if mail is not None:
                self._release_transport(mail)
            self._mail = None
            self.mailbox = None
            return False

        self._mail = mail
        self.mailbox = mailbox
        return True

    async def disconnect(self) -> None:
        """Close the mailbox and log out, ignoring errors during teardown."""
        mail, self._mail = self._mail, None
        self.mailbox = None
        if mail is None:
            return

        loop = asyncio.get_event_loop()
        try:
            if getattr(mail, "state", None) == "SELECTED":
                await loop.run_in_executor(None, mail.close)
            await loop.run_in_executor(None, mail.logout)
            logging.info("IMAP connection closed")
        except Exception as e:
            logging.warning(f"Error closing IMAP connection: {e!s}")

    async def search(self, criteria: str) -> List[bytes]:
        """Run UID SEARCH and return the matching UIDs in server order."""
        data = await self._run_command("SEARCH", lambda mail: mail.uid("SEARCH", None, criteria))
        if not data or not data[0]:
            return []
        return data[0].split()

    async def fetch_envelopes(self, uids: List[MessageUid]) -> List[MessageEnvelope]:
        """Fetch sender, subject, date and size for ``uids`` without downloading bodies."""
        if not uids:
            return []
        uid_set = build_uid_set(uids)
        data = await self._run_command("FETCH", lambda mail: mail.uid("FETCH", uid_set, FETCH_ITEMS))
        return parse_fetch_response(data)

    async def mark_deleted(self, uids: List[MessageUid]) -> None:
        """Add the \\Deleted flag to ``uids``."""
        if not uids:
            return
        uid_set = build_uid_set(uids)
        await self._run_command("STORE", lambda mail: mail.uid("STORE", uid_set, "+FLAGS", "(\\Deleted)"))

    async def expunge(self) -> None:
        """Permanently remove every message flagged \\Deleted in the selected mailbox."""
        await self._run_command("EXPUNGE", lambda mail: mail.expunge())

    async def _run_command(
        self, name: str, command: Callable[[imaplib.IMAP4], Tuple[str, List[Any]]]
    ) -> List[Any]:
        """Run one IMAP command in the executor and return its data.

        Raises:
            NotConnectedError: If there is no live session
            EmailTransportError: If the command raises or the reply is not OK.
                A socket error or abort also drops the session.
        """
        mail = self.require_session()
        loop = asyncio.get_event_loop()
        try:
            typ, data = await loop.run_in_executor(None, lambda: command(mail))
        except (imaplib.IMAP4.abort, OSError) as e:
            logging.error(f"IMAP {name} failed, dropping the session: {e!s}")
            self._release_transport(mail)
            if self._mail is mail:
                self._mail = None
                self.mailbox = None
            raise EmailTransportError(f"IMAP {name} failed: {e!s}") from e
        except Exception as e:
            logging.error(f"IMAP {name} failed: {e!s}")
            raise EmailTransportError(f"IMAP {name} failed: {e!s}") from e

        if typ != "OK":
            raise EmailTransportError(f"IMAP {name} failed: {typ} {data}")
        return data

    @staticmethod
    def _open_transport(imap_config: ImapConfig) -> imaplib.IMAP4:
        if imap_config.use_ssl:
            return imaplib.IMAP4_SSL(imap_config.server, imap_config.port, timeout=imap_config.timeout)
        return imaplib.IMAP4(imap_config.server, imap_config.port, timeout=imap_config.timeout)

    @staticmethod
    def _release_transport(mail: imaplib.IMAP4) -> None:
        try:
            mail.shutdown()
        except Exception as e:
            logging.debug(f"Ignoring error while releasing IMAP transport: {e!s}")
