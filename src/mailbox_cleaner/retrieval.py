"""Mailbox scan and per-sender aggregation.

The scan searches once for every matching UID, then fetches header-only
metadata in fixed-size batches so that memory stays bounded by one batch
plus the per-sender accumulators, however large the mailbox is.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from . import config
from .connection import ImapConnection
from .exceptions import EmailRetrievalError, RetrievalCancelledError
from .header_parser import UNKNOWN_SENDER_EMAIL, HeaderParser
from .models import DateFilter, EmailSummary, MessageEnvelope, ProcessingStatus, SenderGroup
from .query_builder import build_search_criteria
from .status import ProcessingTracker


@dataclass
class _SenderGroupBuilder:
    """Running totals for one sender while a scan is in progress."""
    sender_email: str
    sender_name: str
    email_count: int = 0
    total_size: int = 0
    emails: List[EmailSummary] = field(default_factory=list)

    def build(self) -> SenderGroup:
        newest_first = sorted(self.emails, key=lambda summary: summary.date or datetime.min, reverse=True)
        return SenderGroup(
            sender_email=self.sender_email,
            sender_name=self.sender_name.strip() or self.sender_email,
            email_count=self.email_count,
            total_size=self.total_size,
            emails=tuple(newest_first),
        )


def is_reportable_sender(sender_email: str) -> bool:
    """Whether an aggregation key is a real address rather than a parse failure."""
    if not sender_email or "@" not in sender_email:
        return False
    if sender_email == UNKNOWN_SENDER_EMAIL:
        return False
    return not sender_email.lower().startswith("unknown")


class EmailRetrievalService:
    """Scans the selected mailbox and groups its messages by sender.

    Attributes:
        batch_size: Number of UIDs fetched per FETCH command
        max_samples: Number of messages kept per sender for preview
    """

    def __init__(
        self,
        connection: ImapConnection,
        parser: Optional[HeaderParser] = None,
        batch_size: int = config.BATCH_SIZE,
        max_samples: int = config.MAX_EMAIL_SAMPLES_PER_SENDER,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got: {batch_size}")
        if max_samples < 0:
            raise ValueError(f"max_samples must be non-negative, got: {max_samples}")
        self._connection = connection
        self._parser = parser or HeaderParser()
        self._tracker = ProcessingTracker()
        self._cancel_requested = threading.Event()
        self.batch_size = batch_size
        self.max_samples = max_samples

    def get_processing_status(self) -> ProcessingStatus:
        """Return a snapshot of the current (or last) scan's progress."""
        return self._tracker.snapshot()

    def cancel(self) -> None:
        """Ask a running scan to stop at the next batch boundary."""
        logging.info("Cancellation requested for the running mailbox scan")
        self._cancel_requested.set()

    async def get_emails_by_sender(self, date_filter: Optional[DateFilter] = None) -> List[SenderGroup]:
        """Scan the mailbox and return one group per sender, largest first.

        Args:
            date_filter: Optional filter restricting which messages are scanned

        Returns:
            Sender groups sorted by email_count descending; senders whose
            address could not be parsed are left out

        Raises:
            NotConnectedError: If there is no live session (status untouched)
            RetrievalCancelledError: If cancel() was called during the scan
            asyncio.CancelledError: If the awaiting task is cancelled (status ends "Cancelled")
            EmailRetrievalError: If any IMAP operation fails during the scan
        """
        self._connection.require_session()
        self._cancel_requested.clear()

        try:
            return await self._process_emails_in_batches(date_filter)
        except (RetrievalCancelledError, asyncio.CancelledError):
            self._tracker.cancel()
            logging.info("Mailbox scan cancelled, partial results discarded")
            raise
        except Exception as e:
            self._tracker.fail()
            logging.error(f"Error in get_emails_by_sender: {e!s}", exc_info=True)
            raise EmailRetrievalError(f"Failed to retrieve emails: {e!s}") from e

    async def _process_emails_in_batches(self, date_filter: Optional[DateFilter]) -> List[SenderGroup]:
        self._tracker.begin()
        criteria = build_search_criteria(date_filter)
        uids = await self._connection.search(criteria)
        logging.info(f"Found {len(uids)} messages matching {criteria}")

        if not uids:
            self._tracker.start(0, 0)
            self._tracker.complete()
            return []

        total_batches = (len(uids) + self.batch_size - 1) // self.batch_size
        self._tracker.start(len(uids), total_batches)
        logging.info(f"Processing {len(uids)} emails in batches of {self.batch_size}...")

        builders: Dict[str, _SenderGroupBuilder] = {}
        for batch_number, start in enumerate(range(0, len(uids), self.batch_size), start=1):
            if self._cancel_requested.is_set():
                raise RetrievalCancelledError(f"Scan cancelled before batch {batch_number}/{total_batches}")

            batch = uids[start:start + self.batch_size]
            logging.info(f"Processing batch {batch_number}/{total_batches} ({len(batch)} emails)")
            envelopes = await self._connection.fetch_envelopes(batch)
            for envelope in envelopes:
                if not envelope.from_header:
                    continue
                self._add_message(envelope, builders)
                self._tracker.record_processed()
            self._tracker.complete_batch(batch_number)

        groups = self._convert_to_sender_groups(builders)
        self._tracker.complete()
        logging.info(f"Grouped {self._tracker.snapshot().processed_emails} emails into {len(groups)} senders")
        return groups

    def _add_message(self, envelope: MessageEnvelope, builders: Dict[str, _SenderGroupBuilder]) -> None:
        sender_email, sender_name = self._parser.parse(envelope.from_header or "")
        key = sender_email.lower()

        builder = builders.get(key)
        if builder is None:
            builder = _SenderGroupBuilder(sender_email=key, sender_name=sender_name)
            builders[key] = builder

        builder.email_count += 1
        builder.total_size += envelope.size or 0

        # Cap samples per sender so very active senders don't grow without bound
        if len(builder.emails) < self.max_samples:
            builder.emails.append(EmailSummary(
                uid=envelope.uid,
                subject=envelope.subject,
                sender=envelope.from_header or "",
                sender_email=key,
                date=envelope.date,
                size=envelope.size or 0,
            ))

    @staticmethod
    def _convert_to_sender_groups(builders: Dict[str, _SenderGroupBuilder]) -> List[SenderGroup]:
        groups = [builder.build() for key, builder in builders.items() if is_reportable_sender(key)]
        # sorted() is stable, so equal counts keep first-seen order
        return sorted(groups, key=lambda group: group.email_count, reverse=True)
