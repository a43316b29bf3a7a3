"""Permanent deletion of messages by UID, by sender, or by sender and date."""

import logging
from typing import List, Optional, Sequence

from . import config
from .connection import ImapConnection, MessageUid, uid_to_str
from .exceptions import EmailDeletionError
from .models import DateFilter
from .query_builder import build_sender_criteria


class EmailDeletionService:
    """Deletes messages from the selected mailbox by flagging and expunging them.

    Deletion is permanent: messages are flagged \\Deleted and the mailbox
    is expunged, nothing is copied to a trash folder first.
    """

    def __init__(self, connection: ImapConnection, batch_size: int = config.BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got: {batch_size}")
        self._connection = connection
        self.batch_size = batch_size

    async def delete_emails(self, uids: Optional[Sequence[MessageUid]]) -> int:
        """Permanently delete the messages with the given UIDs.

        Args:
            uids: UIDs to delete; None or an empty list deletes nothing

        Returns:
            Number of UIDs requested for deletion. The server's own count of
            removed messages is not consulted.

        Raises:
            NotConnectedError: If there is no live session
            ValueError: If any UID is not a positive number
            EmailDeletionError: If flagging or expunging fails
        """
        self._connection.require_session()

        if not uids:
            logging.info("No email UIDs provided for deletion")
            return 0

        normalized = [uid_to_str(uid) for uid in uids]

        try:
            await self._mark_and_expunge(normalized)
        except Exception as e:
            logging.error(f"Failed to delete emails: {e!s}", exc_info=True)
            raise EmailDeletionError(f"Failed to delete emails: {e!s}") from e

        logging.info(f"Successfully deleted {len(normalized)} emails")
        return len(normalized)

    async def delete_emails_by_sender(self, sender_email: str) -> int:
        """Permanently delete every message whose From header contains ``sender_email``.

        Raises:
            NotConnectedError: If there is no live session
            ValueError: If sender_email is empty
            EmailDeletionError: If searching, flagging or expunging fails
        """
        return await self.delete_emails_by_sender_with_filter(sender_email, None)

    async def delete_emails_by_sender_with_filter(
        self, sender_email: str, date_filter: Optional[DateFilter]
    ) -> int:
        """Permanently delete messages from ``sender_email`` that also match ``date_filter``.

        The sender match is the server's FROM substring search, so it is
        approximate rather than an exact address comparison.

        Args:
            sender_email: Address (or fragment) to match in the From header
            date_filter: Optional date restriction; None deletes regardless of date

        Returns:
            Number of messages found and deleted

        Raises:
            NotConnectedError: If there is no live session
            ValueError: If sender_email is empty
            EmailDeletionError: If searching, flagging or expunging fails
        """
        self._connection.require_session()

        if not sender_email or not sender_email.strip():
            raise ValueError("Sender email address cannot be empty")
        sender_email = sender_email.strip()

        try:
            criteria = build_sender_criteria(sender_email, date_filter)
            logging.info(f"Searching for emails from sender {sender_email} with criteria {criteria}")
            uids = await self._connection.search(criteria)

            if not uids:
                logging.info(f"No emails found from sender: {sender_email}")
                return 0

            logging.info(f"Found {len(uids)} emails from {sender_email}, marking for deletion")
            await self._mark_and_expunge(uids)
        except Exception as e:
            logging.error(f"Failed to delete emails from {sender_email}: {e!s}", exc_info=True)
            raise EmailDeletionError(f"Failed to delete emails from sender {sender_email}: {e!s}") from e

        logging.info(f"Successfully deleted {len(uids)} emails from {sender_email}")
        return len(uids)

    async def _mark_and_expunge(self, uids: List[MessageUid]) -> None:
        # Flag in chunks to keep each STORE command line bounded, then expunge once
        for start in range(0, len(uids), self.batch_size):
            chunk = uids[start:start + self.batch_size]
            logging.debug(f"Marking {len(chunk)} emails as deleted")
            await self._connection.mark_deleted(chunk)

        logging.info(f"Expunging {len(uids)} deleted emails")
        await self._connection.expunge()
