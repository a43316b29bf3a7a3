"""Facade coordinating the connection, retrieval and deletion services."""

from typing import List, Optional, Sequence

from .connection import ImapConnection, MessageUid
from .deletion import EmailDeletionService
from .models import DateFilter, ImapConfig, ProcessingStatus, SenderGroup
from .retrieval import EmailRetrievalService


class ImapService:
    """Single entry point for hosting layers (the MCP server, scripts, tests).

    Collaborators are passed in by the caller; any that are omitted are
    built around one shared ImapConnection.
    """

    def __init__(
        self,
        connection: Optional[ImapConnection] = None,
        retrieval_service: Optional[EmailRetrievalService] = None,
        deletion_service: Optional[EmailDeletionService] = None,
    ) -> None:
        self.connection = connection or ImapConnection()
        self.retrieval_service = retrieval_service or EmailRetrievalService(self.connection)
        self.deletion_service = deletion_service or EmailDeletionService(self.connection)

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    async def connect(self, imap_config: Optional[ImapConfig]) -> bool:
        return await self.connection.connect(imap_config)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def get_emails_by_sender(self, date_filter: Optional[DateFilter] = None) -> List[SenderGroup]:
        return await self.retrieval_service.get_emails_by_sender(date_filter)

    def get_processing_status(self) -> ProcessingStatus:
        return self.retrieval_service.get_processing_status()

    def cancel_processing(self) -> None:
        self.retrieval_service.cancel()

    async def delete_emails(self, uids: Optional[Sequence[MessageUid]]) -> int:
        return await self.deletion_service.delete_emails(uids)

    async def delete_emails_by_sender(self, sender_email: str) -> int:
        return await self.deletion_service.delete_emails_by_sender(sender_email)

    async def delete_emails_by_sender_with_filter(
        self, sender_email: str, date_filter: Optional[DateFilter]
    ) -> int:
        return await self.deletion_service.delete_emails_by_sender_with_filter(sender_email, date_filter)
