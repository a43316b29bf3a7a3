from . import server
from .imap_service import ImapService
from .models import DateFilter, DateFilterType, ImapConfig, ProcessingStatus, SenderGroup


def main() -> None:
    """Main entry point for the package."""
    server.main()

__all__ = ['main', 'server', 'ImapService', 'DateFilter', 'DateFilterType', 'ImapConfig', 'ProcessingStatus', 'SenderGroup']
