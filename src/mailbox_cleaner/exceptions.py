"""Exception types raised by the mailbox cleaner engine."""


class MailboxCleanerError(Exception):
    """Base class for all mailbox cleaner errors."""

    pass


class NotConnectedError(MailboxCleanerError):
    """Raised when an operation needs a live IMAP session and there is none."""

    pass


class EmailTransportError(MailboxCleanerError):
    """Raised when an IMAP command fails.

    This includes socket errors, protocol aborts, timeouts reported by the
    transport and any non-OK reply to SEARCH, FETCH, STORE or EXPUNGE.
    """

    pass


class EmailRetrievalError(MailboxCleanerError):
    """Raised when a mailbox scan fails part-way through.

    The original failure is always available as ``__cause__``.
    """

    pass


class RetrievalCancelledError(MailboxCleanerError):
    """Raised when a running scan is cancelled at a batch boundary."""

    pass


class EmailDeletionError(MailboxCleanerError):
    """Raised when searching, flagging or expunging messages for deletion fails."""

    pass
