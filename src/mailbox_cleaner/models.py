"""Data classes shared by the connection, retrieval and deletion services."""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from . import config

DateLike = Union[date, datetime, str]


@dataclass
class ImapConfig:
    """Settings required to open an IMAP session.

    Attributes:
        server: IMAP server hostname (e.g. 'imap.gmail.com')
        port: Port number, typically 993 for SSL and 143 for plain connections
        username: Login name, usually the email address
        password: Password or app-specific password
        use_ssl: Whether to wrap the connection in SSL/TLS
        mailbox: Mailbox to open read-write after login
        timeout: Socket timeout in seconds handed to the transport
    """
    server: str = ""
    port: int = 993
    username: str = ""
    password: str = ""
    use_ssl: bool = True
    mailbox: str = "INBOX"
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "ImapConfig":
        """Build a config from the values loaded by the config module."""
        return cls(
            server=config.IMAP_SERVER,
            port=config.IMAP_PORT,
            username=config.EMAIL_ADDRESS,
            password=config.EMAIL_PASSWORD,
            use_ssl=config.IMAP_USE_SSL,
            mailbox=config.IMAP_MAILBOX,
            timeout=config.IMAP_TIMEOUT,
        )

    def __repr__(self) -> str:
        return (
            f"ImapConfig(server={self.server!r}, port={self.port}, username={self.username!r}, "
            f"use_ssl={self.use_ssl}, mailbox={self.mailbox!r})"
        )


class DateFilterType(str, Enum):
    """Kinds of date filter that can be applied to a scan or a deletion."""

    ALL = "all"
    OLDER_THAN_DAYS = "older_than_days"
    OLDER_THAN_MONTHS = "older_than_months"
    OLDER_THAN_YEARS = "older_than_years"
    DATE_RANGE = "date_range"


def _coerce_date(value: Optional[DateLike], name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid {name} format: {value}. Expected YYYY-MM-DD") from e


@dataclass
class DateFilter:
    """Date filter applied when scanning or deleting.

    Only the field matching ``filter_type`` is consulted. A filter whose
    required field is missing matches every message rather than failing.

    Attributes:
        filter_type: Which variant of the filter is active
        days: Age threshold in days (OLDER_THAN_DAYS)
        months: Age threshold in months (OLDER_THAN_MONTHS)
        years: Age threshold in years (OLDER_THAN_YEARS)
        start_date: First day included (DATE_RANGE, optional)
        end_date: Last day included (DATE_RANGE, optional)
    """
    filter_type: DateFilterType = DateFilterType.ALL
    days: Optional[int] = None
    months: Optional[int] = None
    years: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def __post_init__(self) -> None:
        """Normalize and validate the filter after object creation."""
        self.validate()

    def validate(self) -> None:
        """Validate the filter type and the numeric thresholds.

        Raises:
            ValueError: If the filter type is unknown, a threshold is negative
                        or a date cannot be parsed
        """
        try:
            self.filter_type = DateFilterType(self.filter_type)
        except ValueError as e:
            raise ValueError(f"Unknown date filter type: {self.filter_type!r}") from e

        for name in ("days", "months", "years"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got: {value}")

        self.start_date = _coerce_date(self.start_date, "start_date")
        self.end_date = _coerce_date(self.end_date, "end_date")

    @classmethod
    def all(cls) -> "DateFilter":
        return cls(DateFilterType.ALL)

    @classmethod
    def older_than_days(cls, days: int) -> "DateFilter":
        return cls(DateFilterType.OLDER_THAN_DAYS, days=days)

    @classmethod
    def older_than_months(cls, months: int) -> "DateFilter":
        return cls(DateFilterType.OLDER_THAN_MONTHS, months=months)

    @classmethod
    def older_than_years(cls, years: int) -> "DateFilter":
        return cls(DateFilterType.OLDER_THAN_YEARS, years=years)

    @classmethod
    def between(cls, start_date: Optional[DateLike], end_date: Optional[DateLike]) -> "DateFilter":
        return cls(DateFilterType.DATE_RANGE, start_date=start_date, end_date=end_date)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["DateFilter"]:
        """Build a filter from a plain mapping such as tool arguments.

        Returns None when no mapping is given, which callers treat as "all".
        """
        if not data:
            return None
        return cls(
            filter_type=data.get("filter_type", DateFilterType.ALL),
            days=data.get("days"),
            months=data.get("months"),
            years=data.get("years"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
        )


@dataclass
class MessageEnvelope:
    """Raw per-message record returned by a header fetch.

    ``from_header`` is None when the message has no From header at all and
    ``size`` is None when the server did not report RFC822.SIZE.
    """
    uid: int
    from_header: Optional[str]
    subject: str
    date: Optional[datetime]
    size: Optional[int]


@dataclass(frozen=True)
class EmailSummary:
    """Metadata for a single message, without its body.

    Attributes:
        uid: IMAP UID of the message
        subject: Subject line ("No Subject" when empty)
        sender: From header exactly as received
        sender_email: Normalized sender address used for grouping
        date: Message date as naive UTC, None when the header was unusable
        size: Message size in bytes
    """
    uid: int
    subject: str
    sender: str
    sender_email: str
    date: Optional[datetime]
    size: int


@dataclass(frozen=True)
class SenderGroup:
    """Messages from one sender with aggregated statistics.

    ``emails`` holds at most a handful of the newest messages for preview,
    while ``email_count`` and ``total_size`` cover every scanned message.
    """
    sender_email: str
    sender_name: str
    email_count: int
    total_size: int
    emails: Tuple[EmailSummary, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProcessingStatus:
    """Point-in-time view of a running or finished mailbox scan."""
    is_processing: bool = False
    total_emails: int = 0
    processed_emails: int = 0
    current_batch: int = 0
    total_batches: int = 0
    current_operation: str = ""

    @property
    def progress_percentage(self) -> float:
        """Processed share of the scan in percent, 0 when nothing is being scanned."""
        if self.total_emails <= 0:
            return 0.0
        return max(0.0, min(100.0, self.processed_emails / self.total_emails * 100))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["progress_percentage"] = round(self.progress_percentage, 2)
        return data
