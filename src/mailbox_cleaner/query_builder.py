"""Translate date filters and sender constraints into IMAP SEARCH criteria.

Dates are compared against the server's internal (delivery) date, so
"older than" becomes ``BEFORE`` and "from a start date" becomes ``SINCE``.
BEFORE is exclusive, which is why inclusive end dates are pushed forward
by one day.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from .models import DateFilter, DateFilterType

MATCH_ALL = "ALL"


def format_imap_date(value: date) -> str:
    """Format a date the way IMAP SEARCH expects it (e.g. 15-Dec-2024)."""
    return value.strftime("%d-%b-%Y")


def quote_imap_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _before(value: date) -> str:
    return f'BEFORE "{format_imap_date(value)}"'


def _since(value: date) -> str:
    return f'SINCE "{format_imap_date(value)}"'


def build_date_criteria_parts(date_filter: Optional[DateFilter], now: Optional[datetime] = None) -> List[str]:
    """Return the SEARCH keys for a date filter, or an empty list for "match everything".

    A filter whose required field is missing is treated as matching all
    messages instead of raising.
    """
    if date_filter is None or date_filter.filter_type == DateFilterType.ALL:
        return []

    today = (now or datetime.now()).date()
    filter_type = date_filter.filter_type

    if filter_type == DateFilterType.OLDER_THAN_DAYS:
        if date_filter.days is None:
            return []
        return [_before(today - timedelta(days=date_filter.days))]

    if filter_type == DateFilterType.OLDER_THAN_MONTHS:
        if date_filter.months is None:
            return []
        return [_before(today - relativedelta(months=date_filter.months))]

    if filter_type == DateFilterType.OLDER_THAN_YEARS:
        if date_filter.years is None:
            return []
        return [_before(today - relativedelta(years=date_filter.years))]

    if filter_type == DateFilterType.DATE_RANGE:
        parts = []
        if date_filter.start_date:
            parts.append(_since(date_filter.start_date))
        if date_filter.end_date:
            parts.append(_before(date_filter.end_date + timedelta(days=1)))
        return parts

    logging.warning(f"Unhandled date filter type {filter_type!r}, matching all messages")
    return []


def combine_criteria_parts(parts: List[str]) -> str:
    """Combine SEARCH keys with AND logic (IMAP ANDs space-separated keys)."""
    if not parts:
        return MATCH_ALL
    if len(parts) == 1:
        return parts[0]
    return "(" + " ".join(parts) + ")"


def build_search_criteria(date_filter: Optional[DateFilter], now: Optional[datetime] = None) -> str:
    """Build the SEARCH criteria used to scan the mailbox."""
    criteria = combine_criteria_parts(build_date_criteria_parts(date_filter, now))
    logging.debug(f"Search criteria for {date_filter}: {criteria}")
    return criteria


def build_sender_criteria(
    sender_email: str, date_filter: Optional[DateFilter] = None, now: Optional[datetime] = None
) -> str:
    """Build SEARCH criteria for messages whose From header contains ``sender_email``.

    FROM is a substring match on the server, so this can also match
    addresses that merely contain the given one.
    """
    parts = [f"FROM {quote_imap_string(sender_email)}"]
    parts.extend(build_date_criteria_parts(date_filter, now))
    criteria = combine_criteria_parts(parts)
    logging.debug(f"Sender search criteria: {criteria}")
    return criteria
