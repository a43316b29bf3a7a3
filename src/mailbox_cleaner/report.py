"""Tabular rendering of sender groups for the tool server."""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from .models import SenderGroup

REPORT_COLUMNS = ["sender_email", "sender_name", "email_count", "total_size", "newest_date", "sample_uids"]


def sender_groups_to_frame(groups: List[SenderGroup]) -> pd.DataFrame:
    """Build one row per sender, keeping the order of ``groups``."""
    rows = []
    for group in groups:
        dates = [summary.date for summary in group.emails if summary.date is not None]
        rows.append({
            "sender_email": group.sender_email,
            "sender_name": group.sender_name,
            "email_count": group.email_count,
            "total_size": group.total_size,
            "newest_date": max(dates).isoformat() if dates else None,
            "sample_uids": [summary.uid for summary in group.emails],
        })
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def format_sender_report(
    groups: List[SenderGroup], limit: Optional[int] = None, format: str = "records"
) -> Dict[str, Any]:
    """Render sender groups as records, CSV or JSON with mailbox totals.

    Args:
        groups: Sender groups, already sorted
        limit: Maximum number of senders to include (None for all)
        format: Output format - 'records', 'csv' or 'json'

    Returns:
        Dictionary with the rendered data and totals over all groups
    """
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be non-negative, got: {limit}")

    df = sender_groups_to_frame(groups)
    display_df = df.head(limit) if limit is not None else df

    if format == "records":
        data: Any = display_df.to_dict(orient="records")
    elif format == "csv":
        data = display_df.drop(columns=["sample_uids"]).to_csv(index=False)
    elif format == "json":
        data = display_df.to_json(orient="records")
    else:
        raise ValueError(f"Unsupported format: {format}")

    logging.debug(f"Rendered {len(display_df)} of {len(df)} senders as {format}")
    return {
        "data": data,
        "total_senders": len(df),
        "total_emails": int(df["email_count"].sum()) if len(df) else 0,
        "total_size": int(df["total_size"].sum()) if len(df) else 0,
        "truncated": limit is not None and len(df) > limit,
    }
