"""Date conversion helpers for parsed entries and rendered outputs."""

from __future__ import annotations

import calendar
import time
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Optional

DEFAULT_DATE_FORMAT = "%Y-%m-%d at %H:%M:%S"


def to_datetime(value: Optional[time.struct_time]) -> Optional[datetime]:
    """Convert feedparser timestamps (always UTC) to timezone-aware datetimes."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return None


def format_rfc822(value: datetime) -> str:
    """Return ``value`` as an RFC 822 date in UTC, e.g. ``Mon, 02 Jan 2006 15:04:05 +0000``."""
    return format_datetime(value.astimezone(timezone.utc))


def format_iso8601(value: datetime) -> str:
    """Return ``value`` as an ISO 8601 UTC timestamp with a ``Z`` suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_local(value: datetime, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    """Format ``value`` in local time with a user supplied strftime pattern."""
    return value.astimezone().strftime(date_format)


def format_for_output(
    value: datetime, output_type: str, date_format: str = DEFAULT_DATE_FORMAT
) -> str:
    """Pick the date representation the given output document expects."""
    kind = output_type.upper()
    if kind == "ATOM":
        return format_iso8601(value)
    if kind in ("RSS", "OPML"):
        return format_rfc822(value)
    return format_local(value, date_format)
