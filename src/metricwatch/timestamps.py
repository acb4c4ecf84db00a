# Copyright (c) Syntropy Systems
"""RFC3339 timestamp helpers."""
from __future__ import annotations

import re
from datetime import datetime, timezone

from metricwatch.errors import ParseError

# Storage format for observation times (always UTC)
SQL_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime.

    Fractions longer than microseconds are truncated.
    """
    match = _RFC3339_RE.match(value.strip())
    if match is None:
        msg = f"Invalid RFC3339 timestamp: {value!r}"
        raise ParseError(msg)

    date, clock, fraction, offset = match.groups()
    micros = (fraction[1:] + "000000")[:6] if fraction else "000000"
    if offset in ("Z", "z"):
        offset = "+00:00"

    try:
        parsed = datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")
    except ValueError as e:
        msg = f"Invalid RFC3339 timestamp: {value!r}"
        raise ParseError(msg) from e
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Format a datetime as RFC3339 in UTC with microseconds."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utcnow() -> str:
    """Get current UTC time as an RFC3339 string."""
    return format_rfc3339(datetime.now(timezone.utc))


def to_sql_time(value: str) -> str:
    """Convert an RFC3339 timestamp to the storage format."""
    return parse_rfc3339(value).strftime(SQL_TIME_FORMAT)


def from_sql_time(value: str) -> str:
    """Convert a stored time back to RFC3339."""
    try:
        parsed = datetime.strptime(value, SQL_TIME_FORMAT)
    except ValueError as e:
        msg = f"Invalid stored time: {value!r}"
        raise ParseError(msg) from e
    return format_rfc3339(parsed.replace(tzinfo=timezone.utc))
