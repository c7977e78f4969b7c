"""Utility functions for olsync."""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

DEFAULT_BASE_URL: str = "https://www.overleaf.com"

# Name of the session cookie Overleaf issues after login
SESSION_COOKIE_NAME: str = "overleaf_session2"

# Per-directory sync state file (starts with a dot, so scans skip it)
STATE_FILE_NAME: str = ".olsync.json"

# Local credentials file looked up in the current directory
OLAUTH_FILE_NAME: str = ".olauth"

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Number of skipped paths shown after a pull
SKIPPED_PREVIEW_COUNT: int = 5

# Project and folder identifiers: 16 hex prefix + 8 hex counter
PROJECT_ID_PATTERN = re.compile(r"^[a-f0-9]{24}$", re.IGNORECASE)


# =============================================================================
# Timestamp utilities
# =============================================================================


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def mtime_to_datetime(mtime: float) -> datetime:
    """Convert a filesystem modification time to an aware UTC datetime."""
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def format_iso_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO 8601 in UTC with a ``Z`` suffix.

    Args:
        dt: Datetime to format (naive values are assumed to be UTC)

    Returns:
        Formatted string, or None if ``dt`` is None

    Examples:
        >>> from datetime import datetime, timezone
        >>> format_iso_timestamp(datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc))
        '2025-01-15T10:30:00.000Z'
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    # Round up so a reloaded watermark never precedes the instant it recorded
    if dt.microsecond % 1000:
        dt += timedelta(microseconds=1000 - dt.microsecond % 1000)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Args:
        timestamp_str: Timestamp such as "2025-01-15T10:30:00.000Z"

    Returns:
        Aware datetime in UTC, or None if the value is empty or malformed
    """
    if not timestamp_str:
        return None

    value = timestamp_str.strip()
    # The 'Z' suffix indicates UTC time
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        # Older interpreters reject millisecond fractions; retry without them
        if "." not in value:
            return None
        head, _, tail = value.partition(".")
        offset = ""
        for sign in ("+", "-"):
            if sign in tail:
                offset = sign + tail.split(sign, 1)[1]
                break
        try:
            dt = datetime.fromisoformat(head + offset)
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# =============================================================================
# Path and name utilities
# =============================================================================


def normalize_relative_path(path: str) -> str:
    """Strip a single leading slash so remote and local paths compare equal.

    Examples:
        >>> normalize_relative_path("/main.tex")
        'main.tex'
        >>> normalize_relative_path("figures/plot.png")
        'figures/plot.png'
    """
    if path.startswith("/"):
        return path[1:]
    return path


def sanitize_name(name: str) -> str:
    """Turn a project name into a safe directory or file name.

    Examples:
        >>> sanitize_name("My Thesis (v2)")
        'My_Thesis__v2_'
    """
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", name)


def is_project_id(value: str) -> bool:
    """Check whether a value looks like a project identifier (24 hex chars).

    Examples:
        >>> is_project_id("5f1a2b3c4d5e6f7a8b9c0d1e")
        True
        >>> is_project_id("My Paper")
        False
    """
    return bool(PROJECT_ID_PATTERN.match(value))


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
