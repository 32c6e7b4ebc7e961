from __future__ import annotations

import re
import string
from datetime import datetime, timedelta
from typing import Optional

from code_tunnel.constants import TIMESTAMP_FORMAT, UNAVAILABLE_TIMESTAMP

ALLOWED_TEXT_CHARS = set(string.ascii_letters + string.digits + string.punctuation + " ")
_DIGITS_RE = re.compile(r"^[0-9]+$")


def sanitize_text(text: Optional[str]) -> str:
    if text is None:
        return ""
    if "\x1b" in text:
        return ""
    return "".join(ch for ch in text if ch in ALLOWED_TEXT_CHARS)


def parse_positive_int(value: Optional[str]) -> Optional[int]:
    """Parse a string of decimal digits with a value of at least one.

    Args:
        value: Raw text from a flag, environment variable or prompt.

    Returns:
        Parsed integer, or ``None`` for blanks, signs, non-digits and zero.

    Example:
        >>> parse_positive_int("90")
        90
        >>> parse_positive_int("-5") is None
        True
    """

    if value is None:
        return None
    text = value.strip()
    if not _DIGITS_RE.match(text):
        return None
    try:
        number = int(text)
    except ValueError:
        # beyond the interpreter's int conversion digit limit
        return None
    return number if number >= 1 else None


def minutes_to_slurm_time(minutes: int) -> str:
    """Format minutes as ``HH:MM:SS`` with unbounded hours.

    Example:
        >>> minutes_to_slurm_time(90)
        '01:30:00'
        >>> minutes_to_slurm_time(1500)
        '25:00:00'
    """

    minutes = max(0, int(minutes))
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}:00"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def end_timestamp(start: datetime, minutes: int) -> str:
    """Return the formatted end of a session, or a placeholder when out of range."""

    try:
        return format_timestamp(start + timedelta(seconds=minutes * 60))
    except (OverflowError, OSError, ValueError):
        return UNAVAILABLE_TIMESTAMP
