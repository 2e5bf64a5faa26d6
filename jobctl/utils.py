from datetime import datetime, timezone, timedelta
import re

from .errors import InvalidArgument

TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S"

# e.g., "24", "36h", "2d", "1d12h", "90m", "  2h  "
AGE_RE = re.compile(r"(?i)^\s*(?:(\d+)\s*d)?\s*(?:(\d+)\s*h)?\s*(?:(\d+)\s*m)?\s*$")


def parse_age_to_seconds(s) -> int:
    """
    Parse an age like '24', '36h', '2d', '1d12h', '90m'.
    A bare number means hours. Returns total seconds (int).
    Raises InvalidArgument on bad input or zero.
    """
    if s is None or not str(s).strip():
        raise InvalidArgument("age is empty")
    s = str(s).strip()
    if s.isdigit():
        total = int(s) * 3600
    else:
        m = AGE_RE.match(s)
        if not m or not any(m.groups()):
            raise InvalidArgument(f"Invalid age format: {s!r}")
        d, h, m_ = m.groups()
        total = 0
        if d:  total += int(d) * 86400
        if h:  total += int(h) * 3600
        if m_: total += int(m_) * 60
    if total <= 0:
        raise InvalidArgument("age must be > 0")
    return total


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    """UTC timestamp like '2025-11-06 09:12:34'."""
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FMT)


def now_ts() -> str:
    return format_ts(now_utc())


def ts_seconds_ago(seconds: int, now: datetime = None) -> str:
    """Return the UTC timestamp `seconds` before now, in storage format."""
    return format_ts((now or now_utc()) - timedelta(seconds=seconds))


def short_class(name) -> str:
    """Last segment of a dotted or backslash-separated class path."""
    if not name:
        return ""
    return re.split(r"[\\.]", str(name).rstrip("\\."))[-1]
