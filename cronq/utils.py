from datetime import datetime, timezone
import re
import uuid

# e.g., "20s", "5m", "1h30m", "2d3h", "90m", "  2h  "
DELAY_RE = re.compile(r"(?i)^\s*(?:(\d+)\s*d)?\s*(?:(\d+)\s*h)?\s*(?:(\d+)\s*m)?\s*(?:(\d+)\s*s)?\s*$")

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_delay_to_seconds(s: str) -> int:
    """
    Parse delay strings like '20s', '5m', '1h30m', '2d3h', '90m'.
    Returns total seconds (int). Raises ValueError on bad input or zero.
    """
    if not s:
        raise ValueError("delay string is empty")
    m = DELAY_RE.match(s)
    if not m:
        raise ValueError(f"Invalid delay format: {s!r}")
    d, h, m_, s_ = m.groups()
    total = 0
    if d:  total += int(d) * 86400
    if h:  total += int(h) * 3600
    if m_: total += int(m_) * 60
    if s_: total += int(s_)
    if total <= 0:
        raise ValueError("delay must be > 0 seconds")
    return total


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """
    Fixed-width UTC timestamp like '2025-11-06T09:12:34.123456Z'.
    Naive datetimes are taken as UTC. Always carries microseconds so that
    string order matches time order.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(s: str, assume_local: bool = False) -> datetime:
    """
    Parse an ISO datetime; a trailing Z means UTC. Without an offset the value
    is taken as UTC, or as local wall time when `assume_local` is set.
    """
    text = s.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Invalid ISO datetime: {s!r} ({e})")
    if dt.tzinfo is None:
        dt = dt.astimezone() if assume_local else dt.replace(tzinfo=timezone.utc)
    return dt


def truncate_to_minute(dt: datetime) -> datetime:
    return dt.replace(second=0, microsecond=0)


def tick_stamp(dt: datetime) -> str:
    """
    UTC claim key for the minute of `dt`, e.g. '2025-11-06T09:12:00.000000Z'.
    Naive datetimes are taken as UTC, so one instant seen from two zones
    yields one key.
    """
    return to_iso(truncate_to_minute(dt))


def cron_values(dt: datetime) -> dict:
    """The five cron fields of `dt` keyed by column name (weekday 0 = Sunday)."""
    return {
        "minute": dt.minute,
        "hour": dt.hour,
        "monthday": dt.day,
        "month": dt.month,
        "weekday": dt.isoweekday() % 7,
    }


def new_uuid() -> str:
    return str(uuid.uuid4())


def check_identifier(name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name
