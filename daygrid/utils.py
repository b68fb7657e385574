from datetime import date, datetime, timezone
import logging
import re

logger = logging.getLogger(__name__)

DAY_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# English month names used for month labels
MONTHS_EN = [
    'January','February','March','April','May','June','July','August','September','October','November','December'
]


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def day_key(d: date | datetime) -> str:
    """Return the canonical ``YYYY-MM-DD`` key for a calendar day.

    Only the year/month/day components are used, so two datetimes on the same
    wall-clock day map to the same key whatever their time of day.
    """
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def parse_day_key(key: str) -> date:
    """Inverse of day_key. Raises ValueError for anything that is not a real day."""
    if not isinstance(key, str):
        raise ValueError(f"invalid day key: {key!r}")
    m = DAY_KEY_RE.match(key.strip())
    if not m:
        raise ValueError(f"invalid day key: {key!r}")
    y, mo, d = (int(p) for p in m.groups())
    # date() rejects 2024-02-30 and friends
    return date(y, mo, d)


def is_day_key(key: str) -> bool:
    try:
        parse_day_key(key)
    except ValueError:
        return False
    return True


def normalize_task_text(text: str | None) -> str:
    """Trim task text. Returns '' for None or whitespace-only input."""
    if text is None:
        return ''
    return str(text).strip()


def normalize_email(email: str | None) -> str:
    """Lower-case and validate an email address; raise ValueError if invalid."""
    e = (email or '').strip().lower()
    if not EMAIL_RE.match(e):
        raise ValueError("invalid email address")
    return e


def ensure_aware(dt: datetime | None) -> datetime | None:
    """Treat naive datetimes (sqlite drops tzinfo) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def isoformat_or_none(dt: datetime | None) -> str | None:
    dt = ensure_aware(dt)
    return dt.isoformat() if dt else None
