"""Timestamp helpers shared by the stores and services."""

from datetime import UTC, datetime

NO_DATA_AGE_DAYS = 999

# Alpha Vantage style "20251015T143000" / "20251015T1430"
_COMPACT_FORMATS = ("%Y%m%dT%H%M%S", "%Y%m%dT%H%M")


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_db(ts: datetime) -> str:
    """Format a timestamp for SQLite so that string order matches time order."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse ISO dates, ISO datetimes, DB timestamps and compact news timestamps."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    text = value.strip()
    if not text:
        return None

    for fmt in _COMPACT_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def age_days(value: str | datetime | None, now: datetime) -> float | None:
    """Fractional days elapsed between ``value`` and ``now``."""
    ts = parse_timestamp(value)
    if ts is None:
        return None
    return (now - ts).total_seconds() / 86400


def whole_days_since(value: str | datetime | None, now: datetime) -> int:
    """Floor of the age in days, or the no-data sentinel when unparseable."""
    days = age_days(value, now)
    if days is None:
        return NO_DATA_AGE_DAYS
    return int(days // 1)
