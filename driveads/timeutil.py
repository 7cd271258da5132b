from datetime import datetime, date, time, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(ts: datetime) -> datetime:
    """Normalize an aware timestamp to naive UTC; naive input is assumed UTC."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)
