from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC, microsecond precision; SQLite drops tzinfo anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
