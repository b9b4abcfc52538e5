"""Time utilities."""
from datetime import UTC, datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def epoch_millis(now: datetime | None = None) -> int:
    """Milliseconds since the epoch, used to stamp external references."""

    return int((now or utcnow()).timestamp() * 1000)


def parse_gateway_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp sent by a gateway, normalised to UTC.

    Gateways send offsets (``-04:00``), a ``Z`` suffix, or nothing at all;
    unparseable values yield ``None`` instead of failing the caller.
    """

    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def expires_after(created: datetime | None, seconds: int | None) -> datetime | None:
    if created is None or seconds is None:
        return None
    return created + timedelta(seconds=int(seconds))


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = ["utcnow", "epoch_millis", "parse_gateway_datetime", "expires_after", "as_utc"]
