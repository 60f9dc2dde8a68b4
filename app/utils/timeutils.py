from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | str | None) -> datetime | None:
    """Normalise a timestamp read back from the store.

    Raw ``text()`` reads return strings on SQLite and naive datetimes on
    ``timestamp without time zone`` columns; both are treated as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | str | None) -> str | None:
    normalised = as_utc(value)
    return normalised.isoformat() if normalised else None
