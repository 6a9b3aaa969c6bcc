from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (some drivers drop tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_remote_time(value: str | None) -> datetime | None:
    """Parse Graph API timestamps like ``2024-03-01T10:00:00+0000``."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return as_utc(datetime.fromisoformat(value))


def resolve_date_range(date_from: date | None, date_to: date | None) -> tuple[date, date] | None:
    """Complete a partially given reporting range; ``None`` when neither bound is given.

    A missing ``date_to`` is today, a missing ``date_from`` is 28 days before ``date_to``.
    """
    if date_from is None and date_to is None:
        return None
    dt = date_to or utcnow().date()
    df = date_from or (dt - timedelta(days=28))
    return df, dt


def date_range_fields(date_range: tuple[date, date] | None) -> dict:
    """``date_from``/``date_to`` response fields; both null for stored metrics."""
    if date_range is None:
        return {"date_from": None, "date_to": None}
    return {"date_from": date_range[0].isoformat(), "date_to": date_range[1].isoformat()}
