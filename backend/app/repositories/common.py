from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def utc_iso_before(seconds: float, *, now: datetime | None = None) -> str:
    """ISO timestamp `seconds` before `now`, comparable as text with `utc_now_iso` values."""
    reference = now if now is not None else datetime.now(UTC)
    return (reference - timedelta(seconds=seconds)).astimezone(UTC).isoformat()


def parse_iso_timestamp(value: str) -> datetime | None:
    # YouTube emits a trailing `Z`; naive values are taken as UTC.
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
