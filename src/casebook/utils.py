import re
from datetime import UTC, datetime, timedelta

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def is_slug(value: str) -> bool:
    return bool(SLUG_RE.fullmatch(value))


def now() -> datetime:
    return datetime.now(UTC)


def expires_in(seconds: int, start: datetime | None = None) -> datetime:
    """Point in time ``seconds`` after ``start`` (defaults to now)."""
    return (start or now()) + timedelta(seconds=seconds)
