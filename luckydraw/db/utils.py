import re
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

_SQLITE_RELATIVE = re.compile(r"^(sqlite(?:\+\w+)?:///)\./")


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Resolve 'sqlite[+driver]:///./relative/path' to an absolute sqlite URL.

    Keeps other URL forms unchanged.
    """
    match = _SQLITE_RELATIVE.match(url)
    if match is None:
        return url
    rel = url[match.end() :]
    return f"{match.group(1)}{(project_root / rel).resolve()}"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return ``dt`` as an aware UTC datetime.

    SQLite hands back naive values for ``DateTime(timezone=True)`` columns;
    everything is stored in UTC, so a naive value is interpreted as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO 8601 string in UTC, or return None.

    This is a small helper intended for serializing timestamps in JSON.
    """
    normalized = as_utc(dt)
    if normalized is None:
        return None
    return normalized.isoformat()


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted. Naive values are interpreted as UTC.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return as_utc(parsed)  # type: ignore[return-value]
