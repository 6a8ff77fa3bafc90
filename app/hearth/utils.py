from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns are timezone=False."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_csv(raw: str | None) -> tuple[str, ...]:
    """Split "a, b,,c" into ("a", "b", "c")."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def parse_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
