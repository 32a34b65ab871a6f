# validators.py — Domain rules called from the request schemas and engines
from datetime import datetime, timezone
from typing import Any, List, Optional


def normalize_string_list(value: Any) -> List[str]:
    """Accept a list or a comma-separated string; return trimmed, non-empty, unique entries.

    "a, b, ,c" -> ["a", "b", "c"]; first occurrence wins on duplicates.
    Raises ValueError for any other shape so pydantic reports it as a field error.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        if not all(isinstance(item, str) for item in value):
            raise ValueError("must contain only strings")
        parts = value
    else:
        raise ValueError("must be an array or a comma-separated string")

    cleaned = []
    for part in parts:
        item = part.strip()
        if item and item not in cleaned:
            cleaned.append(item)
    return cleaned


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def blank_as_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def like_pattern(text: str) -> str:
    """Substring pattern for ILIKE with % and _ matched literally; use escape="\\\\"."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
