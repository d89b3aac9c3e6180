"""
Core Utility Functions.

Common utilities used across the application.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import numpy as np


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    return max(low, min(high, value))


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a Postgres/ISO timestamp into an aware UTC datetime.

    Naive datetimes are assumed to be UTC. Returns None for empty or
    unparseable input.

    Examples:
        >>> parse_timestamp("2026-01-02T03:04:05Z").tzinfo is not None
        True
        >>> parse_timestamp(None) is None
        True
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_string_set(items: Optional[Iterable[str]]) -> Set[str]:
    """
    Normalize strings to a set of lowercase, stripped strings.

    None and empty strings are dropped.
    """
    if not items:
        return set()
    return {s.lower().strip() for s in items if s and s.strip()}


def shared_values(mine: Optional[Iterable[str]], theirs: Optional[Iterable[str]]) -> List[str]:
    """
    Case-insensitive intersection that keeps the other side's spelling.

    Sorted so results are deterministic across calls.
    """
    wanted = normalize_string_set(mine)
    seen: Dict[str, str] = {}
    for value in theirs or ():
        if not value:
            continue
        key = value.lower().strip()
        if key in wanted and key not in seen:
            seen[key] = value.strip()
    return sorted(seen.values(), key=str.lower)


def to_vector(value: Any) -> Optional[np.ndarray]:
    """
    Coerce a stored embedding into a float vector.

    pgvector columns come back from PostgREST as a string such as
    ``"[0.1,0.2]"``; lists and arrays are accepted as-is.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().strip("[]")
        if not text:
            return None
        try:
            return np.array([float(x) for x in text.split(",")], dtype=np.float64)
        except ValueError:
            return None
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim != 1 or arr.size == 0:
        return None
    return arr


def chunk_list(items: List[Any], chunk_size: int) -> List[List[Any]]:
    """Split a list into chunks of ``chunk_size``."""
    return [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]
