"""Time-of-day helpers. Times are stored as 'HH:MM' strings."""
import re
from typing import Optional

_HHMM = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*$")


def normalize_hhmm(value: Optional[str]) -> Optional[str]:
    """'9:00' -> '09:00', '09:00:00' -> '09:00'; None for anything out of range."""
    if value is None:
        return None
    match = _HHMM.match(str(value))
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return f"{hour:02d}:{minute:02d}"


def to_minutes(value: str) -> int:
    hour, minute = value.split(":")[:2]
    return int(hour) * 60 + int(minute)


def minutes_to_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
