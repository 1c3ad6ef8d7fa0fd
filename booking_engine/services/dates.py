"""
Portuguese weekday calendar

Weekday numbers follow the professionals table: 0 = domingo ... 6 = sábado.
"Next occurrence" of a weekday is 0-6 days ahead, so naming today's weekday
resolves to today.
"""

import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from .. import config

WEEKDAY_NAMES = [
    "domingo",
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
]

# Accent-free short forms users actually type
_WEEKDAY_ALIASES = {
    "domingo": 0,
    "segunda": 1,
    "terca": 2,
    "quarta": 3,
    "quinta": 4,
    "sexta": 5,
    "sabado": 6,
}


def strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def today(tz_name: Optional[str] = None) -> date:
    """Current date in the booking timezone"""
    return datetime.now(ZoneInfo(tz_name or config.BOOKING_TIMEZONE)).date()


def weekday_number(day: date) -> int:
    """Python's Monday=0 mapped to Sunday=0"""
    return (day.weekday() + 1) % 7


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[weekday_number(day)]


def next_occurrence(weekday: int, reference: date) -> date:
    return reference + timedelta(days=(weekday - weekday_number(reference)) % 7)


def next_weekdays(reference: date) -> Dict[str, date]:
    """Weekday name -> next occurrence, in calendar order starting from the reference"""
    table = {}
    for offset in range(7):
        day = reference + timedelta(days=offset)
        table[weekday_name(day)] = day
    return table


def resolve_day_word(word: str, reference: date) -> Optional[date]:
    """
    Resolve 'sábado', 'segunda-feira', 'terca', 'hoje' or 'amanhã' to a date.

    Returns None for anything else.
    """
    key = strip_accents((word or "").strip().lower())
    if key == "hoje":
        return reference
    if key == "amanha":
        return reference + timedelta(days=1)
    key = key.replace("-feira", "").replace(" feira", "")
    weekday = _WEEKDAY_ALIASES.get(key)
    if weekday is None:
        return None
    return next_occurrence(weekday, reference)


def format_br(day: date) -> str:
    return day.strftime("%d/%m/%Y")


_BR_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")


def parse_br_date(text: str) -> Optional[date]:
    """First dd/mm/yyyy date in the text"""
    match = _BR_DATE.search(text or "")
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None
