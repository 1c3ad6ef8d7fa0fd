"""
Availability Calculator

Computes free/busy windows for a professional over the next N days from the
working-day set, working hours and existing appointments, and renders them as
the availability block of the dialogue prompt.

Pure functions: callers load professionals and appointments.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from .. import config
from ..models import Appointment, Professional
from ..utils.time_utils import minutes_to_hhmm
from .dates import WEEKDAY_NAMES, format_br, weekday_name, weekday_number

HEADER = "DISPONIBILIDADE REAL DOS PROFISSIONAIS POR DATA:"


@dataclass
class DayAvailability:
    """Availability of one professional on one day. Intervals are [start, end) in minutes."""
    day: date
    working: bool
    work_start: str
    work_end: str
    busy: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def is_free(self) -> bool:
        return self.working and not self.busy

    def busy_labels(self) -> List[str]:
        return [f"{minutes_to_hhmm(start)}-{minutes_to_hhmm(end)}" for start, end in self.busy]

    def render(self) -> str:
        prefix = f"  {weekday_name(self.day)} ({format_br(self.day)})"
        if not self.working:
            return f"{prefix}: NÃO TRABALHA"
        if self.busy:
            return f"{prefix}: OCUPADO às {', '.join(self.busy_labels())}"
        return f"{prefix}: LIVRE ({self.work_start} às {self.work_end})"


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval overlap"""
    return start_a < end_b and end_a > start_b


def occupied_intervals(
    professional_id: int,
    day: date,
    appointments: Iterable[Appointment]
) -> List[Tuple[int, int]]:
    """Sorted [start, end) intervals of the professional's non-cancelled appointments on the day"""
    intervals = [
        (appointment.start_minutes, appointment.end_minutes)
        for appointment in appointments
        if appointment.professional_id == professional_id
        and appointment.appointment_date == day
        and not appointment.is_cancelled
    ]
    return sorted(intervals)


def compute_availability(
    professional: Professional,
    appointments: Iterable[Appointment],
    start: date,
    days: Optional[int] = None
) -> List[DayAvailability]:
    """One DayAvailability per day from `start`, for `days` days (AVAILABILITY_DAYS by default)"""
    appointments = list(appointments)
    horizon = days if days is not None else config.AVAILABILITY_DAYS
    result = []

    for offset in range(horizon):
        day = start + timedelta(days=offset)
        working = weekday_number(day) in professional.work_days
        result.append(DayAvailability(
            day=day,
            working=working,
            work_start=professional.work_start_time,
            work_end=professional.work_end_time,
            busy=occupied_intervals(professional.id, day, appointments) if working else [],
        ))

    return result


def render_availability(
    professionals: Iterable[Professional],
    appointments: Iterable[Appointment],
    start: date,
    days: Optional[int] = None
) -> str:
    """
    Render the availability block included in the dialogue prompt.

    Inactive professionals are skipped. Each professional gets a header with
    working hours and days, then one line per day.
    """
    appointments = list(appointments)
    lines = [HEADER, ""]

    for professional in professionals:
        if not professional.active:
            continue

        work_days = ", ".join(WEEKDAY_NAMES[day] for day in sorted(professional.work_days))
        lines.append(f"{professional.name} (ID: {professional.id}):")
        lines.append(f"- Horário de trabalho: {professional.work_start_time} às {professional.work_end_time}")
        lines.append(f"- Dias de trabalho: {work_days}")
        lines.append("")

        for day in compute_availability(professional, appointments, start, days):
            lines.append(day.render())
        lines.append("")

    return "\n".join(lines)
