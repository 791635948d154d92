"""
School calendar helpers: week window, term and academic year
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Tuple

from ..models.records import Term


@dataclass(frozen=True)
class WeekWindow:
    start: date  # Monday
    end: date    # Friday

    @property
    def label(self) -> str:
        return f"Week of {self.start.isoformat()}"


def current_week_window(today: date) -> WeekWindow:
    """
    Monday-Friday window of the school week containing `today`.

    Saturday and Sunday belong to the week that started on the preceding
    Monday.
    """
    monday = today - timedelta(days=today.weekday())
    return WeekWindow(start=monday, end=monday + timedelta(days=4))


def current_term(today: date) -> Term:
    """Jan-Apr TERM_1, May-Aug TERM_2, Sep-Dec TERM_3"""
    if today.month <= 4:
        return Term.TERM_1
    if today.month <= 8:
        return Term.TERM_2
    return Term.TERM_3


def academic_year(today: date) -> str:
    """'2025-2026' for any date in 2025"""
    return f"{today.year}-{today.year + 1}"


def trailing_window(today: date, days: int) -> Tuple[date, date]:
    """(today - days, today), both inclusive"""
    return today - timedelta(days=days), today
