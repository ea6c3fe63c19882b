from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import Frequency


def local_today() -> date:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamped_date(year: int, month: int, target_day: int) -> date:
    return date(year, month, min(target_day, days_in_month(year, month)))


def add_months_clamped(base: date, months_to_add: int, target_day_of_month: int) -> date:
    """Step ``months_to_add`` months from ``base`` and land on the target day.

    The day is clamped to the last day of the resulting month, so day 31 in
    February yields Feb 28 (or 29). The target day is independent of
    ``base.day``; a date clamped once recovers the target day in longer
    months.
    """
    total_months = base.month - 1 + months_to_add
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamped_date(year, month, target_day_of_month)


def compute_step_in_months(frequency: Frequency, interval: int) -> int:
    if frequency == Frequency.monthly:
        return interval
    if frequency == Frequency.quarterly:
        return interval * 3
    return interval * 12


def resolve_anchor_date(
    *,
    frequency: Frequency,
    day_of_month: int,
    month_of_year: Optional[int],
    anchor_date: Optional[date],
    start_date: Optional[date],
    today: date,
) -> date:
    if anchor_date:
        return anchor_date
    if start_date:
        return start_date
    if frequency == Frequency.yearly and month_of_year:
        return clamped_date(today.year, month_of_year, day_of_month)
    return clamped_date(today.year, today.month, day_of_month)


def generate_occurrence_dates(
    *,
    frequency: Frequency,
    interval: int,
    day_of_month: int,
    anchor: date,
    horizon_months: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[date]:
    step = compute_step_in_months(frequency, interval)
    max_date = add_months_clamped(anchor, horizon_months, day_of_month)

    dates: list[date] = []
    current = anchor
    while current <= max_date:
        if (start_date is None or current >= start_date) and (
            end_date is None or current <= end_date
        ):
            dates.append(current)
        current = add_months_clamped(current, step, day_of_month)
    return dates
