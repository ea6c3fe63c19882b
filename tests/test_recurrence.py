from datetime import date

from models import Frequency
from periods import month_key, month_period
from recurrence import (
    add_months_clamped,
    compute_step_in_months,
    generate_occurrence_dates,
    resolve_anchor_date,
)


def test_add_months_clamped_month_end() -> None:
    assert add_months_clamped(date(2026, 1, 31), 1, 31) == date(2026, 2, 28)
    assert add_months_clamped(date(2024, 1, 31), 1, 31) == date(2024, 2, 29)
    # A clamped date recovers the target day in a longer month.
    assert add_months_clamped(date(2026, 2, 28), 1, 31) == date(2026, 3, 31)


def test_add_months_clamped_crosses_year_boundaries() -> None:
    assert add_months_clamped(date(2026, 11, 15), 3, 15) == date(2027, 2, 15)
    assert add_months_clamped(date(2026, 1, 15), -1, 15) == date(2025, 12, 15)


def test_compute_step_in_months() -> None:
    assert compute_step_in_months(Frequency.monthly, 2) == 2
    assert compute_step_in_months(Frequency.quarterly, 2) == 6
    assert compute_step_in_months(Frequency.yearly, 1) == 12


def test_resolve_anchor_date_precedence() -> None:
    today = date(2026, 5, 20)
    kwargs = dict(frequency=Frequency.monthly, day_of_month=31, month_of_year=None, today=today)
    assert resolve_anchor_date(
        anchor_date=date(2026, 1, 3), start_date=date(2026, 2, 1), **kwargs
    ) == date(2026, 1, 3)
    assert resolve_anchor_date(anchor_date=None, start_date=date(2026, 2, 1), **kwargs) == date(
        2026, 2, 1
    )
    assert resolve_anchor_date(anchor_date=None, start_date=None, **kwargs) == date(2026, 5, 31)
    assert resolve_anchor_date(
        frequency=Frequency.yearly,
        day_of_month=29,
        month_of_year=2,
        anchor_date=None,
        start_date=None,
        today=today,
    ) == date(2026, 2, 28)


def test_generate_month_end_clamping() -> None:
    dates = generate_occurrence_dates(
        frequency=Frequency.monthly,
        interval=1,
        day_of_month=31,
        anchor=date(2026, 1, 31),
        horizon_months=2,
    )
    assert dates == [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31)]


def test_generate_quarterly_respects_window() -> None:
    dates = generate_occurrence_dates(
        frequency=Frequency.quarterly,
        interval=1,
        day_of_month=15,
        anchor=date(2026, 1, 15),
        horizon_months=12,
        start_date=date(2026, 3, 1),
        end_date=date(2026, 10, 1),
    )
    assert dates == [date(2026, 4, 15), date(2026, 7, 15)]


def test_generate_horizon_zero_yields_anchor_only() -> None:
    dates = generate_occurrence_dates(
        frequency=Frequency.monthly,
        interval=1,
        day_of_month=1,
        anchor=date(2026, 1, 1),
        horizon_months=0,
    )
    assert dates == [date(2026, 1, 1)]


def test_month_period_and_month_key() -> None:
    feb = month_period(date(2024, 2, 10))
    assert (feb.slug, feb.start, feb.end) == ("2024-02", date(2024, 2, 1), date(2024, 2, 29))
    assert feb.contains(date(2024, 2, 29))
    assert not feb.contains(date(2024, 3, 1))

    dec = month_period(date(2025, 12, 31))
    assert (dec.start, dec.end) == (date(2025, 12, 1), date(2025, 12, 31))
    assert month_key(date(2026, 3, 9)) == "2026-03"
