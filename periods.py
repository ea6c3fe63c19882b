from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_period(value: date) -> Period:
    first = value.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return Period(month_key(value), first, next_month - date.resolution)

