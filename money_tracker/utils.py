from __future__ import annotations

import re
from datetime import date, timedelta


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def validate_period(year: int, month: int) -> tuple[int, int]:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12.")
    if not 1900 <= year <= 9999:
        raise ValueError("Year is out of range.")
    return year, month


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    next_month = shift_month(month_start(value), 1)
    return next_month - timedelta(days=1)
