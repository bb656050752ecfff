from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from money_tracker.currency_conversion import (
    ZERO,
    convert_amount,
    sum_in_currency,
)
from money_tracker.rate_cache import RateCache

SNAPSHOT = "snapshot"
FLOW = "flow"
GROUP_KINDS = {SNAPSHOT, FLOW}

Period = tuple[int, int]


@dataclass(frozen=True)
class MoneyEntry:
    amount: Decimal
    currency: str
    year: int
    month: int

    @classmethod
    def from_date(cls, amount: Decimal, currency: str, value: date) -> "MoneyEntry":
        return cls(amount=amount, currency=currency, year=value.year, month=value.month)

    @property
    def period(self) -> Period:
        return (self.year, self.month)


@dataclass(frozen=True)
class PeriodTotal:
    year: int
    month: int
    total: Decimal
    entry_count: int
    change: Optional[Decimal] = None

    @property
    def period(self) -> Period:
        return (self.year, self.month)


@dataclass(frozen=True)
class YearGroup:
    year: int
    total: Decimal
    months: tuple[PeriodTotal, ...]
    yoy_change: Optional[Decimal] = None

    @property
    def reference_month(self) -> int:
        return self.months[0].month


@dataclass(frozen=True)
class CurrencyAggregator:
    """Per-call convenience wrapper around the snapshot functions.

    Each method takes a fresh snapshot from ``rate_cache.get_rates()``. Reports
    that make several conversions take one snapshot themselves and call
    ``convert_amount``, ``sum_in_currency`` and ``build_period_totals``
    directly, so every figure in a response uses the same rates.
    """

    rate_cache: RateCache

    def convert(self, amount: Decimal, source_currency: str, target_currency: str) -> Decimal:
        if source_currency == target_currency:
            return amount
        return convert_amount(amount, source_currency, target_currency, self.rate_cache.get_rates())

    def sum_in_target(
        self, items: Iterable[tuple[Decimal, str]], target_currency: str
    ) -> Decimal:
        return sum_in_currency(items, target_currency, self.rate_cache.get_rates())

    def build_period_totals(
        self, entries: Iterable[MoneyEntry], target_currency: str
    ) -> List[PeriodTotal]:
        return build_period_totals(entries, target_currency, self.rate_cache.get_rates())


def build_period_totals(
    entries: Iterable[MoneyEntry],
    target_currency: str,
    rates: Mapping[str, Decimal],
) -> List[PeriodTotal]:
    """Sum entries per (year, month), newest period first."""
    buckets: dict[Period, list[MoneyEntry]] = {}
    for entry in entries:
        buckets.setdefault(entry.period, []).append(entry)

    periods = [
        PeriodTotal(
            year=year,
            month=month,
            total=sum_in_currency(
                ((entry.amount, entry.currency) for entry in bucket),
                target_currency,
                rates,
            ),
            entry_count=len(bucket),
        )
        for (year, month), bucket in buckets.items()
    ]
    periods.sort(key=lambda period: period.period, reverse=True)
    return periods


def compute_month_over_month(periods: Sequence[PeriodTotal]) -> List[PeriodTotal]:
    """Annotate newest-first periods with the delta to the next older one.

    The delta is taken against the next entry in the sequence, whatever
    calendar month it is; the oldest period gets None.
    """
    annotated: List[PeriodTotal] = []
    for index, period in enumerate(periods):
        if index + 1 < len(periods):
            change = period.total - periods[index + 1].total
        else:
            change = None
        annotated.append(replace(period, change=change))
    return annotated


def group_by_year(periods: Sequence[PeriodTotal], kind: str) -> List[YearGroup]:
    """Bucket newest-first periods by year.

    Snapshot years are represented by their latest month's total, flow years
    by the sum of their months.
    """
    if kind not in GROUP_KINDS:
        raise ValueError(f"Unsupported group kind: {kind}")

    months_by_year: dict[int, list[PeriodTotal]] = {}
    for period in periods:
        months_by_year.setdefault(period.year, []).append(period)

    groups: List[YearGroup] = []
    for year in sorted(months_by_year, reverse=True):
        months = sorted(months_by_year[year], key=lambda period: period.month, reverse=True)
        if kind == SNAPSHOT:
            total = months[0].total
        else:
            total = sum((period.total for period in months), ZERO)
        groups.append(YearGroup(year=year, total=total, months=tuple(months)))
    return groups


def compute_year_over_year(
    groups: Sequence[YearGroup], lookup: Mapping[Period, Decimal]
) -> List[YearGroup]:
    """Annotate year groups with the change against the same month a year earlier.

    A missing ``(year - 1, month)`` key compares against 0, so a year without
    history reports its full total as the change.
    """
    return [
        replace(
            group,
            yoy_change=group.total - lookup.get((group.year - 1, group.reference_month), ZERO),
        )
        for group in groups
    ]


def period_lookup(periods: Iterable[PeriodTotal]) -> dict[Period, Decimal]:
    return {period.period: period.total for period in periods}


def build_year_groups(
    entries: Iterable[MoneyEntry],
    target_currency: str,
    rates: Mapping[str, Decimal],
    kind: str,
) -> List[YearGroup]:
    periods = compute_month_over_month(build_period_totals(entries, target_currency, rates))
    return compute_year_over_year(group_by_year(periods, kind), period_lookup(periods))


def previous_period(year: int, month: int) -> Period:
    if month == 1:
        return (year - 1, 12)
    return (year, month - 1)
