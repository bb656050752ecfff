import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from money_tracker.aggregation import (
    FLOW,
    SNAPSHOT,
    CurrencyAggregator,
    MoneyEntry,
    PeriodTotal,
    build_period_totals,
    build_year_groups,
    compute_month_over_month,
    compute_year_over_year,
    group_by_year,
    period_lookup,
    previous_period,
)
from money_tracker.currency_conversion import StaticRateProvider
from money_tracker.rate_cache import InMemoryRateStore, RateCache

RATES = {"EUR": Decimal("1"), "USD": Decimal("1.1"), "GBP": Decimal("0.85")}


def period(year: int, month: int, total: str, entry_count: int = 1) -> PeriodTotal:
    return PeriodTotal(year=year, month=month, total=Decimal(total), entry_count=entry_count)


class PeriodTotalTests(unittest.TestCase):
    def test_groups_entries_by_month_newest_first(self) -> None:
        entries = [
            MoneyEntry.from_date(Decimal("10"), "EUR", date(2024, 1, 5)),
            MoneyEntry.from_date(Decimal("85"), "GBP", date(2024, 3, 2)),
            MoneyEntry.from_date(Decimal("110"), "USD", date(2024, 3, 20)),
            MoneyEntry.from_date(Decimal("5"), "EUR", date(2023, 12, 31)),
        ]

        periods = build_period_totals(entries, "EUR", RATES)

        self.assertEqual([p.period for p in periods], [(2024, 3), (2024, 1), (2023, 12)])
        self.assertEqual(periods[0].total, Decimal("200"))
        self.assertEqual(periods[0].entry_count, 2)
        self.assertEqual(periods[1].total, Decimal("10"))

    def test_no_entries_gives_no_periods(self) -> None:
        self.assertEqual(build_period_totals([], "EUR", RATES), [])

    def test_month_over_month_deltas(self) -> None:
        periods = [period(2024, 3, "300"), period(2024, 2, "200"), period(2024, 1, "250")]

        annotated = compute_month_over_month(periods)

        self.assertEqual(
            [p.change for p in annotated], [Decimal("100"), Decimal("-50"), None]
        )

    def test_month_over_month_compares_with_next_recorded_period(self) -> None:
        annotated = compute_month_over_month([period(2024, 5, "40"), period(2024, 1, "10")])

        self.assertEqual(annotated[0].change, Decimal("30"))


class YearGroupTests(unittest.TestCase):
    def setUp(self) -> None:
        self.periods = [
            period(2024, 3, "300"),
            period(2024, 1, "100"),
            period(2023, 12, "90"),
            period(2023, 3, "50"),
        ]

    def test_snapshot_year_uses_latest_month(self) -> None:
        groups = group_by_year(self.periods, SNAPSHOT)

        self.assertEqual([g.year for g in groups], [2024, 2023])
        self.assertEqual(groups[0].total, Decimal("300"))
        self.assertEqual(groups[1].total, Decimal("90"))
        self.assertEqual(groups[0].reference_month, 3)

    def test_flow_year_sums_months(self) -> None:
        groups = group_by_year(self.periods, FLOW)

        self.assertEqual(groups[0].total, Decimal("400"))
        self.assertEqual(groups[1].total, Decimal("140"))

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            group_by_year(self.periods, "weekly")

    def test_snapshot_year_over_year_uses_same_month_last_year(self) -> None:
        groups = compute_year_over_year(
            group_by_year(self.periods, SNAPSHOT), period_lookup(self.periods)
        )

        self.assertEqual(groups[0].yoy_change, Decimal("250"))
        # no 2022-12 snapshot: compared against 0
        self.assertEqual(groups[1].yoy_change, Decimal("90"))

    def test_missing_prior_year_month_compares_against_zero(self) -> None:
        periods = [period(2024, 3, "300"), period(2024, 2, "200")]
        groups = compute_year_over_year(group_by_year(periods, SNAPSHOT), period_lookup(periods))

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].yoy_change, groups[0].total)

    def test_sparse_history_is_not_interpolated(self) -> None:
        periods = [period(2024, 3, "300"), period(2023, 2, "200")]
        groups = compute_year_over_year(group_by_year(periods, SNAPSHOT), period_lookup(periods))

        self.assertEqual(groups[0].yoy_change, Decimal("300"))

    def test_flow_year_over_year_compares_same_month_last_year(self) -> None:
        periods = [
            period(2024, 3, "200"),
            period(2023, 12, "300"),
            period(2023, 3, "50"),
            period(2023, 1, "100"),
        ]

        groups = compute_year_over_year(group_by_year(periods, FLOW), period_lookup(periods))

        # 2024 total (200) against the 2023-03 month alone (50)
        self.assertEqual(groups[0].yoy_change, Decimal("150"))
        self.assertEqual(groups[1].yoy_change, Decimal("450"))

    def test_build_year_groups_flow_uses_month_total_of_prior_year(self) -> None:
        entries = [
            MoneyEntry(amount=Decimal("200"), currency="EUR", year=2024, month=3),
            MoneyEntry(amount=Decimal("300"), currency="EUR", year=2023, month=12),
            MoneyEntry(amount=Decimal("50"), currency="EUR", year=2023, month=3),
            MoneyEntry(amount=Decimal("100"), currency="EUR", year=2023, month=1),
        ]

        groups = build_year_groups(entries, "EUR", RATES, FLOW)

        self.assertEqual(groups[0].total, Decimal("200"))
        self.assertEqual(groups[0].yoy_change, Decimal("150"))

    def test_build_year_groups_annotates_months_and_years(self) -> None:
        entries = [
            MoneyEntry(amount=Decimal("110"), currency="USD", year=2024, month=2),
            MoneyEntry(amount=Decimal("50"), currency="EUR", year=2024, month=1),
        ]

        groups = build_year_groups(entries, "EUR", RATES, SNAPSHOT)

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].total, Decimal("100"))
        self.assertEqual(groups[0].yoy_change, Decimal("100"))
        self.assertEqual([m.change for m in groups[0].months], [Decimal("50"), None])

    def test_previous_period_wraps_year(self) -> None:
        self.assertEqual(previous_period(2024, 1), (2023, 12))
        self.assertEqual(previous_period(2024, 7), (2024, 6))


class CurrencyAggregatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryRateStore()
        self.store.upsert(
            {"USD": Decimal("1.1"), "GBP": Decimal("0.85")},
            datetime(2024, 5, 1, tzinfo=timezone.utc),
        )
        self.cache = RateCache(
            store=self.store,
            provider=StaticRateProvider(rates={}),
            clock=lambda: datetime(2024, 5, 1, 6, tzinfo=timezone.utc),
        )
        self.aggregator = CurrencyAggregator(self.cache)

    def test_convert_identity(self) -> None:
        self.assertEqual(self.aggregator.convert(Decimal("42"), "GBP", "GBP"), Decimal("42"))

    def test_sum_in_target_uses_cached_rates(self) -> None:
        total = self.aggregator.sum_in_target(
            [(Decimal("100"), "USD"), (Decimal("85"), "GBP")], "EUR"
        )

        self.assertEqual(total.quantize(Decimal("0.01")), Decimal("190.91"))

    def test_build_period_totals_in_target(self) -> None:
        periods = self.aggregator.build_period_totals(
            [MoneyEntry(amount=Decimal("85"), currency="GBP", year=2024, month=4)], "USD"
        )

        self.assertEqual(periods[0].total, Decimal("110.0"))


if __name__ == "__main__":
    unittest.main()
