import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import insert

from money_tracker.database import (
    accounts,
    create_db_engine,
    earning_sources,
    earnings,
    init_db,
    monthly_balances,
    spending,
    spending_categories,
)
from money_tracker.reports import (
    EARNINGS,
    SPENDING,
    balance_month_form,
    balance_year_groups,
    dashboard_summary,
    earnings_year_groups,
    get_ledger,
    month_detail,
    spending_year_groups,
)

RATES = {"EUR": Decimal("1"), "USD": Decimal("1.1"), "GBP": Decimal("0.85")}


class ReportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine("sqlite://")
        init_db(self.engine)
        with self.engine.begin() as conn:
            conn.execute(
                insert(accounts),
                [
                    {"id": 1, "name": "Bank", "slug": "bank", "currency": "EUR", "is_active": True},
                    {"id": 2, "name": "US Bank", "slug": "us-bank", "currency": "USD", "is_active": True},
                    {"id": 3, "name": "Old", "slug": "old", "currency": "EUR", "is_active": False},
                ],
            )
            conn.execute(
                insert(monthly_balances),
                [
                    {"year": 2023, "month": 3, "account_id": 1, "amount": Decimal("500")},
                    {"year": 2024, "month": 2, "account_id": 1, "amount": Decimal("900")},
                    {"year": 2024, "month": 3, "account_id": 1, "amount": Decimal("1000")},
                    {"year": 2024, "month": 3, "account_id": 2, "amount": Decimal("110")},
                ],
            )
            conn.execute(
                insert(earning_sources),
                [
                    {"id": 1, "name": "Job", "slug": "job", "color": "#111111"},
                    {"id": 2, "name": "Side", "slug": "side", "color": "#222222"},
                ],
            )
            conn.execute(
                insert(earnings),
                [
                    {"source_id": 1, "amount": Decimal("2000"), "currency": "EUR", "date": date(2024, 3, 1)},
                    {"source_id": 2, "amount": Decimal("110"), "currency": "USD", "date": date(2024, 3, 15)},
                    {"source_id": 1, "amount": Decimal("1900"), "currency": "EUR", "date": date(2024, 2, 1)},
                    {"source_id": 1, "amount": Decimal("1500"), "currency": "EUR", "date": date(2023, 3, 1)},
                ],
            )
            conn.execute(
                insert(spending_categories),
                [
                    {"id": 1, "name": "Food", "slug": "food", "color": "#333333"},
                    {"id": 2, "name": "Rent", "slug": "rent", "color": "#444444"},
                ],
            )
            conn.execute(
                insert(spending),
                [
                    {"category_id": 1, "amount": Decimal("85"), "currency": "GBP", "date": date(2024, 3, 3)},
                    {"category_id": 2, "amount": Decimal("700"), "currency": "EUR", "date": date(2024, 3, 1)},
                    {"category_id": 1, "amount": Decimal("50"), "currency": "CHF", "date": date(2024, 1, 9)},
                ],
            )

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_balance_year_groups(self) -> None:
        with self.engine.begin() as conn:
            report = balance_year_groups(conn, "EUR", RATES)

        self.assertEqual([g.year for g in report.years], [2024, 2023])
        latest = report.years[0]
        self.assertEqual(latest.total, Decimal("1100"))
        self.assertEqual(latest.yoy_change, Decimal("600"))
        self.assertEqual([m.change for m in latest.months], [Decimal("200"), Decimal("400")])
        self.assertIsNone(report.years[1].months[0].change)
        self.assertEqual(report.unconverted_currencies, [])

    def test_earnings_year_groups_sum_months(self) -> None:
        with self.engine.begin() as conn:
            report = earnings_year_groups(conn, "EUR", RATES)

        latest = report.years[0]
        self.assertEqual(latest.total, Decimal("4000"))
        self.assertEqual(latest.yoy_change, Decimal("2500"))
        self.assertEqual(latest.months[0].entry_count, 2)
        self.assertEqual(report.colors[(2024, 3)], ["#222222", "#111111"])

    def test_spending_year_groups_flag_unknown_currency(self) -> None:
        with self.engine.begin() as conn:
            report = spending_year_groups(conn, "EUR", RATES)

        self.assertEqual(report.years[0].total, Decimal("850"))
        self.assertEqual(report.unconverted_currencies, ["CHF"])

    def test_month_detail_groups_by_category(self) -> None:
        with self.engine.begin() as conn:
            detail = month_detail(conn, SPENDING, 2024, 3, "EUR", RATES)

        self.assertEqual(detail.total, Decimal("800"))
        self.assertEqual([e.date for e in detail.entries], [date(2024, 3, 3), date(2024, 3, 1)])
        self.assertEqual([(g.name, g.total) for g in detail.groups], [("Rent", Decimal("700")), ("Food", Decimal("100"))])

    def test_month_detail_rejects_bad_month(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(ValueError):
                month_detail(conn, EARNINGS, 2024, 13, "EUR", RATES)

    def test_balance_month_form_prefills_previous_month(self) -> None:
        with self.engine.begin() as conn:
            rows = balance_month_form(conn, 2024, 4)

        self.assertEqual([r.account_id for r in rows], [1, 2])
        self.assertIsNone(rows[0].amount)
        self.assertEqual(rows[0].previous_amount, Decimal("1000"))
        self.assertEqual(rows[1].previous_amount, Decimal("110"))

    def test_dashboard_summary(self) -> None:
        with self.engine.begin() as conn:
            summary = dashboard_summary(conn, "EUR", RATES, date(2024, 3, 20))

        self.assertEqual(summary.latest_balance_period, (2024, 3))
        self.assertEqual(summary.net_worth, Decimal("1100"))
        self.assertEqual(summary.monthly_change, Decimal("200"))
        self.assertEqual(summary.month_earnings, Decimal("2100"))
        self.assertEqual(summary.month_spending, Decimal("800"))
        self.assertEqual(summary.month_net_income, Decimal("1300"))
        self.assertEqual(summary.ytd_earnings, Decimal("4000"))
        self.assertEqual(summary.ytd_spending, Decimal("850"))
        self.assertEqual(len(summary.recent_earnings), 4)
        self.assertEqual(summary.recent_earnings[0].group_name, "Side")
        self.assertEqual(summary.unconverted_currencies, ["CHF"])

    def test_dashboard_without_previous_month_has_no_change(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(monthly_balances).values(year=2024, month=6, account_id=1, amount=Decimal("10"))
            )
            summary = dashboard_summary(conn, "GBP", RATES, date(2024, 6, 2))

        self.assertEqual(summary.net_worth, Decimal("8.5"))
        self.assertIsNone(summary.monthly_change)
        self.assertEqual(summary.month_earnings, Decimal("0"))

    def test_unknown_ledger(self) -> None:
        with self.assertRaises(ValueError):
            get_ledger("transfers")


if __name__ == "__main__":
    unittest.main()
