"""Report-generation routines.

Each routine reads entries through an open connection, converts them with a
rate snapshot taken once by the caller, and returns plain dataclasses in the
display currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Mapping, Optional

from sqlalchemy import Table, and_, desc, select
from sqlalchemy.engine import Connection

from money_tracker.aggregation import (
    FLOW,
    SNAPSHOT,
    MoneyEntry,
    Period,
    YearGroup,
    build_period_totals,
    build_year_groups,
    previous_period,
)
from money_tracker.currency_conversion import (
    ZERO,
    convert_amount,
    sum_in_currency,
    unknown_currencies,
)
from money_tracker.database import (
    accounts,
    earning_sources,
    earnings,
    monthly_balances,
    spending,
    spending_categories,
)
from money_tracker.utils import month_end, validate_period

RECENT_LIMIT = 5


@dataclass(frozen=True)
class Ledger:
    name: str
    entries: Table
    groups: Table
    group_column: str


EARNINGS = Ledger(name="earnings", entries=earnings, groups=earning_sources, group_column="source_id")
SPENDING = Ledger(
    name="spending", entries=spending, groups=spending_categories, group_column="category_id"
)
LEDGERS = {ledger.name: ledger for ledger in (EARNINGS, SPENDING)}


@dataclass(frozen=True)
class YearlyReport:
    display_currency: str
    years: List[YearGroup]
    colors: Mapping[Period, List[str]]
    unconverted_currencies: List[str]


@dataclass(frozen=True)
class DetailEntry:
    id: int
    date: date
    amount: Decimal
    currency: str
    converted_amount: Decimal
    notes: Optional[str]
    group_id: int
    group_name: str
    group_color: Optional[str]


@dataclass(frozen=True)
class GroupTotal:
    group_id: int
    name: str
    color: Optional[str]
    total: Decimal
    entry_count: int


@dataclass(frozen=True)
class MonthDetail:
    year: int
    month: int
    display_currency: str
    total: Decimal
    entries: List[DetailEntry]
    groups: List[GroupTotal]
    unconverted_currencies: List[str]


@dataclass(frozen=True)
class BalanceFormRow:
    account_id: int
    name: str
    currency: str
    color: Optional[str]
    amount: Optional[Decimal]
    previous_amount: Optional[Decimal]


@dataclass(frozen=True)
class RecentEntry:
    id: int
    date: date
    amount: Decimal
    currency: str
    group_name: str
    group_color: Optional[str]


@dataclass(frozen=True)
class DashboardSummary:
    display_currency: str
    net_worth: Decimal
    latest_balance_period: Optional[Period]
    monthly_change: Optional[Decimal]
    month_earnings: Decimal
    month_spending: Decimal
    month_net_income: Decimal
    ytd_earnings: Decimal
    ytd_spending: Decimal
    recent_earnings: List[RecentEntry]
    recent_spending: List[RecentEntry]
    unconverted_currencies: List[str]


def get_ledger(name: str) -> Ledger:
    try:
        return LEDGERS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown ledger: {name}") from exc


def balance_entries(conn: Connection, period: Optional[Period] = None) -> List[MoneyEntry]:
    stmt = select(
        monthly_balances.c.year,
        monthly_balances.c.month,
        monthly_balances.c.amount,
        accounts.c.currency,
    ).select_from(monthly_balances.join(accounts, monthly_balances.c.account_id == accounts.c.id))
    if period is not None:
        stmt = stmt.where(
            monthly_balances.c.year == period[0], monthly_balances.c.month == period[1]
        )
    rows = conn.execute(stmt).mappings().all()
    return [
        MoneyEntry(
            amount=row["amount"],
            currency=row["currency"],
            year=row["year"],
            month=row["month"],
        )
        for row in rows
    ]


def balance_year_groups(
    conn: Connection, display_currency: str, rates: Mapping[str, Decimal]
) -> YearlyReport:
    entries = balance_entries(conn)
    return YearlyReport(
        display_currency=display_currency,
        years=build_year_groups(entries, display_currency, rates, SNAPSHOT),
        colors={},
        unconverted_currencies=unknown_currencies((e.currency for e in entries), rates),
    )


def flow_year_groups(
    conn: Connection, ledger: Ledger, display_currency: str, rates: Mapping[str, Decimal]
) -> YearlyReport:
    group_fk = ledger.entries.c[ledger.group_column]
    rows = conn.execute(
        select(
            ledger.entries.c.amount,
            ledger.entries.c.currency,
            ledger.entries.c.date,
            ledger.groups.c.color,
        )
        .select_from(ledger.entries.join(ledger.groups, group_fk == ledger.groups.c.id))
        .order_by(desc(ledger.entries.c.date))
    ).mappings().all()

    entries: List[MoneyEntry] = []
    colors: dict[Period, List[str]] = {}
    for row in rows:
        entry = MoneyEntry.from_date(row["amount"], row["currency"], row["date"])
        entries.append(entry)
        period_colors = colors.setdefault(entry.period, [])
        if row["color"] and row["color"] not in period_colors:
            period_colors.append(row["color"])

    return YearlyReport(
        display_currency=display_currency,
        years=build_year_groups(entries, display_currency, rates, FLOW),
        colors=colors,
        unconverted_currencies=unknown_currencies((e.currency for e in entries), rates),
    )


def earnings_year_groups(
    conn: Connection, display_currency: str, rates: Mapping[str, Decimal]
) -> YearlyReport:
    return flow_year_groups(conn, EARNINGS, display_currency, rates)


def spending_year_groups(
    conn: Connection, display_currency: str, rates: Mapping[str, Decimal]
) -> YearlyReport:
    return flow_year_groups(conn, SPENDING, display_currency, rates)


def month_detail(
    conn: Connection,
    ledger: Ledger,
    year: int,
    month: int,
    display_currency: str,
    rates: Mapping[str, Decimal],
) -> MonthDetail:
    validate_period(year, month)
    start_date = date(year, month, 1)
    group_fk = ledger.entries.c[ledger.group_column]
    rows = conn.execute(
        select(
            ledger.entries.c.id,
            ledger.entries.c.date,
            ledger.entries.c.amount,
            ledger.entries.c.currency,
            ledger.entries.c.notes,
            ledger.groups.c.id.label("group_id"),
            ledger.groups.c.name.label("group_name"),
            ledger.groups.c.color.label("group_color"),
        )
        .select_from(ledger.entries.join(ledger.groups, group_fk == ledger.groups.c.id))
        .where(
            and_(
                ledger.entries.c.date >= start_date,
                ledger.entries.c.date <= month_end(start_date),
            )
        )
        .order_by(desc(ledger.entries.c.date), desc(ledger.entries.c.id))
    ).mappings().all()

    entries = [
        DetailEntry(
            id=row["id"],
            date=row["date"],
            amount=row["amount"],
            currency=row["currency"],
            converted_amount=convert_amount(
                row["amount"], row["currency"], display_currency, rates
            ),
            notes=row["notes"],
            group_id=row["group_id"],
            group_name=row["group_name"],
            group_color=row["group_color"],
        )
        for row in rows
    ]

    by_group: dict[int, list[DetailEntry]] = {}
    for entry in entries:
        by_group.setdefault(entry.group_id, []).append(entry)
    groups = [
        GroupTotal(
            group_id=group_id,
            name=members[0].group_name,
            color=members[0].group_color,
            total=sum((member.converted_amount for member in members), ZERO),
            entry_count=len(members),
        )
        for group_id, members in by_group.items()
    ]
    groups.sort(key=lambda group: group.total, reverse=True)

    return MonthDetail(
        year=year,
        month=month,
        display_currency=display_currency,
        total=sum((entry.converted_amount for entry in entries), ZERO),
        entries=entries,
        groups=groups,
        unconverted_currencies=unknown_currencies((e.currency for e in entries), rates),
    )


def balance_month_form(conn: Connection, year: int, month: int) -> List[BalanceFormRow]:
    """Active accounts with the stored and previous month's balance for pre-fill."""
    validate_period(year, month)
    prev_year, prev_month = previous_period(year, month)

    def amounts_for(period_year: int, period_month: int) -> dict[int, Decimal]:
        rows = conn.execute(
            select(monthly_balances.c.account_id, monthly_balances.c.amount).where(
                monthly_balances.c.year == period_year,
                monthly_balances.c.month == period_month,
            )
        ).all()
        return {account_id: amount for account_id, amount in rows}

    current = amounts_for(year, month)
    previous = amounts_for(prev_year, prev_month)
    active_accounts = conn.execute(
        select(accounts.c.id, accounts.c.name, accounts.c.currency, accounts.c.color)
        .where(accounts.c.is_active.is_(True))
        .order_by(accounts.c.display_order.asc(), accounts.c.id.asc())
    ).mappings().all()
    return [
        BalanceFormRow(
            account_id=row["id"],
            name=row["name"],
            currency=row["currency"],
            color=row["color"],
            amount=current.get(row["id"]),
            previous_amount=previous.get(row["id"]),
        )
        for row in active_accounts
    ]


def dashboard_summary(
    conn: Connection,
    display_currency: str,
    rates: Mapping[str, Decimal],
    today: date,
) -> DashboardSummary:
    seen_currencies: set[str] = set()

    latest = conn.execute(
        select(monthly_balances.c.year, monthly_balances.c.month)
        .order_by(desc(monthly_balances.c.year), desc(monthly_balances.c.month))
        .limit(1)
    ).first()

    net_worth = ZERO
    monthly_change: Optional[Decimal] = None
    latest_period: Optional[Period] = None
    if latest is not None:
        latest_period = (latest[0], latest[1])
        latest_entries = balance_entries(conn, latest_period)
        seen_currencies.update(entry.currency for entry in latest_entries)
        periods = build_period_totals(
            latest_entries + balance_entries(conn, previous_period(*latest_period)),
            display_currency,
            rates,
        )
        totals = {period.period: period.total for period in periods}
        net_worth = totals.get(latest_period, ZERO)
        previous_total = totals.get(previous_period(*latest_period))
        if previous_total is not None:
            monthly_change = net_worth - previous_total

    month_start_date = today.replace(day=1)
    year_start_date = today.replace(month=1, day=1)

    def ledger_total(ledger: Ledger, start_date: date, end_date: Optional[date] = None) -> Decimal:
        conditions = [ledger.entries.c.date >= start_date]
        if end_date is not None:
            conditions.append(ledger.entries.c.date <= end_date)
        rows = conn.execute(
            select(ledger.entries.c.amount, ledger.entries.c.currency).where(and_(*conditions))
        ).all()
        seen_currencies.update(currency for _, currency in rows)
        return sum_in_currency(rows, display_currency, rates)

    def recent(ledger: Ledger) -> List[RecentEntry]:
        group_fk = ledger.entries.c[ledger.group_column]
        rows = conn.execute(
            select(
                ledger.entries.c.id,
                ledger.entries.c.date,
                ledger.entries.c.amount,
                ledger.entries.c.currency,
                ledger.groups.c.name.label("group_name"),
                ledger.groups.c.color.label("group_color"),
            )
            .select_from(ledger.entries.join(ledger.groups, group_fk == ledger.groups.c.id))
            .order_by(desc(ledger.entries.c.date), desc(ledger.entries.c.id))
            .limit(RECENT_LIMIT)
        ).mappings().all()
        return [RecentEntry(**row) for row in rows]

    month_earnings = ledger_total(EARNINGS, month_start_date, month_end(today))
    month_spending = ledger_total(SPENDING, month_start_date, month_end(today))
    ytd_earnings = ledger_total(EARNINGS, year_start_date)
    ytd_spending = ledger_total(SPENDING, year_start_date)

    return DashboardSummary(
        display_currency=display_currency,
        net_worth=net_worth,
        latest_balance_period=latest_period,
        monthly_change=monthly_change,
        month_earnings=month_earnings,
        month_spending=month_spending,
        month_net_income=month_earnings - month_spending,
        ytd_earnings=ytd_earnings,
        ytd_spending=ytd_spending,
        recent_earnings=recent(EARNINGS),
        recent_spending=recent(SPENDING),
        unconverted_currencies=unknown_currencies(seen_currencies, rates),
    )
