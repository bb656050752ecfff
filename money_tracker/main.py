import logging
import re
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import Callable

from fastapi import APIRouter, Cookie, Depends, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from money_tracker import config
from money_tracker.aggregation import YearGroup
from money_tracker.auth import create_session_token, is_valid_session_token, verify_credentials
from money_tracker.currency_conversion import (
    BASE_CURRENCY,
    CURRENCIES,
    FrankfurterRateProvider,
    validate_supported_currency,
)
from money_tracker.database import (
    SqlRateStore,
    accounts,
    create_db_engine,
    earning_sources,
    earnings,
    get_display_currency,
    init_db,
    monthly_balances,
    set_display_currency,
    spending,
    spending_categories,
    upsert_statement,
)
from money_tracker.logging_setup import setup_logging
from money_tracker.rate_cache import RateCache
from money_tracker.reports import (
    EARNINGS,
    SPENDING,
    Ledger,
    MonthDetail,
    YearlyReport,
    balance_month_form,
    balance_year_groups,
    dashboard_summary,
    earnings_year_groups,
    month_detail,
    spending_year_groups,
)
from money_tracker.utils import slugify, validate_period

logger = logging.getLogger(__name__)

app = FastAPI(title="money-tracker")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine(config.DATABASE_URL)


def get_rate_cache(engine: Engine = Depends(get_engine)) -> RateCache:
    return RateCache(store=SqlRateStore(engine), provider=FrankfurterRateProvider())


def require_session(auth_token: str | None = Cookie(None, alias=config.AUTH_COOKIE_NAME)) -> None:
    if not is_valid_session_token(auth_token, config.AUTH_SECRET):
        raise HTTPException(status_code=401, detail="Not authenticated.")


@app.on_event("startup")
def startup() -> None:
    setup_logging(config.LOG_LEVEL)
    init_db(get_engine())


class LoginPayload(BaseModel):
    username: str | None = None
    password: str | None = None


class CurrencySettingPayload(BaseModel):
    currency: str


class CurrencySettingResponse(BaseModel):
    currency: str
    currencies: list[str]


class RatesResponse(BaseModel):
    base_currency: str
    rates: dict[str, Decimal]


class AccountType:
    values = {"bank", "investment", "crypto", "cash"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid account type.")
        return normalized


class ReferencePayload(BaseModel):
    name: str
    slug: str | None = None
    color: str | None = None
    icon: str | None = None
    is_active: bool = True
    display_order: int = 0

    @classmethod
    def validate_payload(cls, payload: "ReferencePayload") -> "ReferencePayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Name is required.")
        payload.slug = payload.slug.strip() if payload.slug else slugify(payload.name)
        if not payload.slug or not SLUG_PATTERN.match(payload.slug):
            raise ValueError("Slug must be lowercase with hyphens only.")
        payload.color = payload.color.strip() if payload.color else None
        payload.icon = payload.icon.strip() if payload.icon else None
        return payload


class AccountPayload(ReferencePayload):
    type: str = "bank"
    currency: str = BASE_CURRENCY

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload = super().validate_payload(payload)
        payload.type = AccountType.validate(payload.type)
        payload.currency = validate_supported_currency(payload.currency)
        return payload


class CategoryPayload(ReferencePayload):
    parent_id: int | None = None


class ReferenceResponse(BaseModel):
    id: int
    name: str
    slug: str
    color: str | None = None
    icon: str | None = None
    is_active: bool
    display_order: int
    created_at: datetime | None = None


class AccountResponse(ReferenceResponse):
    type: str
    currency: str


class CategoryResponse(ReferenceResponse):
    parent_id: int | None = None


class ActivePayload(BaseModel):
    is_active: bool


class EntryPayload(BaseModel):
    amount: Decimal
    currency: str = BASE_CURRENCY
    date: date
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "EntryPayload") -> "EntryPayload":
        payload.currency = validate_supported_currency(payload.currency)
        payload.notes = payload.notes.strip() if payload.notes else None
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class EarningPayload(EntryPayload):
    source_id: int


class SpendingPayload(EntryPayload):
    category_id: int


class EntryResponse(BaseModel):
    id: int
    amount: Decimal
    currency: str
    date: date
    notes: str | None = None
    group_id: int
    group_name: str
    group_color: str | None = None


class BalanceRow(BaseModel):
    account_id: int
    name: str
    currency: str
    color: str | None = None
    amount: Decimal | None = None
    previous_amount: Decimal | None = None


class BalanceMonthResponse(BaseModel):
    year: int
    month: int
    accounts: list[BalanceRow]


class BalanceSavePayload(BaseModel):
    balances: dict[int, Decimal]


class PeriodTotalResponse(BaseModel):
    year: int
    month: int
    total: Decimal
    entry_count: int
    change: Decimal | None = None
    colors: list[str] = []


class YearGroupResponse(BaseModel):
    year: int
    total: Decimal
    yoy_change: Decimal | None = None
    months: list[PeriodTotalResponse]


class YearlyReportResponse(BaseModel):
    display_currency: str
    years: list[YearGroupResponse]
    unconverted_currencies: list[str]


class GroupTotalResponse(BaseModel):
    group_id: int
    name: str
    color: str | None = None
    total: Decimal
    entry_count: int


class DetailEntryResponse(EntryResponse):
    converted_amount: Decimal


class MonthDetailResponse(BaseModel):
    year: int
    month: int
    display_currency: str
    total: Decimal
    entries: list[DetailEntryResponse]
    groups: list[GroupTotalResponse]
    unconverted_currencies: list[str]


class RecentEntryResponse(BaseModel):
    id: int
    date: date
    amount: Decimal
    currency: str
    group_name: str
    group_color: str | None = None


class DashboardResponse(BaseModel):
    display_currency: str
    net_worth: Decimal
    latest_balance_year: int | None = None
    latest_balance_month: int | None = None
    monthly_change: Decimal | None = None
    month_earnings: Decimal
    month_spending: Decimal
    month_net_income: Decimal
    ytd_earnings: Decimal
    ytd_spending: Decimal
    recent_earnings: list[RecentEntryResponse]
    recent_spending: list[RecentEntryResponse]
    unconverted_currencies: list[str]


def to_yearly_response(report: YearlyReport) -> YearlyReportResponse:
    def year_response(group: YearGroup) -> YearGroupResponse:
        return YearGroupResponse(
            year=group.year,
            total=group.total,
            yoy_change=group.yoy_change,
            months=[
                PeriodTotalResponse(
                    year=period.year,
                    month=period.month,
                    total=period.total,
                    entry_count=period.entry_count,
                    change=period.change,
                    colors=list(report.colors.get(period.period, [])),
                )
                for period in group.months
            ],
        )

    return YearlyReportResponse(
        display_currency=report.display_currency,
        years=[year_response(group) for group in report.years],
        unconverted_currencies=report.unconverted_currencies,
    )


def to_month_detail_response(detail: MonthDetail) -> MonthDetailResponse:
    return MonthDetailResponse(
        year=detail.year,
        month=detail.month,
        display_currency=detail.display_currency,
        total=detail.total,
        entries=[DetailEntryResponse(**vars(entry)) for entry in detail.entries],
        groups=[GroupTotalResponse(**vars(group)) for group in detail.groups],
        unconverted_currencies=detail.unconverted_currencies,
    )


def fetch_reference_rows(conn: Connection, table: Table) -> list[dict]:
    rows = conn.execute(
        select(table).order_by(table.c.display_order.asc(), table.c.name.asc(), table.c.id.asc())
    ).mappings().all()
    return [dict(row) for row in rows]


def create_reference_row(
    engine: Engine,
    table: Table,
    values: dict,
    label: str,
    check: Callable[[Connection], None] | None = None,
) -> dict:
    try:
        with engine.begin() as conn:
            if check is not None:
                check(conn)
            row = conn.execute(insert(table).values(**values).returning(table)).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail=f"{label} slug already exists.") from exc
    if not row:
        raise HTTPException(status_code=500, detail=f"Failed to create {label.lower()}.")
    return dict(row)


def update_reference_row(
    engine: Engine,
    table: Table,
    row_id: int,
    values: dict,
    label: str,
    check: Callable[[Connection], None] | None = None,
) -> dict:
    try:
        with engine.begin() as conn:
            if check is not None:
                check(conn)
            row = conn.execute(
                update(table).where(table.c.id == row_id).values(**values).returning(table)
            ).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail=f"{label} slug already exists.") from exc
    if not row:
        raise HTTPException(status_code=404, detail=f"{label} not found.")
    return dict(row)


def delete_reference_row(
    engine: Engine, table: Table, row_id: int, label: str, usages: list[tuple[Table, str, str]]
) -> dict:
    with engine.begin() as conn:
        existing = conn.execute(select(table.c.id).where(table.c.id == row_id)).first()
        if not existing:
            raise HTTPException(status_code=404, detail=f"{label} not found.")
        for usage_table, column, message in usages:
            in_use = conn.execute(
                select(usage_table.c.id).where(usage_table.c[column] == row_id).limit(1)
            ).first()
            if in_use:
                raise HTTPException(status_code=409, detail=message)
        conn.execute(delete(table).where(table.c.id == row_id))
    return {"status": "deleted"}


def validate_reference(payload: ReferencePayload) -> ReferencePayload:
    try:
        return payload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def validate_category_parent(conn: Connection, category_id: int | None, parent_id: int | None) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise HTTPException(status_code=400, detail="A category cannot be its own parent.")
    parent = conn.execute(
        select(spending_categories.c.id, spending_categories.c.parent_id).where(
            spending_categories.c.id == parent_id
        )
    ).mappings().first()
    if not parent:
        raise HTTPException(status_code=404, detail="Parent category not found.")
    if parent["parent_id"] is not None:
        raise HTTPException(status_code=400, detail="Categories can only be nested one level.")
    if category_id is not None:
        has_children = conn.execute(
            select(spending_categories.c.id)
            .where(spending_categories.c.parent_id == category_id)
            .limit(1)
        ).first()
        if has_children:
            raise HTTPException(
                status_code=400, detail="A category with subcategories cannot have a parent."
            )


def entry_select(ledger: Ledger):
    group_fk = ledger.entries.c[ledger.group_column]
    return select(
        ledger.entries.c.id,
        ledger.entries.c.amount,
        ledger.entries.c.currency,
        ledger.entries.c.date,
        ledger.entries.c.notes,
        ledger.groups.c.id.label("group_id"),
        ledger.groups.c.name.label("group_name"),
        ledger.groups.c.color.label("group_color"),
    ).select_from(ledger.entries.join(ledger.groups, group_fk == ledger.groups.c.id))


def fetch_entry(conn: Connection, ledger: Ledger, entry_id: int, label: str) -> EntryResponse:
    row = conn.execute(
        entry_select(ledger).where(ledger.entries.c.id == entry_id)
    ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail=f"{label} not found.")
    return EntryResponse(**row)


def list_entries(engine: Engine, ledger: Ledger) -> list[EntryResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            entry_select(ledger).order_by(ledger.entries.c.date.desc(), ledger.entries.c.id.desc())
        ).mappings().all()
    return [EntryResponse(**row) for row in rows]


def save_entry(
    engine: Engine,
    ledger: Ledger,
    payload: EntryPayload,
    group_id: int,
    group_label: str,
    entry_id: int | None = None,
    label: str = "Entry",
) -> EntryResponse:
    try:
        payload = payload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    values = {
        ledger.group_column: group_id,
        "amount": payload.amount,
        "currency": payload.currency,
        "date": payload.date,
        "notes": payload.notes,
    }
    with engine.begin() as conn:
        group = conn.execute(select(ledger.groups.c.id).where(ledger.groups.c.id == group_id)).first()
        if not group:
            raise HTTPException(status_code=404, detail=f"{group_label} not found.")
        if entry_id is None:
            entry_id = conn.execute(
                insert(ledger.entries).values(**values).returning(ledger.entries.c.id)
            ).scalar_one()
        else:
            updated = conn.execute(
                update(ledger.entries)
                .where(ledger.entries.c.id == entry_id)
                .values(**values)
                .returning(ledger.entries.c.id)
            ).first()
            if not updated:
                raise HTTPException(status_code=404, detail=f"{label} not found.")
        return fetch_entry(conn, ledger, entry_id, label)


def delete_entry(engine: Engine, ledger: Ledger, entry_id: int, label: str) -> dict:
    with engine.begin() as conn:
        result = conn.execute(delete(ledger.entries).where(ledger.entries.c.id == entry_id))
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail=f"{label} not found.")
    return {"status": "deleted"}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/api/auth")
def login(payload: LoginPayload, response: Response) -> dict:
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required.")
    if not verify_credentials(
        payload.username,
        payload.password,
        config.AUTH_USERNAME,
        config.AUTH_PASSWORD_HASH_B64,
    ):
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    try:
        token = create_session_token(config.AUTH_SECRET)
    except RuntimeError as exc:
        logger.error("Auth error: %s", exc)
        raise HTTPException(status_code=500, detail="Authentication failed.") from exc

    response.set_cookie(
        config.AUTH_COOKIE_NAME,
        token,
        max_age=config.AUTH_COOKIE_MAX_AGE,
        path="/",
        secure=config.COOKIE_SECURE,
        httponly=True,
        samesite="strict",
    )
    return {"success": True}


@app.delete("/api/auth")
def logout(response: Response) -> dict:
    response.delete_cookie(config.AUTH_COOKIE_NAME, path="/")
    return {"success": True}


protected = APIRouter(dependencies=[Depends(require_session)])


@protected.get("/api/settings/currency", response_model=CurrencySettingResponse)
def read_display_currency(engine: Engine = Depends(get_engine)) -> CurrencySettingResponse:
    with engine.begin() as conn:
        currency = get_display_currency(conn)
    return CurrencySettingResponse(currency=currency, currencies=list(CURRENCIES))


@protected.post("/api/settings/currency", response_model=CurrencySettingResponse)
def update_display_currency(
    payload: CurrencySettingPayload, engine: Engine = Depends(get_engine)
) -> CurrencySettingResponse:
    currency = payload.currency.strip().upper()
    if currency not in CURRENCIES:
        raise HTTPException(status_code=400, detail="Invalid currency.")
    with engine.begin() as conn:
        set_display_currency(conn, currency)
    return CurrencySettingResponse(currency=currency, currencies=list(CURRENCIES))


@protected.get("/api/rates", response_model=RatesResponse)
def read_rates(rate_cache: RateCache = Depends(get_rate_cache)) -> RatesResponse:
    return RatesResponse(base_currency=BASE_CURRENCY, rates=rate_cache.get_rates())


@protected.get("/accounts", response_model=list[AccountResponse])
def list_accounts(engine: Engine = Depends(get_engine)) -> list[AccountResponse]:
    with engine.begin() as conn:
        rows = fetch_reference_rows(conn, accounts)
    return [AccountResponse(**row) for row in rows]


@protected.post("/accounts", response_model=AccountResponse)
def create_account(payload: AccountPayload, engine: Engine = Depends(get_engine)) -> AccountResponse:
    payload = validate_reference(payload)
    row = create_reference_row(engine, accounts, payload.model_dump(), "Account")
    return AccountResponse(**row)


@protected.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int, payload: AccountPayload, engine: Engine = Depends(get_engine)
) -> AccountResponse:
    payload = validate_reference(payload)
    row = update_reference_row(engine, accounts, account_id, payload.model_dump(), "Account")
    return AccountResponse(**row)


@protected.patch("/accounts/{account_id}/active", response_model=AccountResponse)
def toggle_account(
    account_id: int, payload: ActivePayload, engine: Engine = Depends(get_engine)
) -> AccountResponse:
    row = update_reference_row(
        engine, accounts, account_id, {"is_active": payload.is_active}, "Account"
    )
    return AccountResponse(**row)


@protected.delete("/accounts/{account_id}")
def delete_account(account_id: int, engine: Engine = Depends(get_engine)) -> dict:
    return delete_reference_row(
        engine,
        accounts,
        account_id,
        "Account",
        [(monthly_balances, "account_id", "Account has recorded balances. Consider disabling it instead.")],
    )


@protected.get("/earning-sources", response_model=list[ReferenceResponse])
def list_earning_sources(engine: Engine = Depends(get_engine)) -> list[ReferenceResponse]:
    with engine.begin() as conn:
        rows = fetch_reference_rows(conn, earning_sources)
    return [ReferenceResponse(**row) for row in rows]


@protected.post("/earning-sources", response_model=ReferenceResponse)
def create_earning_source(
    payload: ReferencePayload, engine: Engine = Depends(get_engine)
) -> ReferenceResponse:
    payload = validate_reference(payload)
    row = create_reference_row(engine, earning_sources, payload.model_dump(), "Earning source")
    return ReferenceResponse(**row)


@protected.put("/earning-sources/{source_id}", response_model=ReferenceResponse)
def update_earning_source(
    source_id: int, payload: ReferencePayload, engine: Engine = Depends(get_engine)
) -> ReferenceResponse:
    payload = validate_reference(payload)
    row = update_reference_row(
        engine, earning_sources, source_id, payload.model_dump(), "Earning source"
    )
    return ReferenceResponse(**row)


@protected.patch("/earning-sources/{source_id}/active", response_model=ReferenceResponse)
def toggle_earning_source(
    source_id: int, payload: ActivePayload, engine: Engine = Depends(get_engine)
) -> ReferenceResponse:
    row = update_reference_row(
        engine, earning_sources, source_id, {"is_active": payload.is_active}, "Earning source"
    )
    return ReferenceResponse(**row)


@protected.delete("/earning-sources/{source_id}")
def delete_earning_source(source_id: int, engine: Engine = Depends(get_engine)) -> dict:
    return delete_reference_row(
        engine,
        earning_sources,
        source_id,
        "Earning source",
        [(earnings, "source_id", "Earning source has earnings. Consider disabling it instead.")],
    )


@protected.get("/spending-categories", response_model=list[CategoryResponse])
def list_spending_categories(engine: Engine = Depends(get_engine)) -> list[CategoryResponse]:
    with engine.begin() as conn:
        rows = fetch_reference_rows(conn, spending_categories)
    return [CategoryResponse(**row) for row in rows]


@protected.post("/spending-categories", response_model=CategoryResponse)
def create_spending_category(
    payload: CategoryPayload, engine: Engine = Depends(get_engine)
) -> CategoryResponse:
    payload = validate_reference(payload)
    row = create_reference_row(
        engine,
        spending_categories,
        payload.model_dump(),
        "Category",
        check=lambda conn: validate_category_parent(conn, None, payload.parent_id),
    )
    return CategoryResponse(**row)


@protected.put("/spending-categories/{category_id}", response_model=CategoryResponse)
def update_spending_category(
    category_id: int, payload: CategoryPayload, engine: Engine = Depends(get_engine)
) -> CategoryResponse:
    payload = validate_reference(payload)
    row = update_reference_row(
        engine,
        spending_categories,
        category_id,
        payload.model_dump(),
        "Category",
        check=lambda conn: validate_category_parent(conn, category_id, payload.parent_id),
    )
    return CategoryResponse(**row)


@protected.patch("/spending-categories/{category_id}/active", response_model=CategoryResponse)
def toggle_spending_category(
    category_id: int, payload: ActivePayload, engine: Engine = Depends(get_engine)
) -> CategoryResponse:
    row = update_reference_row(
        engine, spending_categories, category_id, {"is_active": payload.is_active}, "Category"
    )
    return CategoryResponse(**row)


@protected.delete("/spending-categories/{category_id}")
def delete_spending_category(category_id: int, engine: Engine = Depends(get_engine)) -> dict:
    return delete_reference_row(
        engine,
        spending_categories,
        category_id,
        "Category",
        [
            (
                spending_categories,
                "parent_id",
                "Cannot delete category with subcategories. Delete subcategories first.",
            ),
            (
                spending,
                "category_id",
                "Cannot delete category that has spending entries. Consider disabling it instead.",
            ),
        ],
    )


@protected.get("/earnings", response_model=list[EntryResponse])
def list_earnings(engine: Engine = Depends(get_engine)) -> list[EntryResponse]:
    return list_entries(engine, EARNINGS)


@protected.post("/earnings", response_model=EntryResponse)
def create_earning(payload: EarningPayload, engine: Engine = Depends(get_engine)) -> EntryResponse:
    return save_entry(engine, EARNINGS, payload, payload.source_id, "Earning source", label="Earning")


@protected.get("/earnings/{earning_id}", response_model=EntryResponse)
def read_earning(earning_id: int, engine: Engine = Depends(get_engine)) -> EntryResponse:
    with engine.begin() as conn:
        return fetch_entry(conn, EARNINGS, earning_id, "Earning")


@protected.put("/earnings/{earning_id}", response_model=EntryResponse)
def update_earning(
    earning_id: int, payload: EarningPayload, engine: Engine = Depends(get_engine)
) -> EntryResponse:
    return save_entry(
        engine, EARNINGS, payload, payload.source_id, "Earning source", earning_id, "Earning"
    )


@protected.delete("/earnings/{earning_id}")
def delete_earning(earning_id: int, engine: Engine = Depends(get_engine)) -> dict:
    return delete_entry(engine, EARNINGS, earning_id, "Earning")


@protected.get("/spending", response_model=list[EntryResponse])
def list_spending(engine: Engine = Depends(get_engine)) -> list[EntryResponse]:
    return list_entries(engine, SPENDING)


@protected.post("/spending", response_model=EntryResponse)
def create_spending(payload: SpendingPayload, engine: Engine = Depends(get_engine)) -> EntryResponse:
    return save_entry(engine, SPENDING, payload, payload.category_id, "Category", label="Spending")


@protected.get("/spending/{spending_id}", response_model=EntryResponse)
def read_spending(spending_id: int, engine: Engine = Depends(get_engine)) -> EntryResponse:
    with engine.begin() as conn:
        return fetch_entry(conn, SPENDING, spending_id, "Spending")


@protected.put("/spending/{spending_id}", response_model=EntryResponse)
def update_spending(
    spending_id: int, payload: SpendingPayload, engine: Engine = Depends(get_engine)
) -> EntryResponse:
    return save_entry(
        engine, SPENDING, payload, payload.category_id, "Category", spending_id, "Spending"
    )


@protected.delete("/spending/{spending_id}")
def delete_spending(spending_id: int, engine: Engine = Depends(get_engine)) -> dict:
    return delete_entry(engine, SPENDING, spending_id, "Spending")


@protected.get("/balances/{year}/{month}", response_model=BalanceMonthResponse)
def read_month_balances(
    year: int, month: int, engine: Engine = Depends(get_engine)
) -> BalanceMonthResponse:
    try:
        with engine.begin() as conn:
            rows = balance_month_form(conn, year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BalanceMonthResponse(
        year=year, month=month, accounts=[BalanceRow(**vars(row)) for row in rows]
    )


@protected.put("/balances/{year}/{month}", response_model=BalanceMonthResponse)
def save_month_balances(
    year: int, month: int, payload: BalanceSavePayload, engine: Engine = Depends(get_engine)
) -> BalanceMonthResponse:
    try:
        validate_period(year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if any(amount < 0 for amount in payload.balances.values()):
        raise HTTPException(status_code=400, detail="Balances cannot be negative.")

    with engine.begin() as conn:
        active_ids = conn.execute(
            select(accounts.c.id).where(accounts.c.is_active.is_(True))
        ).scalars().all()
        # Active accounts left out of the payload are recorded as 0.
        for account_id in active_ids:
            stmt = upsert_statement(conn, monthly_balances).values(
                year=year,
                month=month,
                account_id=account_id,
                amount=payload.balances.get(account_id, Decimal("0")),
            )
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=[
                        monthly_balances.c.year,
                        monthly_balances.c.month,
                        monthly_balances.c.account_id,
                    ],
                    set_={"amount": stmt.excluded.amount},
                )
            )
        rows = balance_month_form(conn, year, month)
    return BalanceMonthResponse(
        year=year, month=month, accounts=[BalanceRow(**vars(row)) for row in rows]
    )


@protected.get("/reports/dashboard", response_model=DashboardResponse)
def dashboard(
    engine: Engine = Depends(get_engine), rate_cache: RateCache = Depends(get_rate_cache)
) -> DashboardResponse:
    rates = rate_cache.get_rates()
    with engine.begin() as conn:
        display_currency = get_display_currency(conn)
        summary = dashboard_summary(conn, display_currency, rates, date.today())
    latest = summary.latest_balance_period
    return DashboardResponse(
        display_currency=summary.display_currency,
        net_worth=summary.net_worth,
        latest_balance_year=latest[0] if latest else None,
        latest_balance_month=latest[1] if latest else None,
        monthly_change=summary.monthly_change,
        month_earnings=summary.month_earnings,
        month_spending=summary.month_spending,
        month_net_income=summary.month_net_income,
        ytd_earnings=summary.ytd_earnings,
        ytd_spending=summary.ytd_spending,
        recent_earnings=[RecentEntryResponse(**vars(entry)) for entry in summary.recent_earnings],
        recent_spending=[RecentEntryResponse(**vars(entry)) for entry in summary.recent_spending],
        unconverted_currencies=summary.unconverted_currencies,
    )


@protected.get("/reports/balances", response_model=YearlyReportResponse)
def balances_report(
    engine: Engine = Depends(get_engine), rate_cache: RateCache = Depends(get_rate_cache)
) -> YearlyReportResponse:
    rates = rate_cache.get_rates()
    with engine.begin() as conn:
        report = balance_year_groups(conn, get_display_currency(conn), rates)
    return to_yearly_response(report)


@protected.get("/reports/earnings", response_model=YearlyReportResponse)
def earnings_report(
    engine: Engine = Depends(get_engine), rate_cache: RateCache = Depends(get_rate_cache)
) -> YearlyReportResponse:
    rates = rate_cache.get_rates()
    with engine.begin() as conn:
        report = earnings_year_groups(conn, get_display_currency(conn), rates)
    return to_yearly_response(report)


@protected.get("/reports/spending", response_model=YearlyReportResponse)
def spending_report(
    engine: Engine = Depends(get_engine), rate_cache: RateCache = Depends(get_rate_cache)
) -> YearlyReportResponse:
    rates = rate_cache.get_rates()
    with engine.begin() as conn:
        report = spending_year_groups(conn, get_display_currency(conn), rates)
    return to_yearly_response(report)


def month_report(
    ledger: Ledger, year: int, month: int, engine: Engine, rate_cache: RateCache
) -> MonthDetailResponse:
    rates = rate_cache.get_rates()
    try:
        with engine.begin() as conn:
            detail = month_detail(conn, ledger, year, month, get_display_currency(conn), rates)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_month_detail_response(detail)


@protected.get("/reports/earnings/{year}/{month}", response_model=MonthDetailResponse)
def earnings_month_report(
    year: int,
    month: int,
    engine: Engine = Depends(get_engine),
    rate_cache: RateCache = Depends(get_rate_cache),
) -> MonthDetailResponse:
    return month_report(EARNINGS, year, month, engine, rate_cache)


@protected.get("/reports/spending/{year}/{month}", response_model=MonthDetailResponse)
def spending_month_report(
    year: int,
    month: int,
    engine: Engine = Depends(get_engine),
    rate_cache: RateCache = Depends(get_rate_cache),
) -> MonthDetailResponse:
    return month_report(SPENDING, year, month, engine, rate_cache)


app.include_router(protected)
