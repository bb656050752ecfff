from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Mapping

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    true,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

from money_tracker.currency_conversion import BASE_CURRENCY, CURRENCIES
from money_tracker.rate_cache import ExchangeRate

DISPLAY_CURRENCY_KEY = "displayCurrency"
DEFAULT_DISPLAY_CURRENCY = BASE_CURRENCY

metadata = MetaData()


def _reference_columns() -> list[Column]:
    return [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False),
        Column("slug", String(255), nullable=False, unique=True),
        Column("color", String(20)),
        Column("icon", String(50)),
        Column("is_active", Boolean, nullable=False, server_default=true()),
        Column("display_order", Integer, nullable=False, server_default="0"),
        Column("created_at", DateTime, nullable=False, server_default=func.now()),
    ]


earning_sources = Table("earning_sources", metadata, *_reference_columns())

accounts = Table(
    "accounts",
    metadata,
    *_reference_columns(),
    Column("type", String(20), nullable=False, server_default="bank"),
    Column("currency", String(3), nullable=False, server_default=BASE_CURRENCY),
)

spending_categories = Table(
    "spending_categories",
    metadata,
    *_reference_columns(),
    Column("parent_id", Integer, ForeignKey("spending_categories.id")),
)

earnings = Table(
    "earnings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_id", Integer, ForeignKey("earning_sources.id"), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default=BASE_CURRENCY),
    Column("date", Date, nullable=False),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

spending = Table(
    "spending",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("category_id", Integer, ForeignKey("spending_categories.id"), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default=BASE_CURRENCY),
    Column("date", Date, nullable=False),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

monthly_balances = Table(
    "monthly_balances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("year", Integer, nullable=False),
    Column("month", Integer, nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("year", "month", "account_id", name="uq_monthly_balances_period_account"),
)

exchange_rates = Table(
    "exchange_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("currency", String(3), nullable=False, unique=True),
    Column("rate", Numeric(18, 8), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

settings = Table(
    "settings",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("value", String(255), nullable=False),
)


def create_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url)

    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)


def upsert_statement(conn: Connection, table: Table):
    if conn.dialect.name == "postgresql":
        return pg_insert(table)
    if conn.dialect.name == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Upserts are not supported on {conn.dialect.name}")


class SqlRateStore:
    """``RateStore`` backed by the ``exchange_rates`` table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self) -> list[ExchangeRate]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(
                    exchange_rates.c.currency,
                    exchange_rates.c.rate,
                    exchange_rates.c.updated_at,
                ).order_by(exchange_rates.c.currency.asc())
            ).mappings().all()
        return [
            ExchangeRate(
                currency=row["currency"],
                rate=Decimal(str(row["rate"])),
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    def upsert(self, rates: Mapping[str, Decimal], updated_at: datetime) -> None:
        if not rates:
            return
        with self.engine.begin() as conn:
            for currency, rate in rates.items():
                stmt = upsert_statement(conn, exchange_rates).values(
                    currency=currency, rate=rate, updated_at=updated_at
                )
                conn.execute(
                    stmt.on_conflict_do_update(
                        index_elements=[exchange_rates.c.currency],
                        set_={"rate": stmt.excluded.rate, "updated_at": stmt.excluded.updated_at},
                    )
                )


def get_display_currency(conn: Connection) -> str:
    value = conn.execute(
        select(settings.c.value).where(settings.c.key == DISPLAY_CURRENCY_KEY)
    ).scalar_one_or_none()
    if value in CURRENCIES:
        return value
    if value is None:
        stmt = upsert_statement(conn, settings).values(
            key=DISPLAY_CURRENCY_KEY, value=DEFAULT_DISPLAY_CURRENCY
        )
        conn.execute(stmt.on_conflict_do_nothing(index_elements=[settings.c.key]))
    return DEFAULT_DISPLAY_CURRENCY


def set_display_currency(conn: Connection, currency: str) -> None:
    if currency not in CURRENCIES:
        raise ValueError(f"Unsupported currency: {currency}")
    stmt = upsert_statement(conn, settings).values(key=DISPLAY_CURRENCY_KEY, value=currency)
    conn.execute(
        stmt.on_conflict_do_update(
            index_elements=[settings.c.key],
            set_={"value": stmt.excluded.value},
        )
    )
