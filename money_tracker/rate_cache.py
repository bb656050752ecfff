"""Persisted exchange-rate table with refresh-when-stale semantics.

Rates are stored relative to ``BASE_CURRENCY`` ("1 EUR = X currency"). The
base currency itself is never persisted; ``RateCache.read`` always adds it
with rate 1.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import Callable, Mapping, Protocol, Sequence

from money_tracker.config import RATE_STALE_AFTER
from money_tracker.currency_conversion import (
    BASE_CURRENCY,
    CURRENCIES,
    DEFAULT_RATE,
    RateProviderUnavailable,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExchangeRate:
    currency: str
    rate: Decimal
    updated_at: datetime | None


class RateStore(Protocol):
    def get(self) -> list[ExchangeRate]:
        ...

    def upsert(self, rates: Mapping[str, Decimal], updated_at: datetime) -> None:
        ...


class RateProvider(Protocol):
    def fetch_rates(self, base_currency: str, targets: Sequence[str]) -> Mapping[str, Decimal]:
        ...


@dataclass
class InMemoryRateStore:
    rows: dict[str, ExchangeRate] = field(default_factory=dict)

    def get(self) -> list[ExchangeRate]:
        return list(self.rows.values())

    def upsert(self, rates: Mapping[str, Decimal], updated_at: datetime) -> None:
        for currency, rate in rates.items():
            self.rows[currency] = ExchangeRate(currency=currency, rate=rate, updated_at=updated_at)


@dataclass
class RateCache:
    store: RateStore
    provider: RateProvider
    clock: Callable[[], datetime] = utcnow
    stale_after: timedelta = RATE_STALE_AFTER
    currencies: Sequence[str] = CURRENCIES

    def get_rates(self) -> dict[str, Decimal]:
        """Return the rate table, refreshing it first when stale.

        Provider failures never reach the caller: the persisted table is
        served as-is, and the next call retries the refresh.
        """
        if self.is_stale():
            self.refresh()
        return self.read()

    def is_stale(self, rows: Sequence[ExchangeRate] | None = None) -> bool:
        if rows is None:
            rows = self.store.get()
        if not rows:
            return True
        now = self.clock()
        return any(
            row.updated_at is None or now - _as_utc(row.updated_at) > self.stale_after
            for row in rows
        )

    def refresh(self) -> bool:
        targets = [code for code in self.currencies if code != BASE_CURRENCY]
        try:
            fetched = self.provider.fetch_rates(BASE_CURRENCY, targets)
        except RateProviderUnavailable as exc:
            logger.warning("Exchange rate refresh failed, serving stored rates: %s", exc)
            return False

        rates = {code: rate for code, rate in fetched.items() if code != BASE_CURRENCY}
        if not rates:
            logger.warning("Exchange rate provider returned no rates for %s", ", ".join(targets))
            return False
        self.store.upsert(rates, self.clock())
        logger.info(
            "Exchange rates updated: %s",
            ", ".join(f"{code}={rate}" for code, rate in sorted(rates.items())),
        )
        return True

    def read(self) -> dict[str, Decimal]:
        rates = {BASE_CURRENCY: DEFAULT_RATE}
        for row in self.store.get():
            if row.currency in self.currencies and row.currency != BASE_CURRENCY:
                rates[row.currency] = row.rate
        return rates


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
