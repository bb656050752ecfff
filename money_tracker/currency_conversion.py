from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import json
import logging
from typing import Iterable, Mapping, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from money_tracker.config import RATE_API_TIMEOUT, RATE_API_URL

logger = logging.getLogger(__name__)

BASE_CURRENCY = "EUR"
CURRENCIES: tuple[str, ...] = ("EUR", "USD", "GBP")
DEFAULT_RATE = Decimal("1")
ZERO = Decimal("0")


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 EUR.
    """

    rates: Mapping[str, Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "rates",
            {normalize_currency(code): _coerce_amount(rate) for code, rate in (self.rates or {}).items()},
        )

    def fetch_rates(self, base_currency: str, targets: Sequence[str]) -> dict[str, Decimal]:
        if normalize_currency(base_currency) != BASE_CURRENCY:
            raise RateProviderUnavailable(f"Static rates are anchored on {BASE_CURRENCY}")
        return {code: self.rates[code] for code in targets if code in self.rates}


@dataclass(frozen=True)
class FrankfurterRateProvider:
    """Latest rates from the Frankfurter API, fetched in one batched call."""

    base_url: str = RATE_API_URL
    timeout: float = RATE_API_TIMEOUT

    def fetch_rates(self, base_currency: str, targets: Sequence[str]) -> dict[str, Decimal]:
        query = urlencode({"from": normalize_currency(base_currency), "to": ",".join(targets)}, safe=",")
        url = f"{self.base_url.rstrip('/')}/latest?{query}"
        try:
            with urlopen(url, timeout=self.timeout) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, OSError, json.JSONDecodeError) as exc:
            raise RateProviderUnavailable(f"Frankfurter API unavailable: {exc}") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Frankfurter response missing rates")

        try:
            return {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}
        except (ValueError, ArithmeticError) as exc:
            raise RateProviderUnavailable("Frankfurter response has malformed rates") from exc


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    rates: Mapping[str, Decimal],
) -> Decimal:
    """Convert an amount through the base currency.

    A currency missing from ``rates`` is treated as rate 1, i.e. as if it were
    the base currency. The fallback is logged so a stale or partial rate table
    is visible in the logs.
    """
    coerced_amount = _coerce_amount(amount)
    if source_currency == target_currency:
        return coerced_amount

    source_rate = _lookup_rate(rates, source_currency)
    target_rate = _lookup_rate(rates, target_currency)
    amount_in_base = coerced_amount / source_rate
    return amount_in_base * target_rate


def sum_in_currency(
    items: Iterable[tuple[Decimal | int | float | str, str]],
    target_currency: str,
    rates: Mapping[str, Decimal],
) -> Decimal:
    total = ZERO
    for amount, currency in items:
        total += convert_amount(amount, currency, target_currency, rates)
    return total


def unknown_currencies(currencies: Iterable[str], rates: Mapping[str, Decimal]) -> list[str]:
    return sorted({code for code in currencies if code not in rates})


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def validate_supported_currency(value: str) -> str:
    normalized = normalize_currency(value)
    if normalized not in CURRENCIES:
        raise ValueError(f"Unsupported currency: {normalized}")
    return normalized


def _lookup_rate(rates: Mapping[str, Decimal], currency: str) -> Decimal:
    rate = rates.get(currency)
    if not rate:
        logger.warning("No exchange rate for %s, treating it as %s", currency, BASE_CURRENCY)
        return DEFAULT_RATE
    return _coerce_amount(rate)


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
