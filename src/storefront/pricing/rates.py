"""Exchange rates for buyer-facing price estimates.

Rates are only used to show a cart in the buyer's preferred currency. Charges
always happen in the product's own currency, so a stale table costs display
accuracy and nothing else.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import MappingProxyType

from protean.exceptions import ValidationError

from storefront.shared.currency import get_currency, normalize_currency, round_half_up
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

RATE_REFRESH_INTERVAL_SECONDS = 3600

# Units of each currency per 1 USD
DEFAULT_RATES = {
    "usd": "1",
    "eur": "0.92",
    "gbp": "0.79",
    "cad": "1.36",
    "aud": "1.52",
    "chf": "0.88",
    "inr": "83.2",
    "jpy": "151.3",
}


@dataclass(frozen=True)
class RateTable:
    rates: MappingProxyType
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_mapping(cls, rates, fetched_at=None):
        table = MappingProxyType({normalize_currency(code): Decimal(str(rate)) for code, rate in rates.items()})
        return cls(rates=table, fetched_at=fetched_at or datetime.now(UTC))

    def rate(self, currency: str) -> Decimal:
        rate = self.rates.get(normalize_currency(currency))
        if rate is None:
            raise ValidationError({"currency": [f"No exchange rate for {currency}"]})
        return rate


def _to_major(amount_cents: int, currency: str) -> Decimal:
    if get_currency(currency).single_unit:
        return Decimal(amount_cents)
    return Decimal(amount_cents) / 100


def _to_minor(amount: Decimal, currency: str) -> int:
    if get_currency(currency).single_unit:
        return round_half_up(amount)
    return round_half_up(amount * 100)


def convert_for_display(amount_cents: int, from_currency: str, to_currency: str, table: RateTable) -> int:
    """Estimate ``amount_cents`` of ``from_currency`` in ``to_currency``."""
    if normalize_currency(from_currency) == normalize_currency(to_currency):
        return amount_cents
    usd = _to_major(amount_cents, from_currency) / table.rate(from_currency)
    return _to_minor(usd * table.rate(to_currency), to_currency)


class ExchangeRateSource(ABC):
    """Abstract provider of currency → USD rate tables."""

    @abstractmethod
    def fetch(self) -> RateTable: ...


class StaticRateSource(ExchangeRateSource):
    """Fixed rate table; the default outside production and in tests."""

    def __init__(self, rates=None) -> None:
        self.rates = dict(rates or DEFAULT_RATES)
        self.fetch_count = 0

    def fetch(self) -> RateTable:
        self.fetch_count += 1
        return RateTable.from_mapping(self.rates)


class CachedExchangeRates:
    """Process-wide rate snapshot refreshed at most once per interval."""

    def __init__(self, source: ExchangeRateSource, refresh_interval=None, clock=None) -> None:
        self.source = source
        self.refresh_interval = refresh_interval or timedelta(seconds=RATE_REFRESH_INTERVAL_SECONDS)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._table: RateTable | None = None
        self._loaded_at: datetime | None = None

    def refresh(self) -> RateTable:
        with self._lock:
            self._table = self.source.fetch()
            self._loaded_at = self._clock()
        logger.debug("exchange_rates_refreshed", currencies=len(self._table.rates))
        return self._table

    def snapshot(self) -> RateTable:
        """Return the cached table, refreshing it first when it has gone stale."""
        if self._table is None or self._clock() - self._loaded_at >= self.refresh_interval:
            return self.refresh()
        return self._table


_current_rates: CachedExchangeRates | None = None


def get_rates() -> CachedExchangeRates:
    """Return the current rate cache. Defaults to a StaticRateSource."""
    global _current_rates
    if _current_rates is None:
        _current_rates = CachedExchangeRates(StaticRateSource())
    return _current_rates


def set_rates(rates: CachedExchangeRates) -> None:
    global _current_rates
    _current_rates = rates


def reset_rates() -> None:
    global _current_rates
    _current_rates = None
