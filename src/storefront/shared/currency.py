"""Currency table and integer-cent arithmetic helpers.

All amounts handled by the engine are integers in the smallest unit of their
currency. Single-unit currencies (JPY) have no fractional subunit, so their
"cents" are whole yen.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from protean.exceptions import ValidationError


@dataclass(frozen=True)
class Currency:
    code: str
    symbol: str
    min_price_cents: int
    single_unit: bool = False


CURRENCIES = {
    "usd": Currency("usd", "$", 99),
    "eur": Currency("eur", "€", 79),
    "gbp": Currency("gbp", "£", 59),
    "cad": Currency("cad", "$", 99),
    "aud": Currency("aud", "$", 99),
    "chf": Currency("chf", "CHF", 99),
    "inr": Currency("inr", "₹", 5900),
    "jpy": Currency("jpy", "¥", 80, single_unit=True),
}

DEFAULT_CURRENCY = "usd"


def normalize_currency(code: str | None) -> str:
    return (code or DEFAULT_CURRENCY).strip().lower()


def get_currency(code: str) -> Currency:
    """Look up a supported currency, raising ValidationError when unknown."""
    currency = CURRENCIES.get(normalize_currency(code))
    if currency is None:
        raise ValidationError({"currency": [f"Unsupported currency: {code}"]})
    return currency


def minimum_price_cents(code: str) -> int:
    return get_currency(code).min_price_cents


def meets_price_floor(price_cents: int, code: str) -> bool:
    """A charged price is valid when it is free or at least the currency minimum."""
    return price_cents == 0 or price_cents >= minimum_price_cents(code)


def round_half_up(value) -> int:
    """Round a Decimal/int/str amount to whole cents, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percentage_of(amount_cents: int, percent) -> int:
    """``percent`` percent of ``amount_cents``, rounded half-up."""
    return round_half_up(Decimal(amount_cents) * Decimal(str(percent)) / Decimal(100))


def format_cents(amount_cents: int, code: str) -> str:
    currency = get_currency(code)
    if currency.single_unit:
        return f"{currency.symbol}{amount_cents}"
    return f"{currency.symbol}{amount_cents // 100}.{amount_cents % 100:02d}"
