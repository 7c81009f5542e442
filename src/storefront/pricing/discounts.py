"""DiscountEngine: apply offer codes to priced cart lines.

``apply_discounts`` is pure: it takes priced lines, the codes attached to the
cart and snapshots of the matching offer codes, and either returns the
discounted lines or raises before producing anything. Nothing is mutated, so
a rejected discount never leaves a line half-updated.

Every code is evaluated against the line's pre-discount unit price. Codes
stack, and the combined discount of a line is capped at its unit price.
"""

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from storefront.shared.currency import format_cents, meets_price_floor, minimum_price_cents, percentage_of
from storefront.shared.errors import DiscountBelowFloor, IneligibleDiscount

CODE_PATTERN = re.compile(r"^[a-z0-9_-]+$")


def normalize_code(code: str) -> str:
    return (code or "").strip().lower()


def is_valid_code(code: str) -> bool:
    return bool(CODE_PATTERN.match(normalize_code(code)))


# ---------------------------------------------------------------------------
# Discount variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class PercentageOff:
    percent: int

    @property
    def is_zero(self) -> bool:
        return self.percent == 0

    def amount_off(self, unit_cents: int) -> int:
        return percentage_of(unit_cents, self.percent)

    def describe(self) -> str:
        return f"{self.percent}% off"


@dataclass(frozen=True)
class FixedOff:
    amount_cents: int
    currency: str

    @property
    def is_zero(self) -> bool:
        return self.amount_cents == 0

    def amount_off(self, unit_cents: int) -> int:
        return min(self.amount_cents, unit_cents)

    def describe(self) -> str:
        return f"{format_cents(self.amount_cents, self.currency)} off"


Discount = PercentageOff | FixedOff


@dataclass(frozen=True)
class OfferTerms:
    """Point-in-time snapshot of an offer code, as read by the engine."""

    code: str
    seller_id: str
    discount: Discount
    universal: bool = True
    product_ids: frozenset = frozenset()
    valid_at: datetime | None = None
    expires_at: datetime | None = None
    max_uses: int | None = None
    uses_count: int = 0
    minimum_quantity: int | None = None
    minimum_amount_cents: int | None = None
    duration_in_billing_cycles: int | None = None
    deleted: bool = False

    @property
    def remaining_uses(self) -> int | None:
        if self.max_uses is None:
            return None
        return max(self.max_uses - self.uses_count, 0)

    def applies_to(self, line) -> bool:
        if str(line.seller_id) != str(self.seller_id):
            return False
        return self.universal or str(line.product_id) in self.product_ids

    def is_active(self, now: datetime, from_url: bool = False) -> bool:
        """Inactive codes stay attached to the cart but discount nothing."""
        if self.deleted:
            return False
        if self.valid_at is not None and now < self.valid_at:
            return False
        if self.expires_at is not None and now > self.expires_at:
            return False
        if self.remaining_uses == 0:
            return False
        if from_url and self.discount.is_zero:
            return False
        return True


# ---------------------------------------------------------------------------
# Inputs and outputs
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AppliedCode:
    code: str
    from_url: bool = False


@dataclass(frozen=True)
class PricedLine:
    key: str
    product_id: str
    seller_id: str
    currency: str
    unit_cents: int
    quantity: int = 1
    is_recurring: bool = False

    @property
    def total_cents(self) -> int:
        return self.unit_cents * self.quantity


@dataclass(frozen=True)
class DiscountedLine:
    key: str
    currency: str
    unit_cents: int
    quantity: int
    discount_cents: int
    codes: tuple[str, ...] = ()
    duration_in_billing_cycles: int | None = None

    @property
    def final_unit_cents(self) -> int:
        return self.unit_cents - self.discount_cents

    @property
    def final_total_cents(self) -> int:
        return self.final_unit_cents * self.quantity

    @property
    def discount_total_cents(self) -> int:
        return self.discount_cents * self.quantity


@dataclass(frozen=True)
class CodeSavings:
    code: str
    seller_id: str
    currency: str
    amount_cents: int


@dataclass(frozen=True)
class DiscountOutcome:
    lines: tuple[DiscountedLine, ...]
    savings: tuple[CodeSavings, ...] = ()
    inactive_codes: tuple[str, ...] = ()
    unmet_codes: tuple[str, ...] = ()

    def line(self, key) -> DiscountedLine:
        return next(line for line in self.lines if line.key == key)

    def totals_by_currency(self) -> dict[str, int]:
        totals: dict[str, int] = defaultdict(int)
        for line in self.lines:
            totals[line.currency] += line.final_total_cents
        return dict(totals)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class _ThresholdUnmet(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.message = message
        self.code = code


def _check_thresholds(terms: OfferTerms, eligible, code: str):
    """Return the qualifying lines of ``eligible`` or raise _ThresholdUnmet."""
    minimum_quantity = terms.minimum_quantity or 1
    qualifying = [line for line in eligible if line.quantity >= minimum_quantity]
    if not qualifying:
        raise _ThresholdUnmet(
            f"Sorry, the discount code {code} requires a minimum quantity of {minimum_quantity}.",
            "unmet_minimum_quantity",
        )

    if terms.minimum_amount_cents and sum(line.total_cents for line in eligible) < terms.minimum_amount_cents:
        raise _ThresholdUnmet(
            "Sorry, you have not met the offer code's minimum amount.",
            "unmet_minimum_amount",
        )

    remaining = terms.remaining_uses
    if remaining is not None and sum(line.quantity for line in qualifying) > remaining:
        raise _ThresholdUnmet(
            f"Sorry, the discount code {code} can only be used {remaining} more time(s).",
            "exceeding_quantity",
        )
    return qualifying


def _check_currency(terms: OfferTerms, eligible, code: str) -> None:
    if not isinstance(terms.discount, FixedOff):
        return
    mismatched = sorted({line.currency for line in eligible if line.currency != terms.discount.currency})
    if mismatched:
        raise IneligibleDiscount(
            f"The discount code {code} is in {terms.discount.currency.upper()} "
            f"and cannot be applied to products priced in {', '.join(c.upper() for c in mismatched)}.",
            code="currency_mismatch",
            discount_code=code,
        )


def apply_discounts(
    lines,
    applied_codes,
    offers,
    now: datetime,
    strict_thresholds: bool = True,
    require_match: bool = False,
) -> DiscountOutcome:
    """Apply ``applied_codes`` to ``lines``.

    ``offers`` are OfferTerms snapshots; one code string may match offers of
    several sellers, each discounting its own seller's lines. With
    ``strict_thresholds`` off, codes that are unknown or whose thresholds are
    no longer met are reported in ``unmet_codes`` instead of raising.
    A known code that targets none of the lines is ignored unless
    ``require_match`` is set.
    """
    lines = list(lines)
    offers_by_code: dict[str, list[OfferTerms]] = defaultdict(list)
    for terms in offers:
        offers_by_code[normalize_code(terms.code)].append(terms)

    per_line: dict[str, list[tuple[str, int, OfferTerms]]] = defaultdict(list)
    inactive: list[str] = []
    unmet: list[str] = []

    for applied in applied_codes:
        code = normalize_code(applied.code)
        if not offers_by_code.get(code):
            if strict_thresholds:
                raise IneligibleDiscount(
                    "Sorry, the discount code you wish to use is invalid.",
                    code="invalid",
                    discount_code=code,
                )
            unmet.append(code)
            continue

        matches = [(terms, [line for line in lines if terms.applies_to(line)]) for terms in offers_by_code[code]]
        matches = [(terms, eligible) for terms, eligible in matches if eligible]

        if not matches:
            if require_match:
                raise IneligibleDiscount(
                    f"Sorry, the discount code {code} is not valid for the products in your cart.",
                    code="not_applicable",
                    discount_code=code,
                )
            continue

        active = [(terms, eligible) for terms, eligible in matches if terms.is_active(now, applied.from_url)]
        if not active:
            if require_match and not applied.from_url:
                raise IneligibleDiscount(
                    "Sorry, the discount code you wish to use is inactive.",
                    code="inactive",
                    discount_code=code,
                )
            inactive.append(code)
            continue

        try:
            qualified = []
            for terms, eligible in active:
                _check_currency(terms, eligible, code)
                qualified.append((terms, _check_thresholds(terms, eligible, code)))
        except _ThresholdUnmet as unmet_threshold:
            if strict_thresholds:
                raise IneligibleDiscount(
                    unmet_threshold.message,
                    code=unmet_threshold.code,
                    discount_code=code,
                ) from None
            unmet.append(code)
            continue

        for terms, qualifying in qualified:
            for line in qualifying:
                per_line[line.key].append((code, terms.discount.amount_off(line.unit_cents), terms))

    discounted, savings = _combine(lines, per_line)
    return DiscountOutcome(
        lines=tuple(discounted),
        savings=tuple(savings),
        inactive_codes=tuple(inactive),
        unmet_codes=tuple(unmet),
    )


def _combine(lines, per_line):
    savings: dict[tuple[str, str, str], int] = defaultdict(int)
    discounted = []

    for line in lines:
        headroom = line.unit_cents
        applied_codes = []
        duration = None
        for code, amount, terms in per_line.get(line.key, []):
            amount = min(amount, headroom)
            headroom -= amount
            applied_codes.append(code)
            savings[(code, terms.seller_id, line.currency)] += amount * line.quantity
            if terms.duration_in_billing_cycles is not None:
                duration = terms.duration_in_billing_cycles

        result = DiscountedLine(
            key=line.key,
            currency=line.currency,
            unit_cents=line.unit_cents,
            quantity=line.quantity,
            discount_cents=line.unit_cents - headroom,
            codes=tuple(applied_codes),
            duration_in_billing_cycles=duration,
        )
        _check_floor(line, result)
        discounted.append(result)

    return discounted, [
        CodeSavings(code=code, seller_id=seller_id, currency=currency, amount_cents=amount)
        for (code, seller_id, currency), amount in savings.items()
        if amount
    ]


def _check_floor(line: PricedLine, result: DiscountedLine) -> None:
    if not result.discount_cents:
        return
    if not meets_price_floor(result.final_unit_cents, line.currency):
        floor = format_cents(minimum_price_cents(line.currency), line.currency)
        raise DiscountBelowFloor(
            f"The price after discount for all of your products must be either "
            f"{format_cents(0, line.currency)} or at least {floor}.",
            discount_codes=list(result.codes),
            product_id=line.product_id,
        )
    if line.is_recurring and result.final_unit_cents == 0 and result.duration_in_billing_cycles is not None:
        raise IneligibleDiscount(
            "A discount code with a limited duration cannot make a membership free.",
            code="free_limited_membership",
            discount_codes=list(result.codes),
            product_id=line.product_id,
        )
