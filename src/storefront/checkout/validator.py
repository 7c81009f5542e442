"""CheckoutValidator: re-derive every price from live data before charging.

Prices stored on the cart are what the buyer was shown, nothing more. The
validator resolves each line again against the catalog, re-applies the
attached codes strictly and refuses to go on when the result differs from
what was displayed.
"""

from collections import defaultdict
from dataclasses import dataclass

from storefront.cart.pricing import priced_lines
from storefront.pricing.bundles import ConstituentLine, check_fingerprint, expand
from storefront.pricing.discounts import DiscountOutcome, apply_discounts
from storefront.shared.errors import CartNotAlive, CatalogMismatch, PriceChanged

PRICE_CHANGED_MESSAGE = "The price just changed! Refresh the page for the updated price."


@dataclass(frozen=True)
class ValidatedLine:
    line_id: str
    product_id: str
    seller_id: str
    variant_id: str | None
    recurrence: str | None
    quantity: int
    is_rental: bool
    referrer: str | None
    currency: str
    unit_cents: int
    discount_cents: int
    price_cents: int
    codes: tuple[str, ...] = ()
    duration_in_billing_cycles: int | None = None
    constituents: tuple[ConstituentLine, ...] = ()

    @property
    def base_price_cents(self) -> int:
        return self.unit_cents * self.quantity

    @property
    def discount_total_cents(self) -> int:
        return self.discount_cents * self.quantity


@dataclass(frozen=True)
class ValidatedCheckout:
    cart_id: str
    buyer_id: str | None
    email: str | None
    lines: tuple[ValidatedLine, ...]
    outcome: DiscountOutcome

    def totals_by_currency(self) -> dict[str, int]:
        return self.outcome.totals_by_currency()

    def by_seller(self) -> dict[str, list[ValidatedLine]]:
        """Lines grouped per seller, in the order the sellers appear in the cart."""
        groups: dict[str, list[ValidatedLine]] = {}
        for line in self.lines:
            groups.setdefault(line.seller_id, []).append(line)
        return groups


def _check_single_currency_per_seller(lines) -> None:
    currencies = defaultdict(set)
    for line in lines:
        currencies[line.seller_id].add(line.currency)
    for seller_id, seen in currencies.items():
        if len(seen) > 1:
            raise CatalogMismatch(
                "Products from the same creator must be bought in a single currency.",
                code="mixed_currency",
                seller_id=seller_id,
            )


def validate(cart, catalog, offers, now, expected_totals=None) -> ValidatedCheckout:
    """Validate ``cart`` against live state.

    ``expected_totals`` optionally carries the per-currency totals the client
    displayed at submission time. Raises a StorefrontError on any drift.
    """
    cart_lines = cart.alive_lines
    if not cart_lines:
        raise CartNotAlive("Your cart is empty.", code="empty_cart", cart_id=str(cart.id))

    products = {str(line.id): catalog.get(str(line.product_id)) for line in cart_lines}
    for line in cart_lines:
        product = products[str(line.id)]
        if product is not None and product.is_bundle:
            check_fingerprint(product, line.bundle_fingerprint)

    lines, _ = priced_lines(cart_lines, catalog)
    _check_single_currency_per_seller(lines)
    outcome = apply_discounts(lines, cart.applied_codes, offers, now, strict_thresholds=True)

    validated = []
    for line in cart_lines:
        discounted = outcome.line(str(line.id))
        if discounted.final_total_cents != line.displayed_price_cents:
            raise PriceChanged(
                PRICE_CHANGED_MESSAGE,
                line_id=str(line.id),
                displayed_cents=line.displayed_price_cents,
                current_cents=discounted.final_total_cents,
            )

        product = products[str(line.id)]
        constituents = ()
        if product.is_bundle:
            constituents = expand(discounted.final_total_cents, product, catalog)

        validated.append(
            ValidatedLine(
                line_id=str(line.id),
                product_id=str(line.product_id),
                seller_id=str(product.seller_id),
                variant_id=str(line.variant_id) if line.variant_id else None,
                recurrence=line.recurrence,
                quantity=discounted.quantity,
                is_rental=bool(line.is_rental),
                referrer=line.referrer,
                currency=discounted.currency,
                unit_cents=discounted.unit_cents,
                discount_cents=discounted.discount_cents,
                price_cents=discounted.final_total_cents,
                codes=discounted.codes,
                duration_in_billing_cycles=discounted.duration_in_billing_cycles,
                constituents=constituents,
            )
        )

    if expected_totals is not None:
        expected = {currency.lower(): cents for currency, cents in expected_totals.items()}
        if expected != outcome.totals_by_currency():
            raise PriceChanged(
                PRICE_CHANGED_MESSAGE,
                displayed_totals=expected,
                current_totals=outcome.totals_by_currency(),
            )

    return ValidatedCheckout(
        cart_id=str(cart.id),
        buyer_id=str(cart.owner_id) if cart.owner_id else None,
        email=cart.email,
        lines=tuple(validated),
        outcome=outcome,
    )
