"""PriceResolver: undiscounted price of one cart selection.

``resolve`` is a pure function of a catalog snapshot and the buyer's
selection. It never reads the cart or the database.
"""

from dataclasses import dataclass

from storefront.catalog.port import ProductSnapshot, VariantSnapshot
from storefront.shared.currency import minimum_price_cents, normalize_currency
from storefront.shared.errors import BelowMinimumPrice, CatalogMismatch

REFRESH_MESSAGE = "Refresh the page for the updated options."


@dataclass(frozen=True)
class LineSelection:
    product_id: str
    variant_id: str | None = None
    recurrence: str | None = None
    quantity: int = 1
    pwyw_price_cents: int | None = None
    is_rental: bool = False


@dataclass(frozen=True)
class LinePrice:
    product_id: str
    seller_id: str
    currency: str
    unit_cents: int
    quantity: int
    is_recurring: bool = False

    @property
    def total_cents(self) -> int:
        return self.unit_cents * self.quantity


def select_variant(product: ProductSnapshot, variant_id: str | None) -> VariantSnapshot | None:
    """Return the chosen variant, enforcing that it exists and is on sale."""
    if not product.variants:
        if variant_id:
            raise CatalogMismatch(
                f"The selected version of {product.name or product.id} no longer exists. {REFRESH_MESSAGE}",
                code="variant_not_found",
                product_id=product.id,
                variant_id=variant_id,
            )
        return None

    if not variant_id:
        raise CatalogMismatch(
            f"Please select a version of {product.name or product.id}.",
            code="missing_variant",
            product_id=product.id,
        )

    chosen = product.variants.get(str(variant_id))
    if chosen is None:
        raise CatalogMismatch(
            f"The selected version of {product.name or product.id} no longer exists. {REFRESH_MESSAGE}",
            code="variant_not_found",
            product_id=product.id,
            variant_id=variant_id,
        )
    if not chosen.available:
        raise CatalogMismatch(
            f"{chosen.name or chosen.id} is sold out.",
            code="sold_out",
            product_id=product.id,
            variant_id=variant_id,
        )
    return chosen


def ensure_available(product: ProductSnapshot | None, product_id: str) -> ProductSnapshot:
    if product is None:
        raise CatalogMismatch(
            f"This product is no longer available. {REFRESH_MESSAGE}",
            code="product_not_found",
            product_id=product_id,
        )
    if not product.available:
        raise CatalogMismatch(
            f"{product.name or product.id} is sold out.",
            code="sold_out",
            product_id=product.id,
        )
    return product


def _recurring_unit_price(product, chosen, selection) -> int:
    prices = chosen.recurrence_prices if chosen is not None and chosen.recurrence_prices else product.recurrence_prices
    if not selection.recurrence or selection.recurrence not in prices:
        raise CatalogMismatch(
            f"The selected billing period is not offered for {product.name or product.id}. {REFRESH_MESSAGE}",
            code="recurrence_not_found",
            product_id=product.id,
            recurrence=selection.recurrence,
        )
    return prices[selection.recurrence]


def resolve(product: ProductSnapshot | None, selection: LineSelection) -> LinePrice:
    """Compute the undiscounted price of ``selection`` in the product's currency."""
    product = ensure_available(product, selection.product_id)
    chosen = select_variant(product, selection.variant_id)

    if selection.is_rental and not product.is_rentable:
        raise CatalogMismatch(
            f"{product.name or product.id} cannot be rented.",
            code="not_for_rent",
            product_id=product.id,
        )
    if not selection.is_rental and product.rent_only:
        raise CatalogMismatch(
            f"{product.name or product.id} can only be rented.",
            code="only_for_rent",
            product_id=product.id,
        )

    quantity = selection.quantity
    if product.is_recurring:
        unit_cents = _recurring_unit_price(product, chosen, selection)
        quantity = 1
    elif selection.recurrence:
        raise CatalogMismatch(
            f"{product.name or product.id} is not a membership. {REFRESH_MESSAGE}",
            code="recurrence_not_found",
            product_id=product.id,
            recurrence=selection.recurrence,
        )
    else:
        base = product.rental_price_cents if selection.is_rental else product.price_cents
        unit_cents = base + (chosen.price_difference_cents if chosen is not None else 0)

    if product.is_bundle:
        quantity = 1

    currency = normalize_currency(product.currency)
    if product.customizable_price and selection.pwyw_price_cents is not None:
        unit_cents = _pay_what_you_want(product, selection.pwyw_price_cents, unit_cents, currency)

    return LinePrice(
        product_id=product.id,
        seller_id=product.seller_id,
        currency=currency,
        unit_cents=unit_cents,
        quantity=quantity,
        is_recurring=product.is_recurring,
    )


def _pay_what_you_want(product, amount_cents, floor_cents, currency) -> int:
    if amount_cents < floor_cents:
        raise BelowMinimumPrice(
            "Please enter an amount greater than or equal to the minimum.",
            product_id=product.id,
            minimum_cents=floor_cents,
        )
    if amount_cents != 0 and amount_cents < minimum_price_cents(currency):
        raise BelowMinimumPrice(
            "Your contribution is too low. Please enter 0 or a higher amount.",
            product_id=product.id,
            minimum_cents=minimum_price_cents(currency),
        )
    return amount_cents
