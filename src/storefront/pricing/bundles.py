"""BundleExpander: turn one bundle line into its constituent lines.

A bundle is billed as a single unit at its own price. Constituent prices are
only an attribution of that price, apportioned by each constituent's
standalone price.
"""

import hashlib
from dataclasses import dataclass

from storefront.catalog.port import BundleItem, ProductSnapshot
from storefront.pricing.resolver import ensure_available, select_variant
from storefront.shared.errors import BundleContentsChanged, CatalogMismatch

CHANGED_MESSAGE = "The bundle's contents have changed. Please refresh the page!"


@dataclass(frozen=True)
class ConstituentLine:
    product_id: str
    seller_id: str
    variant_id: str | None
    quantity: int
    currency: str
    standalone_cents: int
    attributed_cents: int


def fingerprint(bundle_items) -> str:
    """Stable digest of a bundle's (product, variant, quantity) set."""
    parts = sorted(f"{item.product_id}:{item.variant_id or ''}:{item.quantity}" for item in bundle_items)
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def check_fingerprint(bundle: ProductSnapshot, recorded: str | None) -> None:
    """Fail when the bundle's live contents differ from those seen at add-to-cart time."""
    if recorded and recorded != fingerprint(bundle.bundle_items):
        raise BundleContentsChanged(CHANGED_MESSAGE, product_id=bundle.id)


def apportion(total_cents: int, weights) -> list[int]:
    """Split ``total_cents`` by ``weights`` with the largest-remainder method.

    The parts always add up to ``total_cents`` exactly. Zero weights across the
    board split the amount evenly.
    """
    weights = list(weights)
    if not weights:
        return []
    if sum(weights) <= 0:
        weights = [1] * len(weights)
    weight_sum = sum(weights)

    parts = [total_cents * w // weight_sum for w in weights]
    remainders = [(total_cents * w % weight_sum, -index) for index, w in enumerate(weights)]
    leftover = total_cents - sum(parts)
    for _, negative_index in sorted(remainders, reverse=True)[:leftover]:
        parts[-negative_index] += 1
    return parts


def _standalone_cents(product: ProductSnapshot, item: BundleItem) -> int:
    chosen = select_variant(product, item.variant_id)
    unit = product.price_cents + (chosen.price_difference_cents if chosen is not None else 0)
    return unit * item.quantity


def expand(bundle_price_cents: int, bundle: ProductSnapshot, catalog) -> tuple[ConstituentLine, ...]:
    """Expand ``bundle`` against the live ``catalog``.

    Raises CatalogMismatch when a constituent has disappeared or sold out.
    """
    if not bundle.is_bundle:
        raise CatalogMismatch(f"{bundle.name or bundle.id} is not a bundle.", code="not_a_bundle", product_id=bundle.id)

    resolved = []
    for item in bundle.bundle_items:
        product = ensure_available(catalog.get(item.product_id), item.product_id)
        resolved.append((item, product, _standalone_cents(product, item)))

    attributed = apportion(bundle_price_cents, [standalone for _, _, standalone in resolved])
    return tuple(
        ConstituentLine(
            product_id=product.id,
            seller_id=product.seller_id,
            variant_id=item.variant_id,
            quantity=item.quantity,
            currency=bundle.currency,
            standalone_cents=standalone,
            attributed_cents=share,
        )
        for (item, product, standalone), share in zip(resolved, attributed, strict=True)
    )
