"""Cart repricing: run the pricing functions over a cart's alive lines."""

from datetime import UTC, datetime

from storefront.catalog import get_catalog
from storefront.offers.management import offer_terms_for
from storefront.pricing.discounts import PricedLine, apply_discounts
from storefront.pricing.resolver import resolve
from storefront.shared.errors import BelowMinimumPrice, CatalogMismatch
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def priced_lines(lines, catalog, skip_unavailable=False):
    """Resolve ``lines`` against ``catalog``.

    Returns the PricedLines and the ids of lines that could not be resolved,
    including pay-what-you-want lines whose amount fell below a raised floor.
    Such lines raise unless ``skip_unavailable`` is set.
    """
    priced, unavailable = [], []
    for line in lines:
        try:
            price = resolve(catalog.get(str(line.product_id)), line.selection())
        except (CatalogMismatch, BelowMinimumPrice) as exc:
            if not skip_unavailable:
                raise
            logger.info("cart_line_unavailable", line_id=str(line.id), reason=exc.code)
            unavailable.append(str(line.id))
            continue

        priced.append(
            PricedLine(
                key=str(line.id),
                product_id=price.product_id,
                seller_id=price.seller_id,
                currency=price.currency,
                unit_cents=price.unit_cents,
                quantity=price.quantity,
                is_recurring=price.is_recurring,
            )
        )
    return priced, unavailable


def reprice(cart, catalog=None, offers=None, now=None):
    """Recompute and store the displayed prices of ``cart``.

    Codes that no longer meet their thresholds are detached. Lines whose
    product can no longer be resolved are flagged unavailable and left out of
    the totals. Raises when a discount would break the price floor; the
    caller must then discard the cart instead of saving it.
    """
    catalog = catalog or get_catalog()
    now = now or datetime.now(UTC)
    codes = cart.applied_codes
    if offers is None:
        offers = offer_terms_for([c.code for c in codes])

    lines, unavailable = priced_lines(cart.alive_lines, catalog, skip_unavailable=True)
    outcome = apply_discounts(lines, codes, offers, now, strict_thresholds=False)

    if outcome.unmet_codes:
        logger.info("discount_codes_detached", cart_id=str(cart.id), codes=list(outcome.unmet_codes))
        cart.detach_codes(outcome.unmet_codes)

    cart.record_pricing(outcome, unavailable_line_ids=unavailable)
    return outcome
