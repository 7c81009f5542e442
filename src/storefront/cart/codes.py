"""Discount codes on a cart: commands and handler."""

from datetime import UTC, datetime

from protean import handle
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart
from storefront.cart.pricing import priced_lines, reprice
from storefront.catalog import get_catalog
from storefront.domain import storefront
from storefront.offers.management import offer_terms_for
from storefront.pricing.discounts import AppliedCode, apply_discounts, normalize_code
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@storefront.command(part_of="Cart")
class ApplyDiscountCode:
    cart_id = Identifier(required=True)
    code = String(required=True, max_length=100)
    from_url = Boolean(default=False)  # Arrived through a ?code= link


@storefront.command(part_of="Cart")
class RemoveDiscountCode:
    cart_id = Identifier(required=True)
    code = String(required=True, max_length=100)


@storefront.command_handler(part_of=Cart)
class ManageDiscountCodesHandler:
    @handle(ApplyDiscountCode)
    def apply_discount_code(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        catalog = get_catalog()
        code = normalize_code(command.code)
        from_url = bool(command.from_url)

        cart.apply_code(code, from_url=from_url)

        # A code typed by the buyer must work on this cart right now
        lines, _ = priced_lines(cart.alive_lines, catalog, skip_unavailable=True)
        apply_discounts(
            lines,
            [AppliedCode(code=code, from_url=from_url)],
            offer_terms_for([code]),
            datetime.now(UTC),
            strict_thresholds=not from_url,
            require_match=not from_url,
        )

        reprice(cart, catalog)
        repo.add(cart)
        logger.info("discount_code_applied", cart_id=str(cart.id), code=code, from_url=from_url)

    @handle(RemoveDiscountCode)
    def remove_discount_code(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        cart.remove_code(command.code)
        reprice(cart)
        repo.add(cart)
