"""Cart line management: commands and handler.

Every handler follows the same shape: load the cart, apply the change, reprice,
save. Any pricing failure propagates before ``repo.add`` so the stored cart is
left as it was.
"""

import json

from protean import handle
from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart
from storefront.cart.pricing import reprice
from storefront.catalog import get_catalog
from storefront.domain import storefront
from storefront.pricing.bundles import expand, fingerprint
from storefront.pricing.resolver import LineSelection, resolve
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@storefront.command(part_of="Cart")
class AddCartLine:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    recurrence = String(max_length=50)
    quantity = Integer(default=1, min_value=1)
    pwyw_price_cents = Integer(min_value=0)
    is_rental = Boolean(default=False)
    referrer = String(max_length=255)


@storefront.command(part_of="Cart")
class UpdateCartLine:
    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    quantity = Integer(min_value=1)
    pwyw_price_cents = Integer(min_value=0)
    is_rental = Boolean()


@storefront.command(part_of="Cart")
class RemoveCartLine:
    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)


@storefront.command(part_of="Cart")
class ReplaceCartLines:
    """Replace the whole set of alive lines, as the cart page does on save."""

    cart_id = Identifier(required=True)
    lines = Text(required=True)  # JSON: list of {product_id, variant_id, recurrence, quantity, ...}


def line_attributes(catalog, product_id, variant_id=None, recurrence=None, quantity=1, **options):
    """Resolve a requested selection and return the keyword arguments for ``Cart.add_line``.

    Resolution is strict: a selection that cannot be priced is rejected here,
    before the cart is touched.
    """
    product = catalog.get(str(product_id))
    selection = LineSelection(
        product_id=str(product_id),
        variant_id=str(variant_id) if variant_id else None,
        recurrence=recurrence,
        quantity=quantity,
        pwyw_price_cents=options.get("pwyw_price_cents"),
        is_rental=bool(options.get("is_rental")),
    )
    price = resolve(product, selection)

    bundle_fingerprint = None
    if product.is_bundle:
        expand(price.total_cents, product, catalog)
        bundle_fingerprint = fingerprint(product.bundle_items)

    return {
        "product_id": str(product_id),
        "seller_id": price.seller_id,
        "currency": price.currency,
        "quantity": price.quantity,
        "variant_id": selection.variant_id,
        "recurrence": recurrence,
        "pwyw_price_cents": selection.pwyw_price_cents,
        "is_rental": selection.is_rental,
        "referrer": options.get("referrer"),
        "bundle_fingerprint": bundle_fingerprint,
    }


@storefront.command_handler(part_of=Cart)
class ManageCartLinesHandler:
    @handle(AddCartLine)
    def add_cart_line(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        catalog = get_catalog()

        line = cart.add_line(
            **line_attributes(
                catalog,
                command.product_id,
                variant_id=command.variant_id,
                recurrence=command.recurrence,
                quantity=command.quantity or 1,
                pwyw_price_cents=command.pwyw_price_cents,
                is_rental=command.is_rental,
                referrer=command.referrer,
            )
        )
        reprice(cart, catalog)
        repo.add(cart)

        logger.info("cart_line_added", cart_id=str(cart.id), product_id=str(command.product_id))
        return str(line.id)

    @handle(UpdateCartLine)
    def update_cart_line(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        catalog = get_catalog()

        line = cart.update_line(
            line_id=command.line_id,
            quantity=command.quantity,
            pwyw_price_cents=command.pwyw_price_cents,
            is_rental=command.is_rental,
        )
        resolve(catalog.get(str(line.product_id)), line.selection())
        reprice(cart, catalog)
        repo.add(cart)

    @handle(RemoveCartLine)
    def remove_cart_line(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        cart.remove_line(line_id=command.line_id)
        reprice(cart)
        repo.add(cart)

    @handle(ReplaceCartLines)
    def replace_cart_lines(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        catalog = get_catalog()

        requested = json.loads(command.lines) if isinstance(command.lines, str) else command.lines
        cart.replace_lines([line_attributes(catalog, **selection) for selection in requested])
        reprice(cart, catalog)
        repo.add(cart)
