"""Domain events for the Cart aggregate."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Cart")
class CartCreated:
    __version__ = 1

    cart_id = Identifier(required=True)
    owner_id = Identifier()
    browser_guid = String()
    created_at = DateTime(required=True)


@storefront.event(part_of="Cart")
class CartLineAdded:
    """A new selection was put in the cart."""

    __version__ = 1

    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    recurrence = String()
    quantity = Integer(required=True)


@storefront.event(part_of="Cart")
class CartLineUpdated:
    """An existing selection was reconfigured in place."""

    __version__ = 1

    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)


@storefront.event(part_of="Cart")
class CartLineRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    product_id = Identifier(required=True)


@storefront.event(part_of="Cart")
class DiscountCodeApplied:
    __version__ = 1

    cart_id = Identifier(required=True)
    code = String(required=True)
    from_url = Boolean(default=False)


@storefront.event(part_of="Cart")
class DiscountCodeRemoved:
    """A code left the cart, by the buyer or because it stopped qualifying."""

    __version__ = 1

    cart_id = Identifier(required=True)
    code = String(required=True)
    reason = String(required=True)


@storefront.event(part_of="Cart")
class GuestCartMerged:
    __version__ = 1

    cart_id = Identifier(required=True)
    guest_cart_id = Identifier(required=True)
    lines_merged_count = Integer(required=True)


@storefront.event(part_of="Cart")
class CartOwnerAssigned:
    """A guest cart was handed over to the buyer who just logged in."""

    __version__ = 1

    cart_id = Identifier(required=True)
    owner_id = Identifier(required=True)


@storefront.event(part_of="Cart")
class CartCheckedOut:
    __version__ = 1

    cart_id = Identifier(required=True)
    order_id = Identifier(required=True)
    successor_cart_id = Identifier(required=True)
    checked_out_at = DateTime(required=True)
