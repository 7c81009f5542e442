"""Domain events for orders, charges and purchases."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderCreated:
    __version__ = 1

    order_id = Identifier(required=True)
    cart_id = Identifier(required=True)
    buyer_id = Identifier()
    created_at = DateTime(required=True)


@storefront.event(part_of="Order")
class ChargeSucceeded:
    """One seller's share of the order was paid."""

    __version__ = 1

    order_id = Identifier(required=True)
    charge_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    amount_cents = Integer(required=True)
    currency = String(required=True)
    purchase_ids = Text(required=True)  # JSON array


@storefront.event(part_of="Order")
class ChargeFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    charge_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    reason = String(required=True)


@storefront.event(part_of="Order")
class OrderCompleted:
    __version__ = 1

    order_id = Identifier(required=True)
    status = String(required=True)
    succeeded_seller_ids = Text(required=True)  # JSON array
    failed_seller_ids = Text(required=True)  # JSON array
    completed_at = DateTime(required=True)


@storefront.event(part_of="Purchase")
class PurchaseCreated:
    __version__ = 1

    purchase_id = Identifier(required=True)
    order_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    product_id = Identifier(required=True)
    price_cents = Integer(required=True)
    currency = String(required=True)
    bundle_purchase_id = Identifier()
