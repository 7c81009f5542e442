"""Purchase aggregate: the immutable priced record of one product sold.

Bundles produce one Purchase for the bundle itself, which carries the charged
price, and one Purchase per constituent pointing back to it through
``bundle_purchase_id``. Constituent purchases are charged nothing; their
``attributed_price_cents`` is the share of the bundle price used for
reporting.
"""

import json
from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.order.events import PurchaseCreated


@storefront.aggregate
class Purchase:
    order_id = Identifier(required=True)
    charge_id = Identifier()
    seller_id = Identifier(required=True)
    buyer_id = Identifier()
    product_id = Identifier(required=True)
    variant_id = Identifier()
    recurrence = String(max_length=50)
    quantity = Integer(required=True, min_value=1)
    is_rental = Boolean(default=False)
    currency = String(required=True, max_length=3)
    base_price_cents = Integer(required=True, min_value=0)
    discount_cents = Integer(default=0, min_value=0)
    price_cents = Integer(required=True, min_value=0)
    attributed_price_cents = Integer(min_value=0)
    offer_codes = Text(default="[]")  # JSON array of the codes that discounted this purchase
    duration_in_billing_cycles = Integer(min_value=1)
    is_bundle = Boolean(default=False)
    bundle_purchase_id = Identifier()
    referrer = String(max_length=255)
    created_at = DateTime()

    @classmethod
    def record(cls, **attrs):
        if attrs.get("price_cents", 0) > attrs.get("base_price_cents", 0):
            raise ValidationError({"price_cents": ["A purchase cannot cost more than its undiscounted price"]})

        purchase = cls(created_at=datetime.now(UTC), **attrs)
        purchase.raise_(
            PurchaseCreated(
                purchase_id=str(purchase.id),
                order_id=str(purchase.order_id),
                seller_id=str(purchase.seller_id),
                product_id=str(purchase.product_id),
                price_cents=purchase.price_cents,
                currency=purchase.currency,
                bundle_purchase_id=str(purchase.bundle_purchase_id) if purchase.bundle_purchase_id else None,
            )
        )
        return purchase

    def assign_charge(self, charge_id):
        if self.charge_id:
            raise ValidationError({"charge_id": ["Purchase already belongs to a charge"]})
        self.charge_id = charge_id

    @property
    def applied_codes(self) -> list[str]:
        return json.loads(self.offer_codes or "[]")
