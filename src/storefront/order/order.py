"""Order aggregate: the outcome of one checkout submission.

An order holds one Charge per seller in the cart. Sellers are charged
independently, so an order can end up partially completed: the successful
charges stand and the failed sellers' lines go back to the buyer's new cart.

State Machine:
    PROCESSING → COMPLETED | PARTIALLY_COMPLETED | FAILED
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.order.events import ChargeFailed, ChargeSucceeded, OrderCompleted, OrderCreated


class OrderStatus(Enum):
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    PARTIALLY_COMPLETED = "PartiallyCompleted"
    FAILED = "Failed"


class ChargeStatus(Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


_VALID_TRANSITIONS = {
    OrderStatus.PROCESSING: {OrderStatus.COMPLETED, OrderStatus.PARTIALLY_COMPLETED, OrderStatus.FAILED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.PARTIALLY_COMPLETED: set(),
    OrderStatus.FAILED: set(),
}


@storefront.entity(part_of="Order")
class Charge:
    seller_id = Identifier(required=True)
    amount_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    status = String(choices=ChargeStatus, required=True)
    idempotency_key = String(max_length=255)
    gateway_transaction_id = String(max_length=255)
    failure_reason = String(max_length=500)
    purchase_ids = Text()  # JSON array
    created_at = DateTime()

    @property
    def succeeded(self) -> bool:
        return self.status == ChargeStatus.SUCCEEDED.value

    @property
    def purchase_id_list(self) -> list[str]:
        return json.loads(self.purchase_ids) if self.purchase_ids else []


@storefront.aggregate
class Order:
    cart_id = Identifier(required=True)
    buyer_id = Identifier()
    email = String(max_length=255)
    status = String(choices=OrderStatus, default=OrderStatus.PROCESSING.value)
    charges = HasMany(Charge)
    created_at = DateTime()
    completed_at = DateTime()

    @classmethod
    def create(cls, cart_id, buyer_id=None, email=None):
        now = datetime.now(UTC)
        order = cls(
            cart_id=cart_id,
            buyer_id=buyer_id,
            email=email,
            status=OrderStatus.PROCESSING.value,
            created_at=now,
        )
        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                cart_id=str(cart_id),
                buyer_id=str(buyer_id) if buyer_id else None,
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def charge_for(self, seller_id) -> Charge | None:
        return next((c for c in self.charges if str(c.seller_id) == str(seller_id)), None)

    @property
    def succeeded_seller_ids(self) -> list[str]:
        return [str(c.seller_id) for c in self.charges if c.succeeded]

    @property
    def failed_seller_ids(self) -> list[str]:
        return [str(c.seller_id) for c in self.charges if not c.succeeded]

    # -------------------------------------------------------------------
    # Charges
    # -------------------------------------------------------------------
    def _assert_processing(self):
        if OrderStatus(self.status) != OrderStatus.PROCESSING:
            raise ValidationError({"status": ["Charges can only be recorded while the order is processing"]})

    def _assert_seller_not_charged(self, seller_id):
        if self.charge_for(seller_id) is not None:
            raise ValidationError({"seller_id": [f"Seller {seller_id} was already charged for this order"]})

    def record_charge(self, seller_id, amount_cents, currency, idempotency_key, gateway_transaction_id, purchase_ids):
        self._assert_processing()
        self._assert_seller_not_charged(seller_id)

        charge = Charge(
            seller_id=seller_id,
            amount_cents=amount_cents,
            currency=currency,
            status=ChargeStatus.SUCCEEDED.value,
            idempotency_key=idempotency_key,
            gateway_transaction_id=gateway_transaction_id,
            purchase_ids=json.dumps(list(purchase_ids)),
            created_at=datetime.now(UTC),
        )
        self.add_charges(charge)
        self.raise_(
            ChargeSucceeded(
                order_id=str(self.id),
                charge_id=str(charge.id),
                seller_id=str(seller_id),
                amount_cents=amount_cents,
                currency=currency,
                purchase_ids=charge.purchase_ids,
            )
        )
        return charge

    def record_charge_failure(self, seller_id, amount_cents, currency, idempotency_key, reason):
        self._assert_processing()
        self._assert_seller_not_charged(seller_id)

        charge = Charge(
            seller_id=seller_id,
            amount_cents=amount_cents,
            currency=currency,
            status=ChargeStatus.FAILED.value,
            idempotency_key=idempotency_key,
            failure_reason=reason,
            purchase_ids=json.dumps([]),
            created_at=datetime.now(UTC),
        )
        self.add_charges(charge)
        self.raise_(
            ChargeFailed(
                order_id=str(self.id),
                charge_id=str(charge.id),
                seller_id=str(seller_id),
                reason=reason,
            )
        )
        return charge

    # -------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def complete(self):
        """Settle the order status from the outcome of its charges."""
        succeeded, failed = self.succeeded_seller_ids, self.failed_seller_ids
        if succeeded and not failed:
            target = OrderStatus.COMPLETED
        elif succeeded:
            target = OrderStatus.PARTIALLY_COMPLETED
        else:
            target = OrderStatus.FAILED

        self._assert_can_transition(target)
        now = datetime.now(UTC)
        self.status = target.value
        self.completed_at = now

        self.raise_(
            OrderCompleted(
                order_id=str(self.id),
                status=target.value,
                succeeded_seller_ids=json.dumps(succeeded),
                failed_seller_ids=json.dumps(failed),
                completed_at=now,
            )
        )
