"""OrderSplitter: charge each seller separately and record what was bought.

Each seller group is its own sub-transaction. Purchases are built in memory
first, then the gateway is called once for the whole group, and only a
successful charge persists the group's Purchases together with its Charge.
A failing group never undoes a group that already went through.
"""

import json
from collections import defaultdict
from dataclasses import dataclass, field

from protean import UnitOfWork
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.offers.management import live_offer_codes
from storefront.offers.offer_code import OfferCode
from storefront.order.order import Order
from storefront.order.purchase import Purchase
from storefront.payments.gateway import get_gateway
from storefront.payments.gateway.port import ChargeResult, PaymentMethod, PaymentTimeout
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SellerResult:
    seller_id: str
    succeeded: bool
    amount_cents: int
    currency: str
    charge_id: str | None = None
    purchase_ids: tuple[str, ...] = ()
    line_ids: tuple[str, ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class SplitOutcome:
    order_id: str
    results: tuple[SellerResult, ...] = field(default_factory=tuple)

    @property
    def succeeded_seller_ids(self) -> list[str]:
        return [r.seller_id for r in self.results if r.succeeded]

    @property
    def failed_seller_ids(self) -> list[str]:
        return [r.seller_id for r in self.results if not r.succeeded]

    @property
    def failed_line_ids(self) -> list[str]:
        return [line_id for r in self.results if not r.succeeded for line_id in r.line_ids]

    def reasons(self) -> dict[str, str]:
        return {r.seller_id: r.reason for r in self.results if not r.succeeded}


def build_purchases(order_id, buyer_id, lines) -> list[Purchase]:
    """Purchases for one seller group: one per line, plus one per bundle constituent."""
    purchases = []
    for line in lines:
        purchase = Purchase.record(
            order_id=order_id,
            seller_id=line.seller_id,
            buyer_id=buyer_id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            recurrence=line.recurrence,
            quantity=line.quantity,
            is_rental=line.is_rental,
            currency=line.currency,
            base_price_cents=line.base_price_cents,
            discount_cents=line.discount_total_cents,
            price_cents=line.price_cents,
            attributed_price_cents=line.price_cents,
            offer_codes=json.dumps(list(line.codes)),
            duration_in_billing_cycles=line.duration_in_billing_cycles,
            is_bundle=bool(line.constituents),
            referrer=line.referrer,
        )
        purchases.append(purchase)

        for constituent in line.constituents:
            purchases.append(
                Purchase.record(
                    order_id=order_id,
                    seller_id=constituent.seller_id,
                    buyer_id=buyer_id,
                    product_id=constituent.product_id,
                    variant_id=constituent.variant_id,
                    quantity=constituent.quantity,
                    currency=constituent.currency,
                    base_price_cents=constituent.standalone_cents,
                    price_cents=0,
                    attributed_price_cents=constituent.attributed_cents,
                    bundle_purchase_id=str(purchase.id),
                    referrer=line.referrer,
                )
            )
    return purchases


def _code_usage(lines) -> dict[str, int]:
    usage: dict[str, int] = defaultdict(int)
    for line in lines:
        for code in line.codes:
            usage[code] += line.quantity
    return usage


class OrderSplitter:
    def __init__(self, gateway=None) -> None:
        self.gateway = gateway or get_gateway()

    def commit(self, order_id, validated, payment_method: PaymentMethod) -> SplitOutcome:
        results = [
            self._commit_group(order_id, validated, seller_id, lines, payment_method)
            for seller_id, lines in validated.by_seller().items()
        ]
        return SplitOutcome(order_id=str(order_id), results=tuple(results))

    def _commit_group(self, order_id, validated, seller_id, lines, payment_method) -> SellerResult:
        amount_cents = sum(line.price_cents for line in lines)
        currency = lines[0].currency
        line_ids = tuple(line.line_id for line in lines)
        idempotency_key = f"{order_id}:{seller_id}"
        log = logger.bind(order_id=str(order_id), seller_id=seller_id, amount_cents=amount_cents)

        try:
            purchases = build_purchases(str(order_id), validated.buyer_id, lines)
            charge = self._charge(amount_cents, currency, payment_method, idempotency_key, seller_id)
        except PaymentTimeout:
            reason = "Payment timed out"
            charge = None
        except ValidationError as exc:
            reason = str(exc.messages)
            charge = None
        except Exception as exc:
            log.error("seller_charge_errored", error=f"{type(exc).__name__}: {exc}")
            reason = "Payment could not be processed"
            charge = None
        else:
            reason = charge.failure_reason

        if charge is None or not charge.success:
            log.warning("seller_charge_failed", reason=reason)
            return self._record_failure(order_id, seller_id, amount_cents, currency, idempotency_key, reason, line_ids)

        with UnitOfWork():
            order_repo = current_domain.repository_for(Order)
            order = order_repo.get(order_id)
            recorded = order.record_charge(
                seller_id=seller_id,
                amount_cents=amount_cents,
                currency=currency,
                idempotency_key=idempotency_key,
                gateway_transaction_id=charge.gateway_transaction_id,
                purchase_ids=[str(p.id) for p in purchases],
            )
            order_repo.add(order)

            purchase_repo = current_domain.repository_for(Purchase)
            for purchase in purchases:
                purchase.assign_charge(str(recorded.id))
                purchase_repo.add(purchase)

            self._record_code_usage(seller_id, lines)

        log.info("seller_charge_succeeded", charge_id=str(recorded.id), purchases=len(purchases))
        return SellerResult(
            seller_id=seller_id,
            succeeded=True,
            amount_cents=amount_cents,
            currency=currency,
            charge_id=str(recorded.id),
            purchase_ids=tuple(str(p.id) for p in purchases),
            line_ids=line_ids,
        )

    def _charge(self, amount_cents, currency, payment_method, idempotency_key, seller_id):
        if amount_cents == 0:
            # Free groups never reach the processor
            return ChargeResult(success=True, gateway_status="free")

        return self.gateway.create_charge(
            amount_cents=amount_cents,
            currency=currency,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
            metadata={"seller_id": seller_id},
        )

    def _record_failure(self, order_id, seller_id, amount_cents, currency, idempotency_key, reason, line_ids):
        with UnitOfWork():
            order_repo = current_domain.repository_for(Order)
            order = order_repo.get(order_id)
            recorded = order.record_charge_failure(
                seller_id=seller_id,
                amount_cents=amount_cents,
                currency=currency,
                idempotency_key=idempotency_key,
                reason=reason,
            )
            order_repo.add(order)

        return SellerResult(
            seller_id=seller_id,
            succeeded=False,
            amount_cents=amount_cents,
            currency=currency,
            charge_id=str(recorded.id),
            line_ids=line_ids,
            reason=reason,
        )

    def _record_code_usage(self, seller_id, lines):
        for code, quantity in _code_usage(lines).items():
            for offer_code in live_offer_codes(code):
                if str(offer_code.seller_id) == str(seller_id):
                    offer_code.record_use(quantity)
                    current_domain.repository_for(OfferCode).add(offer_code)
