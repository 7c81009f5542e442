"""Checkout submission: validate a cart, split it per seller and settle it.

State Machine of one attempt:
    PRICED → VALIDATING → COMMITTED | REJECTED

A rejected attempt leaves the cart exactly as the buyer had it. A committed
attempt closes the cart and opens its successor in the same unit of work as
the order completion. When only some sellers could be charged the attempt
still commits, and the result carries a PartialFailure naming the failed
sellers whose lines were moved to the successor cart.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType

from protean import UnitOfWork
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart, CartStatus
from storefront.cart.pricing import reprice
from storefront.catalog import get_catalog
from storefront.checkout.splitter import OrderSplitter
from storefront.checkout.validator import validate
from storefront.offers.management import offer_terms_for
from storefront.order.order import Order
from storefront.payments.gateway.port import PaymentMethod
from storefront.receipts import get_dispatcher
from storefront.receipts.port import ReceiptRequest
from storefront.shared.errors import CartNotAlive, CheckoutAlreadyInProgress, PaymentDeclined
from storefront.utils.logging import add_context, clear_context, get_logger

logger = get_logger(__name__)


class CheckoutState(Enum):
    PRICED = "Priced"
    VALIDATING = "Validating"
    COMMITTED = "Committed"
    REJECTED = "Rejected"


_VALID_TRANSITIONS = {
    CheckoutState.PRICED: {CheckoutState.VALIDATING},
    CheckoutState.VALIDATING: {CheckoutState.COMMITTED, CheckoutState.REJECTED},
    CheckoutState.COMMITTED: set(),
    CheckoutState.REJECTED: set(),
}


class CheckoutAttempt:
    def __init__(self, cart_id) -> None:
        self.cart_id = str(cart_id)
        self.state = CheckoutState.PRICED

    def transition(self, target: CheckoutState) -> None:
        if target not in _VALID_TRANSITIONS[self.state]:
            raise ValidationError(
                {"state": [f"Cannot transition from {self.state.value} to {target.value}"]}
            )
        self.state = target


@dataclass(frozen=True)
class PartialFailure:
    """Some sellers were charged, others were not."""

    succeeded_seller_ids: tuple[str, ...]
    failed_seller_ids: tuple[str, ...]
    reasons: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    retry_cart_id: str | None = None

    @property
    def failed_seller_id(self) -> str:
        return self.failed_seller_ids[0]


@dataclass(frozen=True)
class CheckoutResult:
    state: CheckoutState
    cart_id: str
    order_id: str | None = None
    error: ValidationError | None = None
    partial_failure: PartialFailure | None = None
    successor_cart_id: str | None = None

    @property
    def committed(self) -> bool:
        return self.state == CheckoutState.COMMITTED


# Carts currently being submitted by this process
_in_flight: set[str] = set()
_in_flight_lock = threading.Lock()


@contextmanager
def claim_cart(cart_id):
    """Hold the process-wide claim on ``cart_id`` for the duration of a submission."""
    cart_id = str(cart_id)
    with _in_flight_lock:
        if cart_id in _in_flight:
            raise CheckoutAlreadyInProgress("This cart is already being checked out.", cart_id=cart_id)
        _in_flight.add(cart_id)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight.discard(cart_id)


class CheckoutService:
    def __init__(self, catalog=None, gateway=None, dispatcher=None, clock=None) -> None:
        self.catalog = catalog or get_catalog()
        self.splitter = OrderSplitter(gateway)
        self.dispatcher = dispatcher or get_dispatcher()
        self.clock = clock or (lambda: datetime.now(UTC))

    def submit(self, cart_id, payment_method: PaymentMethod | None = None, expected_totals=None) -> CheckoutResult:
        """Check out ``cart_id``.

        Raises CheckoutAlreadyInProgress when the cart is already being
        submitted. Every other failure is reported in the returned result.
        """
        payment_method = payment_method or PaymentMethod()
        add_context(cart_id=str(cart_id))
        try:
            with claim_cart(cart_id):
                return self._submit(str(cart_id), payment_method, expected_totals)
        finally:
            clear_context()

    def _submit(self, cart_id, payment_method, expected_totals) -> CheckoutResult:
        cart_repo = current_domain.repository_for(Cart)
        cart = cart_repo.get(cart_id)
        if cart.status == CartStatus.CHECKING_OUT.value:
            raise CheckoutAlreadyInProgress("This cart is already being checked out.", cart_id=cart_id)
        if cart.status != CartStatus.ALIVE.value:
            raise CartNotAlive("This cart has already been checked out.", cart_id=cart_id, status=cart.status)

        cart.begin_checkout()
        cart_repo.add(cart)

        try:
            return self._settle(cart, payment_method, expected_totals)
        except Exception:
            self._release_claimed_cart(cart_id)
            raise

    def _release_claimed_cart(self, cart_id) -> None:
        cart_repo = current_domain.repository_for(Cart)
        cart = cart_repo.get(cart_id)
        if cart.status != CartStatus.CHECKING_OUT.value:
            return
        cart.release_checkout()
        cart_repo.add(cart)
        logger.error("checkout_aborted", cart_id=str(cart_id))

    def _settle(self, cart, payment_method, expected_totals) -> CheckoutResult:
        cart_id = str(cart.id)
        attempt = CheckoutAttempt(cart_id)
        attempt.transition(CheckoutState.VALIDATING)
        try:
            validated = validate(
                cart,
                self.catalog,
                offer_terms_for([c.code for c in cart.applied_codes]),
                self.clock(),
                expected_totals=expected_totals,
            )
        except ValidationError as exc:
            return self._reject(attempt, exc)

        order = Order.create(cart_id=cart_id, buyer_id=cart.owner_id, email=cart.email)
        current_domain.repository_for(Order).add(order)

        outcome = self.splitter.commit(str(order.id), validated, payment_method)
        if not outcome.succeeded_seller_ids:
            self._complete_order(order.id)
            error = PaymentDeclined(
                "Your payment failed. Please try again.",
                order_id=str(order.id),
                reasons=outcome.reasons(),
            )
            return self._reject(attempt, error, order_id=str(order.id))

        return self._commit(attempt, order.id, outcome)

    def _reject(self, attempt, error, order_id=None) -> CheckoutResult:
        cart_repo = current_domain.repository_for(Cart)
        cart = cart_repo.get(attempt.cart_id)
        cart.release_checkout()
        cart_repo.add(cart)

        attempt.transition(CheckoutState.REJECTED)
        logger.info(
            "checkout_rejected",
            order_id=order_id,
            reason=getattr(error, "code", "validation_error"),
        )
        return CheckoutResult(state=attempt.state, cart_id=attempt.cart_id, order_id=order_id, error=error)

    def _complete_order(self, order_id) -> Order:
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(order_id)
        order.complete()
        order_repo.add(order)
        return order

    def _commit(self, attempt, order_id, outcome) -> CheckoutResult:
        cart_repo = current_domain.repository_for(Cart)
        failed_line_ids = set(outcome.failed_line_ids)

        with UnitOfWork():
            order = self._complete_order(order_id)
            cart = cart_repo.get(attempt.cart_id)
            successor = Cart.create(
                owner_id=cart.owner_id,
                browser_guid=cart.browser_guid,
                email=cart.email,
                currency=cart.currency,
                return_url=cart.return_url,
            )
            for line in cart.alive_lines:
                if str(line.id) in failed_line_ids:
                    successor.add_line(
                        product_id=line.product_id,
                        seller_id=line.seller_id,
                        currency=line.currency,
                        quantity=line.quantity,
                        variant_id=line.variant_id,
                        recurrence=line.recurrence,
                        pwyw_price_cents=line.pwyw_price_cents,
                        is_rental=line.is_rental,
                        referrer=line.referrer,
                        bundle_fingerprint=line.bundle_fingerprint,
                    )
            if failed_line_ids:
                for code in cart.applied_codes:
                    successor.apply_code(code.code, from_url=code.from_url)
                reprice(successor, self.catalog)

            cart.complete_checkout(order_id=order.id, successor_cart_id=successor.id)
            cart_repo.add(cart)
            cart_repo.add(successor)

        attempt.transition(CheckoutState.COMMITTED)
        self._send_receipts(order, outcome)

        partial_failure = None
        if outcome.failed_seller_ids:
            partial_failure = PartialFailure(
                succeeded_seller_ids=tuple(outcome.succeeded_seller_ids),
                failed_seller_ids=tuple(outcome.failed_seller_ids),
                reasons=MappingProxyType(outcome.reasons()),
                retry_cart_id=str(successor.id),
            )
            logger.warning(
                "checkout_partially_failed",
                order_id=str(order.id),
                failed_seller_ids=outcome.failed_seller_ids,
            )
        else:
            logger.info("checkout_committed", order_id=str(order.id))

        return CheckoutResult(
            state=attempt.state,
            cart_id=attempt.cart_id,
            order_id=str(order.id),
            partial_failure=partial_failure,
            successor_cart_id=str(successor.id),
        )

    def _send_receipts(self, order, outcome) -> None:
        for result in outcome.results:
            if not result.succeeded:
                continue
            self.dispatcher.send_receipt(
                ReceiptRequest(
                    order_id=str(order.id),
                    charge_id=result.charge_id,
                    seller_id=result.seller_id,
                    buyer_id=str(order.buyer_id) if order.buyer_id else None,
                    email=order.email,
                    purchase_ids=result.purchase_ids,
                )
            )
