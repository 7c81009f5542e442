"""Cart aggregate: a buyer's multi-seller cart.

A cart belongs either to a logged-in buyer (``owner_id``) or to a browser
(``browser_guid``). Lines are never physically removed: removal stamps
``deleted_at`` so the cart keeps its history.

Prices are not computed here. After every mutation the command handler runs
``storefront.cart.pricing.reprice`` which writes the displayed prices back
onto the lines; if repricing fails the handler never persists the cart.

State Machine:
    ALIVE → CHECKING_OUT | MERGED
    CHECKING_OUT → ALIVE (checkout rejected) | CHECKED_OUT
    CHECKED_OUT, MERGED → (terminal)
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from storefront.cart.events import (
    CartCheckedOut,
    CartCreated,
    CartLineAdded,
    CartLineRemoved,
    CartLineUpdated,
    CartOwnerAssigned,
    DiscountCodeApplied,
    DiscountCodeRemoved,
    GuestCartMerged,
)
from storefront.domain import storefront
from storefront.pricing.discounts import AppliedCode, is_valid_code, normalize_code
from storefront.pricing.resolver import LineSelection
from storefront.shared.currency import DEFAULT_CURRENCY, normalize_currency
from storefront.shared.errors import CartFull, CartNotAlive, IneligibleDiscount

MAX_CART_LINES = 50


class CartStatus(Enum):
    ALIVE = "Alive"
    CHECKING_OUT = "CheckingOut"
    CHECKED_OUT = "CheckedOut"
    MERGED = "Merged"


_VALID_TRANSITIONS = {
    CartStatus.ALIVE: {CartStatus.CHECKING_OUT, CartStatus.MERGED},
    CartStatus.CHECKING_OUT: {CartStatus.ALIVE, CartStatus.CHECKED_OUT},
    CartStatus.CHECKED_OUT: set(),
    CartStatus.MERGED: set(),
}

# Carts in these states are the buyer's current cart
ALIVE_STATUSES = (CartStatus.ALIVE.value, CartStatus.CHECKING_OUT.value)


@storefront.entity(part_of="Cart")
class CartLine:
    product_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    variant_id = Identifier()
    recurrence = String(max_length=50)
    quantity = Integer(required=True, min_value=1)
    pwyw_price_cents = Integer(min_value=0)
    is_rental = Boolean(default=False)
    referrer = String(max_length=255)
    bundle_fingerprint = String(max_length=64)
    currency = String(max_length=3)
    available = Boolean(default=True)
    displayed_unit_cents = Integer(default=0)
    displayed_discount_cents = Integer(default=0)
    displayed_price_cents = Integer(default=0)
    applied_codes = Text()  # JSON array of codes discounting this line
    added_at = DateTime()
    updated_at = DateTime()
    deleted_at = DateTime()

    @property
    def is_alive(self) -> bool:
        return self.deleted_at is None

    @property
    def selection_key(self) -> tuple[str, str, str]:
        return (str(self.product_id), str(self.variant_id or ""), self.recurrence or "")

    def selection(self) -> LineSelection:
        return LineSelection(
            product_id=str(self.product_id),
            variant_id=str(self.variant_id) if self.variant_id else None,
            recurrence=self.recurrence,
            quantity=self.quantity,
            pwyw_price_cents=self.pwyw_price_cents,
            is_rental=bool(self.is_rental),
        )


def selection_key(product_id, variant_id=None, recurrence=None) -> tuple[str, str, str]:
    return (str(product_id), str(variant_id or ""), recurrence or "")


@storefront.aggregate
class Cart:
    owner_id = Identifier()  # Null for guest carts
    browser_guid = String(max_length=255)
    email = String(max_length=255)
    return_url = String(max_length=2048)
    currency = String(max_length=3, default=DEFAULT_CURRENCY)  # Display preference only
    status = String(choices=CartStatus, default=CartStatus.ALIVE.value)
    successor_cart_id = Identifier()
    lines = HasMany(CartLine)
    discount_codes = Text()  # JSON array of {"code": ..., "from_url": ...}
    displayed_totals = Text()  # JSON object: currency -> cents
    savings = Text()  # JSON array of per-code savings
    created_at = DateTime()
    updated_at = DateTime()
    deleted_at = DateTime()

    @invariant.post
    def finished_cart_must_link_successor(self):
        if self.status == CartStatus.CHECKED_OUT.value and not self.successor_cart_id:
            raise ValidationError({"successor_cart_id": ["A checked-out cart must point to its successor"]})

    @invariant.post
    def cart_needs_an_identity(self):
        if not self.owner_id and not self.browser_guid:
            raise ValidationError({"cart": ["A cart must belong to a buyer or a browser"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, owner_id=None, browser_guid=None, email=None, currency=None, return_url=None):
        now = datetime.now(UTC)
        cart = cls(
            owner_id=owner_id,
            browser_guid=browser_guid,
            email=email,
            return_url=return_url,
            currency=normalize_currency(currency),
            status=CartStatus.ALIVE.value,
            discount_codes=json.dumps([]),
            displayed_totals=json.dumps({}),
            savings=json.dumps([]),
            created_at=now,
            updated_at=now,
        )
        cart.raise_(
            CartCreated(
                cart_id=str(cart.id),
                owner_id=str(owner_id) if owner_id else None,
                browser_guid=browser_guid,
                created_at=now,
            )
        )
        return cart

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def alive_lines(self) -> list[CartLine]:
        return [line for line in self.lines if line.is_alive]

    @property
    def applied_codes(self) -> list[AppliedCode]:
        entries = json.loads(self.discount_codes) if self.discount_codes else []
        return [AppliedCode(code=entry["code"], from_url=entry.get("from_url", False)) for entry in entries]

    @property
    def is_alive(self) -> bool:
        return self.status in ALIVE_STATUSES

    def line(self, line_id) -> CartLine:
        line = next((item for item in self.alive_lines if str(item.id) == str(line_id)), None)
        if line is None:
            raise ValidationError({"line_id": ["Line not found in cart"]})
        return line

    def find_line(self, product_id, variant_id=None, recurrence=None) -> CartLine | None:
        key = selection_key(product_id, variant_id, recurrence)
        return next((line for line in self.alive_lines if line.selection_key == key), None)

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = CartStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _assert_mutable(self):
        if CartStatus(self.status) != CartStatus.ALIVE:
            raise CartNotAlive(
                "This cart can no longer be changed.",
                cart_id=str(self.id),
                status=self.status,
            )

    def begin_checkout(self):
        self._assert_can_transition(CartStatus.CHECKING_OUT)
        self.status = CartStatus.CHECKING_OUT.value
        self.updated_at = datetime.now(UTC)

    def release_checkout(self):
        """Return a cart whose checkout was rejected to the buyer, unchanged."""
        self._assert_can_transition(CartStatus.ALIVE)
        self.status = CartStatus.ALIVE.value
        self.updated_at = datetime.now(UTC)

    def complete_checkout(self, order_id, successor_cart_id):
        self._assert_can_transition(CartStatus.CHECKED_OUT)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = CartStatus.CHECKED_OUT.value
            self.successor_cart_id = successor_cart_id
            self.deleted_at = now
            self.updated_at = now

        self.raise_(
            CartCheckedOut(
                cart_id=str(self.id),
                order_id=str(order_id),
                successor_cart_id=str(successor_cart_id),
                checked_out_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Line management
    # -------------------------------------------------------------------
    def add_line(
        self,
        product_id,
        seller_id,
        currency,
        quantity=1,
        variant_id=None,
        recurrence=None,
        pwyw_price_cents=None,
        is_rental=False,
        referrer=None,
        bundle_fingerprint=None,
    ) -> CartLine:
        """Add a selection, or reconfigure the alive line holding the same selection."""
        self._assert_mutable()
        now = datetime.now(UTC)

        existing = self.find_line(product_id, variant_id, recurrence)
        if existing is not None:
            previous_quantity = existing.quantity
            existing.quantity = quantity
            existing.pwyw_price_cents = pwyw_price_cents
            existing.is_rental = is_rental
            existing.referrer = referrer or existing.referrer
            existing.bundle_fingerprint = bundle_fingerprint
            existing.updated_at = now
            self.updated_at = now
            self.raise_(
                CartLineUpdated(
                    cart_id=str(self.id),
                    line_id=str(existing.id),
                    previous_quantity=previous_quantity,
                    new_quantity=quantity,
                )
            )
            return existing

        if len(self.alive_lines) >= MAX_CART_LINES:
            raise CartFull(
                f"You cannot add more than {MAX_CART_LINES} products to the cart.",
                cart_id=str(self.id),
            )

        line = CartLine(
            product_id=product_id,
            seller_id=seller_id,
            variant_id=variant_id,
            recurrence=recurrence,
            quantity=quantity,
            pwyw_price_cents=pwyw_price_cents,
            is_rental=is_rental,
            referrer=referrer,
            bundle_fingerprint=bundle_fingerprint,
            currency=normalize_currency(currency),
            applied_codes=json.dumps([]),
            added_at=now,
            updated_at=now,
        )
        self.add_lines(line)
        self.updated_at = now

        self.raise_(
            CartLineAdded(
                cart_id=str(self.id),
                line_id=str(line.id),
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                recurrence=recurrence,
                quantity=quantity,
            )
        )
        return line

    def update_line(self, line_id, quantity=None, pwyw_price_cents=None, is_rental=None) -> CartLine:
        self._assert_mutable()
        line = self.line(line_id)
        now = datetime.now(UTC)

        previous_quantity = line.quantity
        if quantity is not None:
            line.quantity = quantity
        if pwyw_price_cents is not None:
            line.pwyw_price_cents = pwyw_price_cents
        if is_rental is not None:
            line.is_rental = is_rental
        line.updated_at = now
        self.updated_at = now

        self.raise_(
            CartLineUpdated(
                cart_id=str(self.id),
                line_id=str(line.id),
                previous_quantity=previous_quantity,
                new_quantity=line.quantity,
            )
        )
        return line

    def remove_line(self, line_id):
        """Soft-delete a line."""
        self._assert_mutable()
        line = self.line(line_id)
        now = datetime.now(UTC)
        line.deleted_at = now
        self.updated_at = now

        self.raise_(
            CartLineRemoved(
                cart_id=str(self.id),
                line_id=str(line.id),
                product_id=str(line.product_id),
            )
        )

    def replace_lines(self, selections):
        """Make the alive lines match ``selections`` exactly.

        ``selections`` is a list of dicts accepted by ``add_line``. Lines whose
        selection is absent from the list are soft-deleted.
        """
        self._assert_mutable()
        keys = [selection_key(s["product_id"], s.get("variant_id"), s.get("recurrence")) for s in selections]
        if len(set(keys)) > MAX_CART_LINES:
            raise CartFull(
                f"You cannot add more than {MAX_CART_LINES} products to the cart.",
                cart_id=str(self.id),
            )

        for line in self.alive_lines:
            if line.selection_key not in keys:
                self.remove_line(line.id)
        for selection in selections:
            self.add_line(**selection)

    # -------------------------------------------------------------------
    # Discount codes
    # -------------------------------------------------------------------
    def _store_codes(self, codes):
        self.discount_codes = json.dumps([{"code": c.code, "from_url": c.from_url} for c in codes])

    def apply_code(self, code, from_url=False):
        self._assert_mutable()
        code = normalize_code(code)
        if not is_valid_code(code):
            raise IneligibleDiscount(
                "Sorry, the discount code you wish to use is invalid.",
                code="invalid",
                discount_code=code,
            )

        codes = self.applied_codes
        existing = next((c for c in codes if c.code == code), None)
        if existing is not None and (existing.from_url == from_url or from_url):
            raise IneligibleDiscount(
                "This discount code has already been applied.",
                code="already_applied",
                discount_code=code,
            )

        # Typing a code that came in through a link makes it visible
        codes = [c for c in codes if c.code != code] + [AppliedCode(code=code, from_url=from_url)]
        self._store_codes(codes)
        self.updated_at = datetime.now(UTC)

        self.raise_(DiscountCodeApplied(cart_id=str(self.id), code=code, from_url=from_url))

    def remove_code(self, code, reason="removed_by_buyer"):
        self._assert_mutable()
        code = normalize_code(code)
        codes = self.applied_codes
        if not any(c.code == code for c in codes):
            raise ValidationError({"code": ["Discount code is not applied to this cart"]})

        self._store_codes([c for c in codes if c.code != code])
        self.updated_at = datetime.now(UTC)

        self.raise_(DiscountCodeRemoved(cart_id=str(self.id), code=code, reason=reason))

    def detach_codes(self, codes):
        """Drop codes that no longer qualify after the cart changed."""
        for code in codes:
            self.remove_code(code, reason="thresholds_unmet")

    # -------------------------------------------------------------------
    # Pricing results
    # -------------------------------------------------------------------
    def record_pricing(self, outcome, unavailable_line_ids=()):
        """Store the result of a reprice as the cart's displayed values."""
        for line in self.alive_lines:
            if str(line.id) in unavailable_line_ids:
                line.available = False
                continue

            priced = outcome.line(str(line.id))
            line.available = True
            line.quantity = priced.quantity
            line.displayed_unit_cents = priced.unit_cents
            line.displayed_discount_cents = priced.discount_total_cents
            line.displayed_price_cents = priced.final_total_cents
            line.applied_codes = json.dumps(list(priced.codes))

        self.displayed_totals = json.dumps(outcome.totals_by_currency())
        self.savings = json.dumps(
            [
                {
                    "code": s.code,
                    "seller_id": s.seller_id,
                    "currency": s.currency,
                    "amount_cents": s.amount_cents,
                }
                for s in outcome.savings
            ]
        )

    # -------------------------------------------------------------------
    # Identity and merging
    # -------------------------------------------------------------------
    def assign_owner(self, owner_id, email=None):
        self._assert_mutable()
        self.owner_id = owner_id
        if email:
            self.email = email
        self.updated_at = datetime.now(UTC)
        self.raise_(CartOwnerAssigned(cart_id=str(self.id), owner_id=str(owner_id)))

    def merge_from(self, guest_cart):
        """Pull a guest cart's lines and codes into this cart.

        On a conflicting selection this cart's line is kept as it is.
        """
        self._assert_mutable()
        guest_cart._assert_can_transition(CartStatus.MERGED)

        incoming = [line for line in guest_cart.alive_lines if self.find_line(*line.selection_key) is None]
        if len(self.alive_lines) + len(incoming) > MAX_CART_LINES:
            raise CartFull(
                f"You cannot add more than {MAX_CART_LINES} products to the cart.",
                cart_id=str(self.id),
            )

        now = datetime.now(UTC)
        for guest_line in incoming:
            self.add_lines(
                CartLine(
                    product_id=guest_line.product_id,
                    seller_id=guest_line.seller_id,
                    variant_id=guest_line.variant_id,
                    recurrence=guest_line.recurrence,
                    quantity=guest_line.quantity,
                    pwyw_price_cents=guest_line.pwyw_price_cents,
                    is_rental=guest_line.is_rental,
                    referrer=guest_line.referrer,
                    bundle_fingerprint=guest_line.bundle_fingerprint,
                    currency=guest_line.currency,
                    applied_codes=json.dumps([]),
                    added_at=guest_line.added_at or now,
                    updated_at=now,
                )
            )

        known = {c.code for c in self.applied_codes}
        self._store_codes(self.applied_codes + [c for c in guest_cart.applied_codes if c.code not in known])
        if not self.email and guest_cart.email:
            self.email = guest_cart.email
        self.updated_at = now

        guest_cart.mark_merged(into_cart_id=self.id)
        self.raise_(
            GuestCartMerged(
                cart_id=str(self.id),
                guest_cart_id=str(guest_cart.id),
                lines_merged_count=len(incoming),
            )
        )

    def mark_merged(self, into_cart_id):
        self._assert_can_transition(CartStatus.MERGED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = CartStatus.MERGED.value
            self.successor_cart_id = into_cart_id
            self.deleted_at = now
            self.updated_at = now
