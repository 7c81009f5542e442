"""OfferCode aggregate: a seller's discount code.

Sellers manage codes through administration screens. The checkout engine only
reads them (through ``terms()`` snapshots) and bumps their usage count when
purchases using them are committed.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.offers.events import OfferCodeCreated, OfferCodeDeleted, OfferCodeUsed
from storefront.pricing.discounts import FixedOff, OfferTerms, PercentageOff, is_valid_code, normalize_code
from storefront.shared.currency import normalize_currency


class DiscountKind(Enum):
    PERCENTAGE = "Percentage"
    FIXED = "Fixed"


@storefront.aggregate
class OfferCode:
    code = String(required=True, max_length=100)
    seller_id = Identifier(required=True)
    universal = Boolean(default=True)
    product_ids = Text()  # JSON array of product ids, for scoped codes
    discount_kind = String(choices=DiscountKind, default=DiscountKind.PERCENTAGE.value)
    percent = Integer(min_value=0, max_value=100)
    amount_cents = Integer(min_value=0)
    currency = String(max_length=3)
    valid_at = DateTime()
    expires_at = DateTime()
    max_uses = Integer(min_value=0)
    uses_count = Integer(default=0, min_value=0)
    minimum_quantity = Integer(min_value=1)
    minimum_amount_cents = Integer(min_value=0)
    duration_in_billing_cycles = Integer(min_value=1)
    deleted_at = DateTime()
    created_at = DateTime()

    @invariant.post
    def code_must_be_well_formed(self):
        if self.code is not None and not is_valid_code(self.code):
            raise ValidationError({"code": ["Discount code can only contain letters, numbers, dashes and underscores"]})

    @invariant.post
    def discount_must_match_kind(self):
        if self.discount_kind == DiscountKind.PERCENTAGE.value and self.percent is None:
            raise ValidationError({"percent": ["Percentage codes need a percentage"]})
        if self.discount_kind == DiscountKind.FIXED.value and (self.amount_cents is None or not self.currency):
            raise ValidationError({"amount_cents": ["Fixed-amount codes need an amount and a currency"]})

    @invariant.post
    def scoped_code_must_list_products(self):
        if not self.universal and not self.scoped_product_ids:
            raise ValidationError({"product_ids": ["A code that is not universal must list at least one product"]})

    @invariant.post
    def validity_window_must_be_ordered(self):
        if self.valid_at and self.expires_at and self.valid_at >= self.expires_at:
            raise ValidationError({"expires_at": ["The code must expire after it becomes valid"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        code,
        seller_id,
        percent=None,
        amount_cents=None,
        currency=None,
        universal=True,
        product_ids=None,
        **limits,
    ):
        kind = DiscountKind.FIXED if amount_cents is not None else DiscountKind.PERCENTAGE
        offer_code = cls(
            code=normalize_code(code),
            seller_id=seller_id,
            universal=universal,
            product_ids=json.dumps([str(p) for p in product_ids or []]),
            discount_kind=kind.value,
            percent=percent,
            amount_cents=amount_cents,
            currency=normalize_currency(currency) if kind == DiscountKind.FIXED else None,
            uses_count=0,
            created_at=datetime.now(UTC),
            **limits,
        )
        offer_code.raise_(
            OfferCodeCreated(
                offer_code_id=str(offer_code.id),
                seller_id=str(seller_id),
                code=offer_code.code,
                discount_kind=kind.value,
                created_at=offer_code.created_at,
            )
        )
        return offer_code

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def scoped_product_ids(self) -> list[str]:
        return json.loads(self.product_ids) if self.product_ids else []

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def terms(self) -> OfferTerms:
        """Immutable snapshot handed to the discount engine."""
        if self.discount_kind == DiscountKind.FIXED.value:
            discount = FixedOff(amount_cents=self.amount_cents, currency=self.currency)
        else:
            discount = PercentageOff(percent=self.percent)

        return OfferTerms(
            code=self.code,
            seller_id=str(self.seller_id),
            discount=discount,
            universal=self.universal,
            product_ids=frozenset(self.scoped_product_ids),
            valid_at=self.valid_at,
            expires_at=self.expires_at,
            max_uses=self.max_uses,
            uses_count=self.uses_count or 0,
            minimum_quantity=self.minimum_quantity,
            minimum_amount_cents=self.minimum_amount_cents,
            duration_in_billing_cycles=self.duration_in_billing_cycles,
            deleted=self.is_deleted,
        )

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def record_use(self, quantity=1):
        if self.is_deleted:
            raise ValidationError({"code": ["A deleted code cannot be used"]})

        self.uses_count = (self.uses_count or 0) + quantity
        self.raise_(
            OfferCodeUsed(
                offer_code_id=str(self.id),
                code=self.code,
                quantity=quantity,
                uses_count=self.uses_count,
            )
        )

    def mark_deleted(self):
        if self.is_deleted:
            raise ValidationError({"code": ["Code is already deleted"]})

        self.deleted_at = datetime.now(UTC)
        self.raise_(
            OfferCodeDeleted(
                offer_code_id=str(self.id),
                code=self.code,
                deleted_at=self.deleted_at,
            )
        )
