"""Offer code administration: commands, handler and lookups."""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.catalog import get_catalog
from storefront.domain import storefront
from storefront.offers.offer_code import OfferCode
from storefront.pricing.discounts import normalize_code
from storefront.shared.currency import normalize_currency


@storefront.command(part_of="OfferCode")
class CreateOfferCode:
    code = String(required=True, max_length=100)
    seller_id = Identifier(required=True)
    universal = Boolean(default=True)
    product_ids = Text()  # JSON array
    percent = Integer(min_value=0, max_value=100)
    amount_cents = Integer(min_value=0)
    currency = String(max_length=3)
    valid_at = DateTime()
    expires_at = DateTime()
    max_uses = Integer(min_value=0)
    minimum_quantity = Integer(min_value=1)
    minimum_amount_cents = Integer(min_value=0)
    duration_in_billing_cycles = Integer(min_value=1)


@storefront.command(part_of="OfferCode")
class DeleteOfferCode:
    offer_code_id = Identifier(required=True)


def live_offer_codes(code) -> list[OfferCode]:
    """All non-deleted offer codes matching ``code``, across sellers."""
    repo = current_domain.repository_for(OfferCode)
    results = repo._dao.query.filter(code=normalize_code(code)).all().items
    return [offer_code for offer_code in results if not offer_code.is_deleted]


def offer_terms_for(codes):
    """OfferTerms snapshots of every live offer code matching ``codes``."""
    terms = []
    for code in {normalize_code(c) for c in codes}:
        terms.extend(offer_code.terms() for offer_code in live_offer_codes(code))
    return terms


def _check_scoped_products(command, product_ids):
    catalog = get_catalog()
    for product_id in product_ids:
        product = catalog.get(product_id)
        if product is None or str(product.seller_id) != str(command.seller_id):
            raise ValidationError({"product_ids": [f"Product {product_id} does not belong to this seller"]})
        if command.amount_cents is not None and normalize_currency(product.currency) != normalize_currency(
            command.currency
        ):
            raise ValidationError(
                {"currency": [f"The code's currency must match the currency of product {product_id}"]}
            )


@storefront.command_handler(part_of=OfferCode)
class ManageOfferCodesHandler:
    @handle(CreateOfferCode)
    def create_offer_code(self, command):
        if any(str(o.seller_id) == str(command.seller_id) for o in live_offer_codes(command.code)):
            raise ValidationError({"code": ["Discount code must be unique."]})

        product_ids = json.loads(command.product_ids) if command.product_ids else []
        if not command.universal:
            _check_scoped_products(command, product_ids)

        limits = {
            name: getattr(command, name)
            for name in (
                "valid_at",
                "expires_at",
                "max_uses",
                "minimum_quantity",
                "minimum_amount_cents",
                "duration_in_billing_cycles",
            )
            if getattr(command, name) is not None
        }
        offer_code = OfferCode.create(
            code=command.code,
            seller_id=command.seller_id,
            percent=command.percent,
            amount_cents=command.amount_cents,
            currency=command.currency,
            universal=command.universal,
            product_ids=product_ids,
            **limits,
        )
        current_domain.repository_for(OfferCode).add(offer_code)
        return str(offer_code.id)

    @handle(DeleteOfferCode)
    def delete_offer_code(self, command):
        repo = current_domain.repository_for(OfferCode)
        offer_code = repo.get(command.offer_code_id)
        offer_code.mark_deleted()
        repo.add(offer_code)
