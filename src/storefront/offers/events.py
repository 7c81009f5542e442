"""Domain events for the OfferCode aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="OfferCode")
class OfferCodeCreated:
    """A seller created a new discount code."""

    __version__ = 1

    offer_code_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    code = String(required=True)
    discount_kind = String(required=True)
    created_at = DateTime(required=True)


@storefront.event(part_of="OfferCode")
class OfferCodeUsed:
    """Purchases using the code were committed."""

    __version__ = 1

    offer_code_id = Identifier(required=True)
    code = String(required=True)
    quantity = Integer(required=True)
    uses_count = Integer(required=True)


@storefront.event(part_of="OfferCode")
class OfferCodeDeleted:
    __version__ = 1

    offer_code_id = Identifier(required=True)
    code = String(required=True)
    deleted_at = DateTime(required=True)
