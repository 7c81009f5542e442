"""Error taxonomy of the checkout engine.

Every error is a ``ValidationError`` so command handlers and the API treat it
like any other domain rejection, while ``code`` gives callers a stable value
to branch on. ``requires_refresh`` marks errors caused by stale data on the
buyer's screen: the page has to be reloaded before trying again.
"""

from protean.exceptions import ValidationError


class StorefrontError(ValidationError):
    code = "storefront_error"
    field = "cart"
    requires_refresh = False

    def __init__(self, message: str, *, code: str | None = None, field: str | None = None, **details):
        self.code = code or type(self).code
        self.message = message
        self.details = details
        super().__init__({field or self.field: [message]})


class CatalogMismatch(StorefrontError):
    """The line's selection no longer exists or is no longer sold."""

    code = "catalog_mismatch"
    field = "product_id"
    requires_refresh = True


class BelowMinimumPrice(StorefrontError):
    """A pay-what-you-want amount is lower than the allowed minimum."""

    code = "contribution_too_low"
    field = "pwyw_price_cents"


class IneligibleDiscount(StorefrontError):
    code = "ineligible_discount"
    field = "discount_code"


class DiscountBelowFloor(StorefrontError):
    """A discounted price landed between zero and the currency minimum."""

    code = "discount_below_floor"
    field = "discount_code"


class CartFull(StorefrontError):
    code = "cart_full"
    field = "lines"


class BundleContentsChanged(StorefrontError):
    code = "bundle_contents_changed"
    field = "bundle"
    requires_refresh = True


class PriceChanged(StorefrontError):
    code = "price_changed"
    field = "price"
    requires_refresh = True


class CheckoutAlreadyInProgress(StorefrontError):
    code = "checkout_in_progress"
    field = "cart"


class CartNotAlive(StorefrontError):
    code = "cart_not_alive"
    field = "cart"


class PaymentDeclined(StorefrontError):
    """Every seller's charge failed; nothing was bought."""

    code = "payment_failed"
    field = "payment"
