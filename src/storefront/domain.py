"""Storefront bounded context: creator checkout cart and discount pricing.

Hosts the multi-seller cart, offer codes, checkout submission and the
orders/purchases produced when a cart is paid for. Pricing itself is a set
of pure functions in ``storefront.pricing`` fed by catalog snapshots.
"""

from protean.domain import Domain

from storefront.utils.logging import configure_logging, get_logger

storefront = Domain(name="storefront")

configure_logging()
logger = get_logger(__name__)
