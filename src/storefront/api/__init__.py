"""Storefront domain API package."""

from storefront.api.errors import register_error_handlers
from storefront.api.routes import cart_router, offer_code_router, order_router, payment_router

__all__ = [
    "cart_router",
    "order_router",
    "offer_code_router",
    "payment_router",
    "register_error_handlers",
]
