"""Payment gateway used to charge each seller group of a checkout.

Checkout code reaches the processor through get_gateway() only, so tests and
the development API can install a configured FakeGateway with set_gateway().
"""

from storefront.payments.gateway.fake_adapter import FakeGateway
from storefront.payments.gateway.port import ChargeResult, PaymentGateway, PaymentMethod, PaymentTimeout

__all__ = [
    "ChargeResult",
    "FakeGateway",
    "PaymentGateway",
    "PaymentMethod",
    "PaymentTimeout",
    "get_gateway",
    "reset_gateway",
    "set_gateway",
]

_active: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """The installed gateway, or a FakeGateway that approves every charge."""
    global _active
    if _active is None:
        _active = FakeGateway()
    return _active


def set_gateway(gateway: PaymentGateway) -> None:
    global _active
    _active = gateway


def reset_gateway() -> None:
    global _active
    _active = None
