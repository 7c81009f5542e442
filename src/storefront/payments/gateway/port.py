"""Payment gateway port (abstract interface).

The checkout engine charges each seller's share of a cart through this
contract and never deals with card or wallet protocols itself.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class PaymentTimeout(Exception):
    """The gateway did not answer in time; the charge outcome is unknown."""


@dataclass(frozen=True)
class ChargeResult:
    """Result of a payment charge attempt."""

    success: bool
    gateway_transaction_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class PaymentMethod:
    """Buyer's payment method as tokenized by the client."""

    type: str = "card"
    token: str | None = None
    last4: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_charge(
        self,
        amount_cents: int,
        currency: str,
        payment_method: PaymentMethod,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> ChargeResult:
        """Charge ``amount_cents`` of ``currency``. May raise PaymentTimeout."""
        ...
