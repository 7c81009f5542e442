"""Configurable fake payment gateway for development and testing.

Outcomes can be set for every charge or per seller, which is how tests drive
a checkout into partial failure.
"""

from uuid import uuid4

from storefront.payments.gateway.port import ChargeResult, PaymentGateway, PaymentMethod, PaymentTimeout


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.seller_outcomes: dict[str, tuple[str, str]] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        """Configure gateway behavior for every charge."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def configure_seller(self, seller_id: str, outcome: str, failure_reason: str = "Card declined") -> None:
        """Force the outcome for one seller: "succeed", "fail" or "timeout"."""
        if outcome not in ("succeed", "fail", "timeout"):
            raise ValueError(f"Unknown outcome: {outcome}")
        self.seller_outcomes[str(seller_id)] = (outcome, failure_reason)

    def create_charge(
        self,
        amount_cents: int,
        currency: str,
        payment_method: PaymentMethod,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> ChargeResult:
        metadata = metadata or {}
        self.calls.append(
            {
                "method": "create_charge",
                "amount_cents": amount_cents,
                "currency": currency,
                "payment_method_type": payment_method.type,
                "idempotency_key": idempotency_key,
                "metadata": metadata,
            }
        )

        outcome, reason = self.seller_outcomes.get(
            str(metadata.get("seller_id")),
            ("succeed" if self.should_succeed else "fail", self.failure_reason),
        )
        if outcome == "timeout":
            raise PaymentTimeout(f"Gateway timed out for {idempotency_key}")
        if outcome == "succeed":
            return ChargeResult(
                success=True,
                gateway_transaction_id=f"fake_txn_{uuid4().hex[:12]}",
                gateway_status="succeeded",
            )
        return ChargeResult(success=False, gateway_status="failed", failure_reason=reason)
