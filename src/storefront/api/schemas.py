"""Pydantic request/response schemas for the Storefront API.

These are external contracts, kept separate from the internal Protean
commands.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Cart requests
# ---------------------------------------------------------------------------
class CreateCartRequest(BaseModel):
    owner_id: str | None = None
    browser_guid: str | None = None
    email: str | None = None
    currency: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "owner_id": None,
                    "browser_guid": "3f1c2f7e-browser",
                    "currency": "usd",
                }
            ]
        }
    }


class LineRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    recurrence: str | None = None
    quantity: int = Field(ge=1, default=1)
    pwyw_price_cents: int | None = Field(ge=0, default=None)
    is_rental: bool = False
    referrer: str | None = None


class ReplaceLinesRequest(BaseModel):
    lines: list[LineRequest]


class UpdateLineRequest(BaseModel):
    quantity: int | None = Field(ge=1, default=None)
    pwyw_price_cents: int | None = Field(ge=0, default=None)
    is_rental: bool | None = None


class ApplyDiscountCodeRequest(BaseModel):
    code: str
    from_url: bool = False


class MergeGuestCartRequest(BaseModel):
    owner_id: str
    browser_guid: str
    email: str | None = None


class PaymentMethodSchema(BaseModel):
    type: str = "card"
    token: str | None = None
    last4: str | None = None


class CheckoutRequest(BaseModel):
    payment_method: PaymentMethodSchema = Field(default_factory=PaymentMethodSchema)
    expected_totals: dict[str, int] | None = None


# ---------------------------------------------------------------------------
# Offer codes and gateway
# ---------------------------------------------------------------------------
class CreateOfferCodeRequest(BaseModel):
    code: str
    seller_id: str
    universal: bool = True
    product_ids: list[str] = Field(default_factory=list)
    percent: int | None = Field(ge=0, le=100, default=None)
    amount_cents: int | None = Field(ge=0, default=None)
    currency: str | None = None
    valid_at: datetime | None = None
    expires_at: datetime | None = None
    max_uses: int | None = Field(ge=0, default=None)
    minimum_quantity: int | None = Field(ge=1, default=None)
    minimum_amount_cents: int | None = Field(ge=0, default=None)
    duration_in_billing_cycles: int | None = Field(ge=1, default=None)


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"
    seller_outcomes: dict[str, Literal["succeed", "fail", "timeout"]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class CartIdResponse(BaseModel):
    cart_id: str


class LineIdResponse(BaseModel):
    line_id: str


class OfferCodeIdResponse(BaseModel):
    offer_code_id: str


class StatusResponse(BaseModel):
    status: str = "ok"


class ErrorSchema(BaseModel):
    code: str
    message: str
    requires_refresh: bool = False
    details: dict = Field(default_factory=dict)


class PartialFailureSchema(BaseModel):
    succeeded_seller_ids: list[str]
    failed_seller_ids: list[str]
    reasons: dict[str, str | None]
    retry_cart_id: str | None = None


class CheckoutResponse(BaseModel):
    state: str
    cart_id: str
    order_id: str | None = None
    successor_cart_id: str | None = None
    error: ErrorSchema | None = None
    partial_failure: PartialFailureSchema | None = None
