"""FastAPI routes for the Storefront domain: carts, checkout, orders, offer codes."""

import json
import os

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from storefront.api.errors import error_body
from storefront.api.schemas import (
    ApplyDiscountCodeRequest,
    CartIdResponse,
    CheckoutRequest,
    CheckoutResponse,
    ConfigureGatewayRequest,
    CreateCartRequest,
    CreateOfferCodeRequest,
    LineIdResponse,
    LineRequest,
    MergeGuestCartRequest,
    OfferCodeIdResponse,
    ReplaceLinesRequest,
    StatusResponse,
    UpdateLineRequest,
)
from storefront.cart.cart import Cart
from storefront.cart.codes import ApplyDiscountCode, RemoveDiscountCode
from storefront.cart.items import AddCartLine, RemoveCartLine, ReplaceCartLines, UpdateCartLine
from storefront.cart.management import CreateCart, MergeGuestCart
from storefront.cart.summary import describe_cart
from storefront.checkout.submission import CheckoutService
from storefront.offers.management import CreateOfferCode, DeleteOfferCode
from storefront.order.order import Order
from storefront.order.purchase import Purchase
from storefront.payments.gateway import FakeGateway, PaymentMethod, get_gateway

# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("", status_code=201, response_model=CartIdResponse)
async def create_cart(body: CreateCartRequest) -> CartIdResponse:
    command = CreateCart(
        owner_id=body.owner_id,
        browser_guid=body.browser_guid,
        email=body.email,
        currency=body.currency,
    )
    result = current_domain.process(command, asynchronous=False)
    return CartIdResponse(cart_id=result)


@cart_router.post("/merge", response_model=CartIdResponse)
async def merge_guest_cart(body: MergeGuestCartRequest) -> CartIdResponse:
    command = MergeGuestCart(
        owner_id=body.owner_id,
        browser_guid=body.browser_guid,
        email=body.email,
    )
    result = current_domain.process(command, asynchronous=False)
    return CartIdResponse(cart_id=result)


@cart_router.get("/{cart_id}")
async def get_cart(cart_id: str) -> dict:
    cart = current_domain.repository_for(Cart).get(cart_id)
    return describe_cart(cart)


@cart_router.post("/{cart_id}/lines", status_code=201, response_model=LineIdResponse)
async def add_cart_line(cart_id: str, body: LineRequest) -> LineIdResponse:
    command = AddCartLine(cart_id=cart_id, **body.model_dump())
    result = current_domain.process(command, asynchronous=False)
    return LineIdResponse(line_id=result)


@cart_router.put("/{cart_id}/lines", response_model=StatusResponse)
async def replace_cart_lines(cart_id: str, body: ReplaceLinesRequest) -> StatusResponse:
    command = ReplaceCartLines(
        cart_id=cart_id,
        lines=json.dumps([line.model_dump() for line in body.lines]),
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@cart_router.patch("/{cart_id}/lines/{line_id}", response_model=StatusResponse)
async def update_cart_line(cart_id: str, line_id: str, body: UpdateLineRequest) -> StatusResponse:
    command = UpdateCartLine(
        cart_id=cart_id,
        line_id=line_id,
        quantity=body.quantity,
        pwyw_price_cents=body.pwyw_price_cents,
        is_rental=body.is_rental,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@cart_router.delete("/{cart_id}/lines/{line_id}", response_model=StatusResponse)
async def remove_cart_line(cart_id: str, line_id: str) -> StatusResponse:
    current_domain.process(RemoveCartLine(cart_id=cart_id, line_id=line_id), asynchronous=False)
    return StatusResponse()


@cart_router.post("/{cart_id}/discount-codes", response_model=StatusResponse)
async def apply_discount_code(cart_id: str, body: ApplyDiscountCodeRequest) -> StatusResponse:
    command = ApplyDiscountCode(cart_id=cart_id, code=body.code, from_url=body.from_url)
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@cart_router.delete("/{cart_id}/discount-codes/{code}", response_model=StatusResponse)
async def remove_discount_code(cart_id: str, code: str) -> StatusResponse:
    current_domain.process(RemoveDiscountCode(cart_id=cart_id, code=code), asynchronous=False)
    return StatusResponse()


@cart_router.post("/{cart_id}/checkout", status_code=201, response_model=CheckoutResponse)
async def checkout_cart(cart_id: str, body: CheckoutRequest):
    """Submit the cart.

    A committed checkout answers 201, a partially failed one too but with
    ``partial_failure`` set. A rejected checkout answers 422 with the typed
    reason; the cart is unchanged and can be submitted again.
    """
    result = CheckoutService().submit(
        cart_id,
        payment_method=PaymentMethod(**body.payment_method.model_dump()),
        expected_totals=body.expected_totals,
    )
    response = CheckoutResponse(
        state=result.state.value,
        cart_id=result.cart_id,
        order_id=result.order_id,
        successor_cart_id=result.successor_cart_id,
        error=error_body(result.error) if result.error is not None else None,
        partial_failure=(
            {
                "succeeded_seller_ids": list(result.partial_failure.succeeded_seller_ids),
                "failed_seller_ids": list(result.partial_failure.failed_seller_ids),
                "reasons": dict(result.partial_failure.reasons),
                "retry_cart_id": result.partial_failure.retry_cart_id,
            }
            if result.partial_failure
            else None
        ),
    )
    if not result.committed:
        return JSONResponse(status_code=422, content=response.model_dump())
    return response


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}")
async def get_order(order_id: str) -> dict:
    order = current_domain.repository_for(Order).get(order_id)
    purchases = current_domain.repository_for(Purchase)._dao.query.filter(order_id=order_id).all().items
    return {
        "order_id": str(order.id),
        "cart_id": str(order.cart_id),
        "status": order.status,
        "charges": [
            {
                "charge_id": str(charge.id),
                "seller_id": str(charge.seller_id),
                "status": charge.status,
                "amount_cents": charge.amount_cents,
                "currency": charge.currency,
                "failure_reason": charge.failure_reason,
            }
            for charge in order.charges
        ],
        "purchases": [
            {
                "purchase_id": str(p.id),
                "charge_id": str(p.charge_id) if p.charge_id else None,
                "seller_id": str(p.seller_id),
                "product_id": str(p.product_id),
                "variant_id": str(p.variant_id) if p.variant_id else None,
                "quantity": p.quantity,
                "currency": p.currency,
                "price_cents": p.price_cents,
                "discount_cents": p.discount_cents,
                "offer_codes": p.applied_codes,
                "bundle_purchase_id": str(p.bundle_purchase_id) if p.bundle_purchase_id else None,
            }
            for p in purchases
        ],
    }


# ---------------------------------------------------------------------------
# Offer Code Router
# ---------------------------------------------------------------------------
offer_code_router = APIRouter(prefix="/offer-codes", tags=["offer-codes"])


@offer_code_router.post("", status_code=201, response_model=OfferCodeIdResponse)
async def create_offer_code(body: CreateOfferCodeRequest) -> OfferCodeIdResponse:
    attrs = body.model_dump(exclude_none=True)
    attrs["product_ids"] = json.dumps(attrs.get("product_ids", []))
    result = current_domain.process(CreateOfferCode(**attrs), asynchronous=False)
    return OfferCodeIdResponse(offer_code_id=result)


@offer_code_router.delete("/{offer_code_id}", response_model=StatusResponse)
async def delete_offer_code(offer_code_id: str) -> StatusResponse:
    current_domain.process(DeleteOfferCode(offer_code_id=offer_code_id), asynchronous=False)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Payment gateway (development only)
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/gateway/configure", response_model=StatusResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> StatusResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    for seller_id, outcome in body.seller_outcomes.items():
        gateway.configure_seller(seller_id, outcome, failure_reason=body.failure_reason)
    return StatusResponse(status="configured")
