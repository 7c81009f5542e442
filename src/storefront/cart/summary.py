"""Buyer-facing view of a cart, with estimates in the buyer's currency."""

import json

from storefront.pricing.rates import convert_for_display, get_rates


def describe_cart(cart, rates=None) -> dict:
    table = (rates or get_rates()).snapshot()
    display_currency = cart.currency

    lines = [
        {
            "line_id": str(line.id),
            "product_id": str(line.product_id),
            "seller_id": str(line.seller_id),
            "variant_id": str(line.variant_id) if line.variant_id else None,
            "recurrence": line.recurrence,
            "quantity": line.quantity,
            "is_rental": bool(line.is_rental),
            "available": bool(line.available),
            "currency": line.currency,
            "unit_cents": line.displayed_unit_cents,
            "discount_cents": line.displayed_discount_cents,
            "price_cents": line.displayed_price_cents,
            "discount_codes": json.loads(line.applied_codes) if line.applied_codes else [],
            "estimated_price_cents": convert_for_display(
                line.displayed_price_cents, line.currency, display_currency, table
            ),
        }
        for line in cart.alive_lines
    ]

    totals = json.loads(cart.displayed_totals) if cart.displayed_totals else {}
    return {
        "cart_id": str(cart.id),
        "owner_id": str(cart.owner_id) if cart.owner_id else None,
        "status": cart.status,
        "currency": display_currency,
        "lines": lines,
        "discount_codes": [{"code": c.code, "from_url": c.from_url} for c in cart.applied_codes],
        "totals": totals,
        "savings": json.loads(cart.savings) if cart.savings else [],
        "estimated_total_cents": sum(
            convert_for_display(amount, currency, display_currency, table) for currency, amount in totals.items()
        ),
        "rates_as_of": table.fetched_at.isoformat(),
        "successor_cart_id": str(cart.successor_cart_id) if cart.successor_cart_id else None,
    }
