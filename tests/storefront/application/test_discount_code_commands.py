"""Application tests for applying and removing discount codes on carts."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from storefront.cart.cart import Cart
from storefront.cart.codes import ApplyDiscountCode, RemoveDiscountCode
from storefront.cart.events import DiscountCodeRemoved
from storefront.cart.items import AddCartLine, RemoveCartLine, UpdateCartLine
from storefront.cart.management import CreateCart
from storefront.cart.pricing import reprice
from storefront.checkout.submission import CheckoutService
from storefront.offers.management import CreateOfferCode, DeleteOfferCode
from storefront.order.purchase import Purchase
from storefront.shared.errors import DiscountBelowFloor, IneligibleDiscount


def _create_cart():
    return current_domain.process(CreateCart(browser_guid="browser-001"), asynchronous=False)


def _add(cart_id, product_id, **options):
    return current_domain.process(AddCartLine(cart_id=cart_id, product_id=product_id, **options), asynchronous=False)


def _offer(code, seller_id="seller-a", **attrs):
    return current_domain.process(CreateOfferCode(code=code, seller_id=seller_id, **attrs), asynchronous=False)


def _apply(cart_id, code, from_url=False):
    current_domain.process(ApplyDiscountCode(cart_id=cart_id, code=code, from_url=from_url), asynchronous=False)


def _cart(cart_id):
    return current_domain.repository_for(Cart).get(cart_id)


class TestApplyDiscountCode:
    def test_half_off_every_product(self, catalog):
        cart_id = _create_cart()
        ebook = _add(cart_id, "prod-ebook")
        course = _add(cart_id, "prod-course")
        _offer("half", percent=50)

        _apply(cart_id, "HALF")

        cart = _cart(cart_id)
        assert cart.line(ebook).displayed_price_cents == 500
        assert cart.line(course).displayed_price_cents == 1000
        assert json.loads(cart.displayed_totals) == {"usd": 1500}
        assert json.loads(cart.savings) == [
            {"code": "half", "seller_id": "seller-a", "currency": "usd", "amount_cents": 1500}
        ]

    def test_unknown_code(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        with pytest.raises(IneligibleDiscount) as exc:
            _apply(cart_id, "nope")
        assert exc.value.code == "invalid"
        assert _cart(cart_id).applied_codes == []

    def test_typed_code_for_other_sellers_products(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-film")
        _offer("half", percent=50)

        with pytest.raises(IneligibleDiscount) as exc:
            _apply(cart_id, "half")
        assert exc.value.code == "not_applicable"

    def test_link_code_for_other_sellers_products_stays_inert(self, catalog):
        cart_id = _create_cart()
        line_id = _add(cart_id, "prod-film")
        _offer("half", percent=50)

        _apply(cart_id, "half", from_url=True)

        cart = _cart(cart_id)
        assert [c.code for c in cart.applied_codes] == ["half"]
        assert cart.line(line_id).displayed_price_cents == 2000

    def test_unknown_link_code_is_dropped_quietly(self, catalog):
        cart_id = _create_cart()
        line_id = _add(cart_id, "prod-ebook")

        _apply(cart_id, "nope", from_url=True)

        cart = _cart(cart_id)
        assert cart.applied_codes == []
        assert cart.line(line_id).displayed_price_cents == 1000

    def test_link_code_below_its_minimum_amount_discounts_nothing(self, catalog):
        cart_id = _create_cart()
        line_id = _add(cart_id, "prod-ebook")
        _offer("spend", percent=10, minimum_amount_cents=2500)

        _apply(cart_id, "spend", from_url=True)

        assert _cart(cart_id).line(line_id).displayed_price_cents == 1000

    def test_typed_code_below_its_minimum_amount(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _offer("spend", percent=10, minimum_amount_cents=2500)

        with pytest.raises(IneligibleDiscount) as exc:
            _apply(cart_id, "spend")
        assert exc.value.code == "unmet_minimum_amount"

    def test_expired_code(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _offer("old", percent=50, expires_at=datetime.now(UTC) - timedelta(days=1))

        with pytest.raises(IneligibleDiscount) as exc:
            _apply(cart_id, "old")
        assert exc.value.code == "inactive"

    def test_code_breaking_the_price_floor_is_not_kept(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _offer("deep", percent=95)

        with pytest.raises(DiscountBelowFloor):
            _apply(cart_id, "deep")
        assert _cart(cart_id).applied_codes == []

    def test_fixed_code_in_another_currency(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-print")
        _offer("fiver", seller_id="seller-c", amount_cents=500, currency="usd")

        with pytest.raises(IneligibleDiscount) as exc:
            _apply(cart_id, "fiver")
        assert exc.value.code == "currency_mismatch"


class TestCodeDetachment:
    def test_code_is_removed_when_minimum_quantity_is_no_longer_met(self, catalog):
        cart_id = _create_cart()
        line_id = _add(cart_id, "prod-ebook", quantity=2)
        _offer("bulk", percent=50, minimum_quantity=2)
        _apply(cart_id, "bulk")
        assert _cart(cart_id).line(line_id).displayed_price_cents == 1000

        current_domain.process(UpdateCartLine(cart_id=cart_id, line_id=line_id, quantity=1), asynchronous=False)

        cart = _cart(cart_id)
        assert cart.applied_codes == []
        assert cart.line(line_id).displayed_price_cents == 1000
        assert cart.line(line_id).displayed_discount_cents == 0

    def test_code_is_removed_when_minimum_amount_is_no_longer_met(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        ebook_line = _add(cart_id, "prod-ebook")
        course_line = _add(cart_id, "prod-course")
        _offer("spend", percent=10, minimum_amount_cents=2500)
        _apply(cart_id, "spend")
        assert json.loads(_cart(cart_id).displayed_totals) == {"usd": 2700}

        current_domain.process(RemoveCartLine(cart_id=cart_id, line_id=course_line), asynchronous=False)

        cart = _cart(cart_id)
        assert cart.applied_codes == []
        assert cart.line(ebook_line).displayed_price_cents == 1000

        result = CheckoutService().submit(cart_id)

        assert result.committed
        assert gateway.calls[0]["amount_cents"] == 1000
        [purchase] = current_domain.repository_for(Purchase)._dao.query.all().items
        assert purchase.discount_cents == 0
        assert purchase.applied_codes == []

    def test_detachment_raises_event(self, catalog):
        cart_id = _create_cart()
        line_id = _add(cart_id, "prod-ebook", quantity=2)
        _offer("bulk", percent=50, minimum_quantity=2)
        _apply(cart_id, "bulk")

        cart = _cart(cart_id)
        cart.update_line(line_id, quantity=1)
        reprice(cart, catalog)
        removed = [e for e in cart._events if isinstance(e, DiscountCodeRemoved)]
        assert removed[0].reason == "thresholds_unmet"

    def test_deleted_offer_code_is_detached_on_next_change(self, catalog):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        offer_code_id = _offer("half", percent=50)
        _apply(cart_id, "half")

        current_domain.process(DeleteOfferCode(offer_code_id=offer_code_id), asynchronous=False)
        _add(cart_id, "prod-course")

        cart = _cart(cart_id)
        assert cart.applied_codes == []
        assert json.loads(cart.displayed_totals) == {"usd": 3000}


class TestRemoveDiscountCode:
    def test_remove_restores_prices(self, catalog):
        cart_id = _create_cart()
        line_id = _add(cart_id, "prod-ebook")
        _offer("half", percent=50)
        _apply(cart_id, "half")

        current_domain.process(RemoveDiscountCode(cart_id=cart_id, code="half"), asynchronous=False)

        cart = _cart(cart_id)
        assert cart.applied_codes == []
        assert cart.line(line_id).displayed_price_cents == 1000
        assert json.loads(cart.savings) == []
