"""Application tests for submitting a cart: validation, per-seller charges and settlement."""

import pytest
from protean import current_domain
from protean.exceptions import ValidationError
from storefront.cart.cart import Cart, CartStatus
from storefront.cart.codes import ApplyDiscountCode
from storefront.cart.items import AddCartLine
from storefront.cart.management import CreateCart
from storefront.catalog.port import BundleItem, ProductSnapshot
from storefront.checkout.splitter import OrderSplitter
from storefront.checkout.submission import CheckoutService, CheckoutState, claim_cart
from storefront.offers.management import CreateOfferCode
from storefront.offers.offer_code import OfferCode
from storefront.order.order import Order, OrderStatus
from storefront.order.purchase import Purchase
from storefront.payments.gateway import FakeGateway, set_gateway
from storefront.shared.errors import CartNotAlive, CheckoutAlreadyInProgress


def _create_cart():
    return current_domain.process(
        CreateCart(owner_id="buyer-001", email="buyer@example.com"),
        asynchronous=False,
    )


def _add(cart_id, product_id, **options):
    return current_domain.process(AddCartLine(cart_id=cart_id, product_id=product_id, **options), asynchronous=False)


def _cart(cart_id):
    return current_domain.repository_for(Cart).get(cart_id)


def _purchases():
    return current_domain.repository_for(Purchase)._dao.query.all().items


def _submit(cart_id, **options):
    return CheckoutService().submit(cart_id, **options)


class UnreachableForSeller(FakeGateway):
    """Raises a connection error for one seller's charges."""

    def __init__(self, seller_id):
        super().__init__()
        self.unreachable_seller_id = seller_id

    def create_charge(self, amount_cents, currency, payment_method, idempotency_key, metadata=None):
        if (metadata or {}).get("seller_id") == self.unreachable_seller_id:
            raise ConnectionError("processor unreachable")
        return super().create_charge(amount_cents, currency, payment_method, idempotency_key, metadata)


class TestSuccessfulCheckout:
    def test_half_off_across_products(self, catalog, gateway, dispatcher):
        offer_code_id = current_domain.process(
            CreateOfferCode(code="half", seller_id="seller-a", percent=50, max_uses=10),
            asynchronous=False,
        )
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _add(cart_id, "prod-course")
        current_domain.process(ApplyDiscountCode(cart_id=cart_id, code="half"), asynchronous=False)

        result = _submit(cart_id)

        assert result.committed
        assert result.partial_failure is None
        assert len(gateway.calls) == 1
        assert gateway.calls[0]["amount_cents"] == 1500
        assert gateway.calls[0]["idempotency_key"] == f"{result.order_id}:seller-a"

        prices = sorted((p.price_cents, p.discount_cents, p.applied_codes) for p in _purchases())
        assert prices == [(500, 500, ["half"]), (1000, 1000, ["half"])]

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.status == OrderStatus.COMPLETED.value
        assert current_domain.repository_for(OfferCode).get(offer_code_id).uses_count == 2

    def test_stacked_codes_are_all_recorded_on_the_purchase(self, catalog, gateway, dispatcher):
        current_domain.process(CreateOfferCode(code="ten", seller_id="seller-a", percent=10), asynchronous=False)
        current_domain.process(CreateOfferCode(code="twenty", seller_id="seller-a", percent=20), asynchronous=False)
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        current_domain.process(ApplyDiscountCode(cart_id=cart_id, code="ten"), asynchronous=False)
        current_domain.process(ApplyDiscountCode(cart_id=cart_id, code="twenty"), asynchronous=False)

        assert _submit(cart_id).committed

        [purchase] = _purchases()
        assert purchase.price_cents == 700
        assert purchase.discount_cents == 300
        assert purchase.applied_codes == ["ten", "twenty"]

    def test_cart_is_closed_and_succeeded(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")

        result = _submit(cart_id)

        cart = _cart(cart_id)
        assert cart.status == CartStatus.CHECKED_OUT.value
        assert str(cart.successor_cart_id) == result.successor_cart_id
        successor = _cart(result.successor_cart_id)
        assert successor.status == CartStatus.ALIVE.value
        assert successor.alive_lines == []
        assert str(successor.owner_id) == "buyer-001"

    def test_receipt_per_charged_seller(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _add(cart_id, "prod-film")

        result = _submit(cart_id)

        assert sorted(r.seller_id for r in dispatcher.sent) == ["seller-a", "seller-b"]
        assert all(r.order_id == result.order_id for r in dispatcher.sent)
        assert all(r.email == "buyer@example.com" for r in dispatcher.sent)

    def test_free_cart_skips_the_gateway(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-tip", pwyw_price_cents=0)

        result = _submit(cart_id)

        assert result.committed
        assert gateway.calls == []
        assert [p.price_cents for p in _purchases()] == [0]

    def test_matching_expected_totals(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _add(cart_id, "prod-print")

        result = _submit(cart_id, expected_totals={"USD": 1000, "EUR": 1200})
        assert result.committed


class TestBundleCheckout:
    def test_bundle_is_expanded_into_constituent_purchases(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-bundle")

        result = _submit(cart_id)

        assert result.committed
        assert gateway.calls[0]["amount_cents"] == 2500

        purchases = _purchases()
        bundle = next(p for p in purchases if p.is_bundle)
        constituents = sorted(
            (p for p in purchases if p.bundle_purchase_id),
            key=lambda p: p.attributed_price_cents,
        )
        assert bundle.price_cents == 2500
        assert [str(p.product_id) for p in constituents] == ["prod-ebook", "prod-course"]
        assert [p.price_cents for p in constituents] == [0, 0]
        assert [p.attributed_price_cents for p in constituents] == [833, 1667]
        assert all(str(p.bundle_purchase_id) == str(bundle.id) for p in constituents)
        assert all(str(p.charge_id) == str(bundle.charge_id) for p in constituents)

    def test_changed_bundle_contents_reject_the_checkout(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-bundle")
        catalog.put(
            ProductSnapshot.build(
                id="prod-bundle",
                seller_id="seller-a",
                price_cents=2500,
                bundle_items=[BundleItem("prod-ebook")],
            )
        )

        result = _submit(cart_id)

        assert result.state == CheckoutState.REJECTED
        assert result.error.code == "bundle_contents_changed"
        assert result.error.requires_refresh is True

    def test_bundle_purchases_are_all_or_nothing(self, catalog, gateway, dispatcher, monkeypatch):
        original = Purchase.record.__func__

        def record_failing_on_constituents(cls, **attrs):
            if attrs.get("bundle_purchase_id"):
                raise ValidationError({"purchase": ["Could not record constituent"]})
            return original(cls, **attrs)

        monkeypatch.setattr(Purchase, "record", classmethod(record_failing_on_constituents))
        cart_id = _create_cart()
        _add(cart_id, "prod-bundle")

        result = _submit(cart_id)

        assert result.state == CheckoutState.REJECTED
        assert _purchases() == []
        assert gateway.calls == []
        assert _cart(cart_id).status == CartStatus.ALIVE.value


class TestPartialFailure:
    def test_failed_seller_lines_move_to_the_successor_cart(self, catalog, gateway, dispatcher):
        gateway.configure_seller("seller-b", "fail", failure_reason="Card declined")
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        film_line = _add(cart_id, "prod-film")

        result = _submit(cart_id)

        assert result.committed
        failure = result.partial_failure
        assert failure.succeeded_seller_ids == ("seller-a",)
        assert failure.failed_seller_ids == ("seller-b",)
        assert failure.failed_seller_id == "seller-b"
        assert failure.reasons["seller-b"] == "Card declined"
        assert failure.retry_cart_id == result.successor_cart_id

        successor = _cart(result.successor_cart_id)
        assert [str(line.product_id) for line in successor.alive_lines] == ["prod-film"]
        assert successor.alive_lines[0].displayed_price_cents == 2000
        assert str(successor.alive_lines[0].id) != film_line

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.status == OrderStatus.PARTIALLY_COMPLETED.value
        assert {str(p.seller_id) for p in _purchases()} == {"seller-a"}
        assert [r.seller_id for r in dispatcher.sent] == ["seller-a"]

    def test_timeout_is_a_failed_charge(self, catalog, gateway, dispatcher):
        gateway.configure_seller("seller-b", "timeout")
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _add(cart_id, "prod-film")

        result = _submit(cart_id)

        assert dict(result.partial_failure.reasons) == {"seller-b": "Payment timed out"}

    def test_gateway_error_fails_only_that_seller(self, catalog, gateway, dispatcher):
        set_gateway(UnreachableForSeller("seller-b"))
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _add(cart_id, "prod-film")

        result = _submit(cart_id)

        assert result.committed
        assert result.partial_failure.failed_seller_ids == ("seller-b",)
        assert dict(result.partial_failure.reasons) == {"seller-b": "Payment could not be processed"}
        assert _cart(cart_id).status == CartStatus.CHECKED_OUT.value
        assert {str(p.seller_id) for p in _purchases()} == {"seller-a"}
        assert [r.seller_id for r in dispatcher.sent] == ["seller-a"]

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.status == OrderStatus.PARTIALLY_COMPLETED.value

        successor = _cart(result.successor_cart_id)
        assert [str(line.product_id) for line in successor.alive_lines] == ["prod-film"]

    def test_every_seller_failing_rejects_the_checkout(self, catalog, gateway, dispatcher):
        gateway.configure(should_succeed=False)
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _add(cart_id, "prod-film")

        result = _submit(cart_id)

        assert result.state == CheckoutState.REJECTED
        assert result.error.code == "payment_failed"
        assert _cart(cart_id).status == CartStatus.ALIVE.value
        assert _purchases() == []
        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.status == OrderStatus.FAILED.value
        assert len(order.charges) == 2


class TestRejectedCheckout:
    def test_price_drift_rejects_without_charging(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        catalog.put(ProductSnapshot.build(id="prod-ebook", seller_id="seller-a", price_cents=1200))

        result = _submit(cart_id)

        assert result.state == CheckoutState.REJECTED
        assert result.error.code == "price_changed"
        assert result.error.message == "The price just changed! Refresh the page for the updated price."
        assert result.order_id is None
        assert gateway.calls == []
        assert _cart(cart_id).status == CartStatus.ALIVE.value

    def test_rejected_cart_can_be_submitted_again(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        catalog.put(ProductSnapshot.build(id="prod-ebook", seller_id="seller-a", price_cents=1200))
        assert not _submit(cart_id).committed

        catalog.put(ProductSnapshot.build(id="prod-ebook", seller_id="seller-a", price_cents=1000))
        assert _submit(cart_id).committed

    def test_expected_totals_drift(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")

        result = _submit(cart_id, expected_totals={"usd": 900})

        assert result.error.code == "price_changed"

    def test_vanished_product(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        catalog.remove("prod-ebook")

        result = _submit(cart_id)

        assert result.error.code == "product_not_found"
        assert result.error.requires_refresh is True

    def test_empty_cart(self, catalog, gateway, dispatcher):
        result = _submit(_create_cart())
        assert result.error.code == "empty_cart"

    def test_seller_selling_in_two_currencies(self, catalog, gateway, dispatcher):
        catalog.put(ProductSnapshot.build(id="prod-poster", seller_id="seller-c", price_cents=1500))
        cart_id = _create_cart()
        _add(cart_id, "prod-print")
        _add(cart_id, "prod-poster")

        result = _submit(cart_id)

        assert result.error.code == "mixed_currency"

    def test_raised_pay_what_you_want_floor(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-zine", pwyw_price_cents=400)
        catalog.put(
            ProductSnapshot.build(id="prod-zine", seller_id="seller-b", price_cents=600, customizable_price=True)
        )

        result = _submit(cart_id)

        assert result.state == CheckoutState.REJECTED
        assert result.error.code == "contribution_too_low"
        assert gateway.calls == []
        assert _cart(cart_id).status == CartStatus.ALIVE.value


class TestUnexpectedErrors:
    def test_cart_is_released_when_settlement_errors(self, catalog, gateway, dispatcher, monkeypatch):
        def unreachable(self, order_id, validated, payment_method):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(OrderSplitter, "commit", unreachable)
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")

        with pytest.raises(RuntimeError):
            _submit(cart_id)
        assert _cart(cart_id).status == CartStatus.ALIVE.value

        monkeypatch.undo()
        assert _submit(cart_id).committed


class TestConcurrentSubmission:
    def test_cart_claimed_by_another_submission(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")

        with claim_cart(cart_id):
            with pytest.raises(CheckoutAlreadyInProgress):
                _submit(cart_id)
        assert gateway.calls == []

    def test_cart_already_checking_out(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        cart = _cart(cart_id)
        cart.begin_checkout()
        current_domain.repository_for(Cart).add(cart)

        with pytest.raises(CheckoutAlreadyInProgress):
            _submit(cart_id)

    def test_checked_out_cart_cannot_be_submitted_again(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        assert _submit(cart_id).committed

        with pytest.raises(CartNotAlive):
            _submit(cart_id)
        assert len(gateway.calls) == 1

    def test_claim_is_released_after_submission(self, catalog, gateway, dispatcher):
        cart_id = _create_cart()
        _add(cart_id, "prod-ebook")
        _submit(cart_id)

        with claim_cart(cart_id):
            pass
