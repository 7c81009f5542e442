"""Shared BDD fixtures and step definitions for the Storefront domain."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then
from storefront.cart.cart import Cart
from storefront.cart.items import AddCartLine
from storefront.cart.management import CreateCart
from storefront.catalog.port import ProductSnapshot
from storefront.offers.management import CreateOfferCode


# ---------------------------------------------------------------------------
# Scalar fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def error():
    """Container for captured domain errors."""
    return {"exc": None}


@pytest.fixture()
def checkout():
    """Container for the outcome of a submission."""
    return {"result": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("the catalog is stocked")
def stocked_catalog(catalog, gateway, dispatcher):
    return catalog


@given(parsers.cfparse('a cart for buyer "{owner_id}"'), target_fixture="cart_id")
def cart_for_buyer(owner_id):
    return current_domain.process(CreateCart(owner_id=owner_id, email="buyer@example.com"), asynchronous=False)


@given(parsers.cfparse('seller "{seller_id}" offers code "{code}" for {percent:d} percent off'))
def percentage_offer(seller_id, code, percent):
    current_domain.process(CreateOfferCode(code=code, seller_id=seller_id, percent=percent), asynchronous=False)


@given(parsers.cfparse('seller "{seller_id}" offers code "{code}" for {percent:d} percent off from {units:d} units'))
def bulk_offer(seller_id, code, percent, units):
    current_domain.process(
        CreateOfferCode(code=code, seller_id=seller_id, percent=percent, minimum_quantity=units),
        asynchronous=False,
    )


@given(parsers.cfparse('the cart holds product "{product_id}"'))
def cart_holds_product(cart_id, product_id):
    current_domain.process(AddCartLine(cart_id=cart_id, product_id=product_id), asynchronous=False)


@given(parsers.cfparse('the cart holds {quantity:d} of product "{product_id}"'))
def cart_holds_quantity(cart_id, quantity, product_id):
    current_domain.process(
        AddCartLine(cart_id=cart_id, product_id=product_id, quantity=quantity),
        asynchronous=False,
    )


@given(parsers.cfparse('payments for seller "{seller_id}" fail'))
def seller_payments_fail(gateway, seller_id):
    gateway.configure_seller(seller_id, "fail")


@given(parsers.cfparse('product "{product_id}" now costs {price:d} cents'))
def product_price_changes(catalog, product_id, price):
    current = catalog.get(product_id)
    catalog.put(ProductSnapshot.build(id=product_id, seller_id=current.seller_id, price_cents=price))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then("the cart has no discount codes")
def cart_has_no_codes(cart_id):
    assert current_domain.repository_for(Cart).get(cart_id).applied_codes == []


@then("the cart is still alive")
def cart_is_alive(cart_id):
    assert current_domain.repository_for(Cart).get(cart_id).status == "Alive"
