import pytest
from protean.integrations.pytest import DomainFixture

SELLER_A = "seller-a"
SELLER_B = "seller-b"
SELLER_C = "seller-c"


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront

    bed = DomainFixture(storefront)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    with storefront_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _reset_ports():
    """Swap every process-wide port back to its default after each test."""
    yield

    from storefront.catalog import reset_catalog
    from storefront.checkout import submission
    from storefront.payments.gateway import reset_gateway
    from storefront.pricing.rates import reset_rates
    from storefront.receipts import reset_dispatcher

    reset_catalog()
    reset_gateway()
    reset_dispatcher()
    reset_rates()
    submission._in_flight.clear()


def build_catalog():
    """A small catalog with three sellers and every kind of product."""
    from storefront.catalog.memory_adapter import InMemoryCatalog
    from storefront.catalog.port import BundleItem, ProductSnapshot, variant

    return InMemoryCatalog(
        [
            ProductSnapshot.build(id="prod-ebook", seller_id=SELLER_A, name="Ebook", price_cents=1000),
            ProductSnapshot.build(id="prod-course", seller_id=SELLER_A, name="Course", price_cents=2000),
            ProductSnapshot.build(
                id="prod-tshirt",
                seller_id=SELLER_A,
                name="T-shirt",
                price_cents=1500,
                variants=[
                    variant("var-s", name="Small"),
                    variant("var-xl", name="XL", price_difference_cents=500),
                    variant("var-gold", name="Gold", available=False),
                ],
            ),
            ProductSnapshot.build(
                id="prod-bundle",
                seller_id=SELLER_A,
                name="Starter bundle",
                price_cents=2500,
                bundle_items=[BundleItem("prod-ebook"), BundleItem("prod-course")],
            ),
            ProductSnapshot.build(
                id="prod-membership",
                seller_id=SELLER_B,
                name="Membership",
                is_recurring=True,
                recurrence_prices={"monthly": 500, "yearly": 5000},
            ),
            ProductSnapshot.build(
                id="prod-tip", seller_id=SELLER_B, name="Tip jar", price_cents=0, customizable_price=True
            ),
            ProductSnapshot.build(
                id="prod-zine", seller_id=SELLER_B, name="Zine", price_cents=300, customizable_price=True
            ),
            ProductSnapshot.build(
                id="prod-film", seller_id=SELLER_B, name="Film", price_cents=2000, rental_price_cents=500
            ),
            ProductSnapshot.build(id="prod-print", seller_id=SELLER_C, name="Print", currency="eur", price_cents=1200),
        ]
    )


@pytest.fixture()
def catalog():
    from storefront.catalog import set_catalog

    catalog = build_catalog()
    set_catalog(catalog)
    return catalog


@pytest.fixture()
def gateway():
    from storefront.payments.gateway import set_gateway
    from storefront.payments.gateway.fake_adapter import FakeGateway

    gateway = FakeGateway()
    set_gateway(gateway)
    return gateway


@pytest.fixture()
def dispatcher():
    from storefront.receipts import set_dispatcher
    from storefront.receipts.port import RecordingReceiptDispatcher

    dispatcher = RecordingReceiptDispatcher()
    set_dispatcher(dispatcher)
    return dispatcher
