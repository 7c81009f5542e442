"""In-process catalog used for development, seeding and tests."""

from storefront.catalog.port import Catalog, ProductSnapshot


class InMemoryCatalog(Catalog):
    def __init__(self, products=()) -> None:
        self._products: dict[str, ProductSnapshot] = {}
        for product in products:
            self.put(product)

    def put(self, product: ProductSnapshot) -> None:
        self._products[str(product.id)] = product

    def remove(self, product_id: str) -> None:
        self._products.pop(str(product_id), None)

    def get(self, product_id: str) -> ProductSnapshot | None:
        return self._products.get(str(product_id))
