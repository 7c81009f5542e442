"""Catalog port: read-only product snapshots consumed by pricing.

The catalog is owned elsewhere. Pricing never holds on to a product between
calls; it asks for a fresh snapshot every time it resolves a line.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType


@dataclass(frozen=True)
class VariantSnapshot:
    id: str
    name: str = ""
    price_difference_cents: int = 0
    # Membership tiers carry their own price per recurrence
    recurrence_prices: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    available: bool = True


@dataclass(frozen=True)
class BundleItem:
    product_id: str
    variant_id: str | None = None
    quantity: int = 1


@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    seller_id: str
    name: str = ""
    currency: str = "usd"
    price_cents: int = 0
    rental_price_cents: int | None = None
    rent_only: bool = False
    customizable_price: bool = False
    is_recurring: bool = False
    recurrence_prices: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    variants: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    bundle_items: tuple[BundleItem, ...] = ()
    available: bool = True

    @property
    def is_bundle(self) -> bool:
        return bool(self.bundle_items)

    @property
    def is_rentable(self) -> bool:
        return self.rental_price_cents is not None

    @classmethod
    def build(cls, *, variants=(), recurrence_prices=None, bundle_items=(), **attrs):
        """Convenience constructor taking plain lists and dicts."""
        return cls(
            variants=MappingProxyType({v.id: v for v in variants}),
            recurrence_prices=MappingProxyType(dict(recurrence_prices or {})),
            bundle_items=tuple(bundle_items),
            **attrs,
        )


def variant(id, *, recurrence_prices=None, **attrs) -> VariantSnapshot:
    return VariantSnapshot(id=id, recurrence_prices=MappingProxyType(dict(recurrence_prices or {})), **attrs)


class Catalog(ABC):
    """Abstract product catalog."""

    @abstractmethod
    def get(self, product_id: str) -> ProductSnapshot | None:
        """Return the current snapshot of a product, or None if unknown."""
        ...
