"""
Product catalog configuration.

Maps Google Play product IDs to the kind of entitlement they grant.
"""

from dataclasses import dataclass
from enum import Enum

from entitlement_sync.config import settings
from entitlement_sync.exceptions import UnknownProductError


class ProductKind(str, Enum):
    """Kind of entitlement a product grants."""

    ONE_TIME = "one_time"
    BASIC = "basic"
    PREMIUM = "premium"

    @property
    def is_subscription(self) -> bool:
        """Basic and premium are subscription tiers."""
        return self is not ProductKind.ONE_TIME


@dataclass(frozen=True)
class CatalogProduct:
    """Google Play product configuration."""

    product_id: str
    kind: ProductKind
    name: str

    def __post_init__(self) -> None:
        """Validate product configuration."""
        if not self.product_id:
            raise ValueError("Product ID required")
        if not self.name:
            raise ValueError("Name required")


class ProductCatalog:
    """Lookup of catalog products by id."""

    def __init__(self, products: list[CatalogProduct]) -> None:
        self._by_id: dict[str, CatalogProduct] = {}
        for product in products:
            if product.product_id in self._by_id:
                raise ValueError(f"Duplicate product ID: {product.product_id}")
            self._by_id[product.product_id] = product

    def get(self, product_id: str) -> CatalogProduct:
        """
        Get product configuration by ID.

        Raises:
            UnknownProductError: If product ID not found
        """
        product = self._by_id.get(product_id)
        if product is None:
            raise UnknownProductError(product_id)
        return product

    def kind_of(self, product_id: str | None) -> ProductKind | None:
        """Kind of a product, or None for products outside the catalog."""
        if product_id is None:
            return None
        product = self._by_id.get(product_id)
        return product.kind if product else None

    def subscription_ids(self) -> frozenset[str]:
        return frozenset(p.product_id for p in self._by_id.values() if p.kind.is_subscription)


def default_catalog() -> ProductCatalog:
    """Catalog built from settings (must match Google Play Console configuration)."""
    return ProductCatalog(
        [
            CatalogProduct(
                product_id=settings.basic_product_id,
                kind=ProductKind.BASIC,
                name="Basic",
            ),
            CatalogProduct(
                product_id=settings.premium_product_id,
                kind=ProductKind.PREMIUM,
                name="Premium",
            ),
            CatalogProduct(
                product_id=settings.one_time_product_id,
                kind=ProductKind.ONE_TIME,
                name="One-time product",
            ),
        ]
    )
