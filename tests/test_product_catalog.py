"""
Tests for the product catalog.
"""

import pytest

from conftest import BASIC, ONE_TIME, PREMIUM
from entitlement_sync.exceptions import UnknownProductError
from entitlement_sync.services.product_catalog import (
    CatalogProduct,
    ProductCatalog,
    ProductKind,
)


class TestCatalogProduct:
    """Tests for CatalogProduct validation."""

    def test_valid_product(self):
        product = CatalogProduct(product_id=BASIC, kind=ProductKind.BASIC, name="Basic")

        assert product.kind.is_subscription

    def test_missing_product_id(self):
        """Test that missing product ID raises ValueError."""
        with pytest.raises(ValueError, match="Product ID required"):
            CatalogProduct(product_id="", kind=ProductKind.BASIC, name="Basic")

    def test_missing_name(self):
        with pytest.raises(ValueError, match="Name required"):
            CatalogProduct(product_id=BASIC, kind=ProductKind.BASIC, name="")


class TestProductCatalog:
    """Tests for catalog lookups."""

    def test_default_catalog_kinds(self, catalog):
        assert catalog.kind_of(BASIC) is ProductKind.BASIC
        assert catalog.kind_of(PREMIUM) is ProductKind.PREMIUM
        assert catalog.kind_of(ONE_TIME) is ProductKind.ONE_TIME

    def test_unknown_product_kind_is_none(self, catalog):
        assert catalog.kind_of("legacy") is None
        assert catalog.kind_of(None) is None

    def test_get_unknown_product_raises(self, catalog):
        with pytest.raises(UnknownProductError) as exc_info:
            catalog.get("legacy")

        assert exc_info.value.product == "legacy"

    def test_subscription_ids(self, catalog):
        assert catalog.subscription_ids() == frozenset({BASIC, PREMIUM})

    def test_duplicate_product_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate product ID"):
            ProductCatalog(
                [
                    CatalogProduct(BASIC, ProductKind.BASIC, "Basic"),
                    CatalogProduct(BASIC, ProductKind.PREMIUM, "Premium"),
                ]
            )

    def test_subscription_kinds(self):
        assert ProductKind.BASIC.is_subscription
        assert ProductKind.PREMIUM.is_subscription
        assert not ProductKind.ONE_TIME.is_subscription
