"""Catalog collaborators."""

from .product_lookup import (
    NullProductLookup,
    ProductInfo,
    ProductLookup,
    ProductLookupError,
    StaticProductLookup,
    WooCommerceProductLookup,
    build_product_lookup,
)

__all__ = [
    "NullProductLookup",
    "ProductInfo",
    "ProductLookup",
    "ProductLookupError",
    "StaticProductLookup",
    "WooCommerceProductLookup",
    "build_product_lookup",
]
