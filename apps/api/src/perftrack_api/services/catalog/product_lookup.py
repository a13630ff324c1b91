"""Product display lookups used to enrich ranking rows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol

import httpx
from loguru import logger

from perftrack_api.core.settings import Settings


@dataclass(slots=True)
class ProductInfo:
    name: str
    url: str


class ProductLookupError(RuntimeError):
    """Raised when the catalog could not be queried."""


class ProductLookup(Protocol):
    async def resolve(self, product_id: int) -> ProductInfo | None:
        """Return display data, or ``None`` when the product no longer exists."""


class NullProductLookup:
    """Lookup that never finds anything; rankings fall back to placeholders."""

    async def resolve(self, product_id: int) -> ProductInfo | None:
        return None


class StaticProductLookup:
    def __init__(self, products: Mapping[int, ProductInfo]) -> None:
        self._products = dict(products)

    async def resolve(self, product_id: int) -> ProductInfo | None:
        return self._products.get(product_id)


class WooCommerceProductLookup:
    """Resolve products through the WooCommerce REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        consumer_key: str,
        consumer_secret: str,
        api_version: str = "wc/v3",
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{base_url.rstrip('/')}/wp-json/{api_version.strip('/')}"
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            auth=(consumer_key, consumer_secret),
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._owns_client = http_client is None

    async def resolve(self, product_id: int) -> ProductInfo | None:
        try:
            response = await self._client.get(f"{self._base_url}/products/{product_id}")
        except httpx.HTTPError as exc:
            raise ProductLookupError(f"WooCommerce request failed for product {product_id}: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.is_error:
            raise ProductLookupError(
                f"WooCommerce responded {response.status_code} for product {product_id}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProductLookupError(f"Malformed WooCommerce payload for product {product_id}") from exc

        name = str(payload.get("name") or "").strip()
        if not name:
            return None
        return ProductInfo(name=name, url=payload.get("permalink") or "#")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_product_lookup(config: Settings) -> ProductLookup:
    """Choose the lookup implementation from settings."""

    if not config.woocommerce_url:
        logger.debug("WooCommerce URL not configured; product names will use placeholders")
        return NullProductLookup()
    return WooCommerceProductLookup(
        config.woocommerce_url,
        consumer_key=config.woocommerce_consumer_key,
        consumer_secret=config.woocommerce_consumer_secret,
        api_version=config.woocommerce_api_version,
        timeout_seconds=config.product_lookup_timeout_seconds,
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
