from __future__ import annotations

import logging
from typing import Optional

import httpx

from .catalog.schema import PriceData, coerce_optional_float, coerce_optional_int

logger = logging.getLogger("salesguard.pricing")

SHOPIFY_API_VERSION = "2024-01"


class ShopifyPricingClient:
    """Live price/stock lookup against the Shopify Admin products endpoint."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        store_domain: str,
        access_token: str,
        store_base_url: str,
        timeout_seconds: float = 8.0,
    ) -> None:
        self._http = http
        self._domain = store_domain.strip().rstrip("/")
        self._token = access_token.strip()
        self._base_url = store_base_url.rstrip("/")
        self._timeout = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._domain)

    async def get_product_by_handle(self, sku: str) -> Optional[PriceData]:
        """Purpose: Fetch live price, stock and URL for a SKU used as a product handle.
        Inputs/Outputs: Input is a SKU; output is PriceData or None when not found.
        Side Effects / State: One outbound HTTPS request; logs failures.
        Dependencies: httpx.AsyncClient owned by the app lifespan.
        Failure Modes: Missing credentials, non-2xx responses, network errors, bad
            JSON and empty product lists all return None.
        If Removed: Cards fall back to catalog prices and local stock only.
        Testing Notes: Use httpx.MockTransport to serve a products payload.
        """
        # Handle lookups are lowercase; the first variant carries price and stock.
        if not self.enabled:
            return None
        url = f"https://{self._domain}/admin/api/{SHOPIFY_API_VERSION}/products.json"
        headers = {"X-Shopify-Access-Token": self._token, "Content-Type": "application/json"}
        try:
            resp = await self._http.get(
                url,
                params={"handle": sku.lower()},
                headers=headers,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("shopify lookup sku=%s status=%s", sku, exc.response.status_code)
            return None
        except httpx.RequestError as exc:
            logger.warning("shopify lookup sku=%s request failed: %s", sku, exc)
            return None
        except ValueError:
            logger.warning("shopify lookup sku=%s invalid json", sku)
            return None

        products = payload.get("products") if isinstance(payload, dict) else None
        if not products or not isinstance(products[0], dict):
            return None
        product = products[0]
        variants = product.get("variants") or [{}]
        variant = variants[0] if isinstance(variants[0], dict) else {}
        handle = str(product.get("handle") or sku.lower())
        return PriceData(
            price=coerce_optional_float(variant.get("price")) or 0.0,
            stock_quantity=_clamp_quantity(coerce_optional_int(variant.get("inventory_quantity"))),
            canonical_url=f"{self._base_url}/products/{handle}",
            title=str(product.get("title") or ""),
        )


def _clamp_quantity(value: Optional[int]) -> Optional[int]:
    # Unknown stays unknown so local stock figures still apply.
    if value is None:
        return None
    return max(value, 0)
