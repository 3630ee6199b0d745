"""
Shopify Admin REST Client

Orders (cursor pagination via the ``Link`` header), order counts and the
granted access scopes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from salesdash.config.settings import ShopifySettings
from salesdash.core.calendar import to_iso
from salesdash.core.errors import (
    IntegrationNotConfigured,
    PaginationExceededError,
    ShopifyRequestError,
)
from salesdash.core.numbers import to_number
from salesdash.integrations.base import BaseIntegration, body_excerpt, safe_json

logger = structlog.get_logger(__name__)

ACCESS_SCOPES_CACHE_KEY = "access_scopes"


def get_next_page_url(link_header: Optional[str]) -> Optional[str]:
    """
    Parse the next page URL from a Link header.

    Shopify uses cursor-based pagination: ``<url>; rel="next", <url>; rel="previous"``
    """
    if not link_header:
        return None
    for link in link_header.split(","):
        section = link.strip()
        if 'rel="next"' not in section:
            continue
        start, end = section.find("<"), section.find(">")
        if start != -1 and end > start:
            return section[start + 1:end]
    return None


@dataclass
class OrdersFetch:
    orders: List[Dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0


class ShopifyAdminClient(BaseIntegration):
    """
    Client for the Shopify REST Admin API

    Usage:
        client = ShopifyAdminClient(settings.shopify, scopes_cache)
        result = await client.fetch_orders(start, end)
        count = await client.count_orders(month_start, now)
    """

    source_name = "shopify"

    def __init__(
        self,
        settings: ShopifySettings,
        scopes_cache=None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        super().__init__(http_client, timeout)
        self.settings = settings
        self.scopes_cache = scopes_cache

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    @property
    def base_url(self) -> str:
        return f"https://{self.settings.store_domain}/admin/api/{self.settings.api_version}"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.settings.token,
            "Accept": "application/json",
        }

    async def _get(self, client: httpx.AsyncClient, url: str, params: Optional[Dict[str, Any]], label: str) -> httpx.Response:
        try:
            response = await client.get(url, params=params, headers=self._get_headers())
        except httpx.HTTPError as e:
            raise ShopifyRequestError(f"Shopify {label} request failed: {e}") from e
        if response.status_code >= 400:
            raise ShopifyRequestError(
                f"Shopify {label} failed ({response.status_code}): {body_excerpt(response)}",
                status_code=response.status_code,
            )
        return response

    async def iter_orders(self, start: datetime, end: datetime) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield pages of orders created between ``start`` and ``end``, oldest first.

        Raises:
            IntegrationNotConfigured: no store domain or token
            PaginationExceededError: more pages than ``orders_max_pages``
        """
        if not self.is_configured:
            raise IntegrationNotConfigured("shopify", "Shopify store domain and access token are required")

        url: Optional[str] = f"{self.base_url}/orders.json"
        params: Optional[Dict[str, Any]] = {
            "status": "any",
            "limit": self.settings.orders_page_limit,
            "order": "created_at asc",
            "created_at_min": to_iso(start),
            "created_at_max": to_iso(end),
        }
        max_pages = self.settings.orders_max_pages
        pages = 0

        async with self.session() as client:
            while url:
                if pages >= max_pages:
                    raise PaginationExceededError("shopify orders", max_pages, "Reduce SYNC_DAYS to narrow the sync window.")
                response = await self._get(client, url, params, "orders")
                payload = safe_json(response) or {}
                page_orders = payload.get("orders") if isinstance(payload, dict) else None
                pages += 1
                yield page_orders if isinstance(page_orders, list) else []
                url = get_next_page_url(response.headers.get("link"))
                params = None  # cursor URLs carry their own query

    async def fetch_orders(self, start: datetime, end: datetime) -> OrdersFetch:
        result = OrdersFetch()
        async for page in self.iter_orders(start, end):
            result.orders.extend(page)
            result.pages_fetched += 1
        logger.info("Shopify orders fetched", orders=len(result.orders), pages=result.pages_fetched)
        return result

    async def count_orders(self, start: datetime, end: datetime) -> Optional[float]:
        """Order count (any status) created in [start, end]; None when not configured."""
        if not self.is_configured:
            return None
        async with self.session() as client:
            response = await self._get(
                client,
                f"{self.base_url}/orders/count.json",
                {"status": "any", "created_at_min": to_iso(start), "created_at_max": to_iso(end)},
                "orders count",
            )
        payload = safe_json(response) or {}
        return to_number(payload.get("count")) if isinstance(payload, dict) else None

    async def access_scopes(self) -> List[str]:
        """Granted scope handles, cached; [] when not configured."""
        if not self.is_configured:
            return []

        if self.scopes_cache is not None:
            cached = await self.scopes_cache.get(ACCESS_SCOPES_CACHE_KEY)
            if isinstance(cached, list):
                return cached

        async with self.session() as client:
            response = await self._get(client, f"{self.base_url}/access_scopes.json", None, "access scopes")
        payload = safe_json(response) or {}
        items = payload.get("access_scopes") if isinstance(payload, dict) else None
        scopes = [
            str(item.get("handle") or "").strip()
            for item in (items or [])
            if isinstance(item, dict) and str(item.get("handle") or "").strip()
        ]

        if self.scopes_cache is not None:
            await self.scopes_cache.set(ACCESS_SCOPES_CACHE_KEY, scopes)
        return scopes
