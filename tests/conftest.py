"""
Test Suite Configuration
"""
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from salesdash.config import Settings
from salesdash.config.settings import GoogleSettings, MarketingSettings, ReportingSettings, ShopifySettings
from salesdash.core.calendar import ReportingCalendar
from salesdash.database.connection import build_engine, build_session_factory, create_tables
from salesdash.database.repository import RowStore
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.integrations.shopifyql import ShopifyQLClient
from salesdash.reports.context import ReportContext
from salesdash.serving.cache import TTLCache

UTC = timezone.utc

# Mid-month Sunday afternoon, UTC
FIXED_NOW = datetime(2026, 3, 15, 14, 30, tzinfo=UTC)

SHOP_DOMAIN = "demo-shop.myshopify.com"


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def test_settings() -> Settings:
    """Settings with every upstream unconfigured"""
    return Settings(
        app_env="testing",
        debug=True,
        shopify=ShopifySettings(store_domain="", access_token=None),
        marketing=MarketingSettings(url=""),
        google=GoogleSettings(client_id="", client_secret=None, refresh_token=None),
        reporting=ReportingSettings(reporting_timezone="UTC"),
    )


@pytest.fixture
def shopify_settings() -> ShopifySettings:
    return ShopifySettings(store_domain=SHOP_DOMAIN, access_token="shpat_test", orders_page_limit=2, orders_max_pages=5)


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the dashboard tables"""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def store(test_engine) -> RowStore:
    """Row store with a tiny page size so scans cross page boundaries"""
    return RowStore(build_session_factory(test_engine), page_size=2, max_pages=100, upsert_chunk_size=3)


@pytest.fixture
def report_context(test_settings, store) -> ReportContext:
    """Report context over the test store with upstreams unconfigured and a fixed clock"""
    return ReportContext(
        settings=test_settings,
        store=store,
        analytics=ShopifyQLClient(test_settings.shopify, TTLCache(60, name="shopifyql")),
        shopify=ShopifyAdminClient(test_settings.shopify, TTLCache(300, name="access_scopes")),
        calendar=ReportingCalendar("UTC"),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an httpx client whose requests are answered by ``handler``"""
    def build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return build


@pytest.fixture
def make_order() -> Callable[..., Dict[str, Any]]:
    """Stored order row factory"""
    def build(order_id: str, created_at: datetime, total: float, **overrides: Any) -> Dict[str, Any]:
        row = {
            "order_id": order_id,
            "order_name": f"#{order_id}",
            "created_at_utc": created_at,
            "processed_at_utc": created_at,
            "currency": "GBP",
            "source_name": "web",
            "customer_id": f"cust-{order_id}",
            "customer_type": "new",
            "gross_sales": total,
            "net_sales": total,
            "total_sales": total,
            "discounts": 0.0,
            "returns_amount": 0.0,
            "refunds_count": 0,
            "line_items_count": 1,
            "financial_status": "paid",
            "fulfillment_status": None,
            "cancelled_at_utc": None,
            "is_test": False,
            "ingested_at_utc": FIXED_NOW,
        }
        row.update(overrides)
        return row
    return build


@pytest.fixture
def make_line() -> Callable[..., Dict[str, Any]]:
    """Stored order line row factory"""
    def build(order_id: str, line_id: str, created_at: datetime, **overrides: Any) -> Dict[str, Any]:
        row = {
            "order_line_key": f"{order_id}:{line_id}",
            "order_id": order_id,
            "line_item_id": line_id,
            "created_at_utc": created_at,
            "product_id": "p-1",
            "variant_id": None,
            "sku": None,
            "product_title": "Linen Shirt",
            "variant_title": None,
            "vendor": None,
            "source_name": "web",
            "customer_type": "new",
            "quantity": 1.0,
            "gross_revenue": 10.0,
            "discount_amount": 0.0,
            "net_revenue": 10.0,
            "returned_quantity": 0.0,
            "returned_revenue": 0.0,
            "net_quantity": 1.0,
            "net_revenue_after_returns": 10.0,
            "ingested_at_utc": FIXED_NOW,
        }
        row.update(overrides)
        return row
    return build


@pytest.fixture
def make_hourly() -> Callable[..., Dict[str, Any]]:
    """Stored hourly row factory"""
    def build(logged_at: datetime, sales: float = 0.0, orders: float = 0.0, **overrides: Any) -> Dict[str, Any]:
        hour_key = f"{logged_at:%Y-%m-%d-%H}"
        row = {
            "row_key": f"{hour_key}-tw",
            "logged_at_utc": logged_at,
            "logged_at_local": None,
            "sales_amount": sales,
            "orders": orders,
            "ad_spend": None,
            "roas": None,
            "source_sales": "shopify",
            "source_marketing": None,
            "ingested_at_utc": FIXED_NOW,
        }
        row.update(overrides)
        return row
    return build
