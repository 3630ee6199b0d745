"""
Hourly Sync Job

Pulls the marketing feed and Shopify orders for the sync window, merges them
with the hourly rows already stored and upserts hourly, order and order line
rows. This job is the only writer of the row store.

Usage:
    python -m salesdash.ingestion.sync_job --days 30
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timedelta
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from salesdash.config import Settings, get_settings
from salesdash.config.logging import configure_logging
from salesdash.core.calendar import ensure_utc, to_iso
from salesdash.core.errors import IntegrationNotConfigured
from salesdash.database.connection import open_row_store
from salesdash.database.repository import RowStore
from salesdash.integrations.apps_script import fetch_marketing_by_hour
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.reports.context import utc_now
from salesdash.transformation.hourly import merge_hourly_rows
from salesdash.transformation.orders import build_order_structures

logger = structlog.get_logger(__name__)


class SyncWindow(BaseModel):
    days: int
    start_utc: str
    end_utc: str


class MarketingStats(BaseModel):
    marketing_hours: int = 0


class ShopifyStats(BaseModel):
    orders_fetched: int = 0
    pages_fetched: int = 0
    hourly_points: int = 0
    order_rows_built: int = 0
    line_rows_built: int = 0
    orders_skipped: int = 0


class StoreStats(BaseModel):
    hourly_rows_input: int = 0
    hourly_rows_written: int = 0
    order_rows_written: int = 0
    line_rows_written: int = 0


class SyncSummary(BaseModel):
    """Result of one sync run"""
    ok: bool = True
    sync_window: SyncWindow
    apps_script: MarketingStats = Field(default_factory=MarketingStats)
    shopify: ShopifyStats = Field(default_factory=ShopifyStats)
    store: StoreStats = Field(default_factory=StoreStats)


async def run_sync(
    settings: Settings,
    store: RowStore,
    shopify: ShopifyAdminClient,
    http_client: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
    days: Optional[int] = None,
) -> SyncSummary:
    """
    Run one sync over the trailing window.

    Args:
        settings: Application settings (Apps Script URL, sync window)
        store: Row store to read existing hourly rows from and upsert into
        shopify: Shopify Admin client used for the orders scan
        http_client: Shared client for the marketing feed
        now: Run time; also stamped into ``ingested_at_utc``
        days: Window override, clamped like ``SYNC_DAYS``

    Returns:
        SyncSummary

    Raises:
        IntegrationNotConfigured: Apps Script or Shopify credentials missing
        PaginationExceededError: the orders scan or store scan hit its ceiling
        UpstreamRequestError: an upstream request failed
    """
    if not settings.marketing.is_configured:
        raise IntegrationNotConfigured("apps_script", "APPS_SCRIPT_URL is required")
    if not shopify.is_configured:
        raise IntegrationNotConfigured("shopify", "Shopify store domain and access token are required")

    run_at = ensure_utc(now or utc_now())
    window_days = max(7, min(365, days)) if days else settings.reporting.sync_days
    start = run_at - timedelta(days=window_days)

    log = logger.bind(start_utc=to_iso(start), end_utc=to_iso(run_at), days=window_days)
    log.info("Sync started")

    marketing_by_hour, orders_fetch, existing_rows = await asyncio.gather(
        fetch_marketing_by_hour(settings.marketing.url, http_client, settings.http_timeout_seconds),
        shopify.fetch_orders(start, run_at),
        store.fetch_hourly_since(start),
    )

    structures = build_order_structures(orders_fetch.orders, run_at)
    merged = merge_hourly_rows(marketing_by_hour, structures.hourly, existing_rows, run_at)

    hourly_written = await store.upsert_rows("hourly", merged)
    orders_written = await store.upsert_rows("orders", structures.order_rows)
    lines_written = await store.upsert_rows("lines", structures.line_rows)

    summary = SyncSummary(
        sync_window=SyncWindow(days=window_days, start_utc=to_iso(start), end_utc=to_iso(run_at)),
        apps_script=MarketingStats(marketing_hours=len(marketing_by_hour)),
        shopify=ShopifyStats(
            orders_fetched=len(orders_fetch.orders),
            pages_fetched=orders_fetch.pages_fetched,
            hourly_points=len(structures.hourly),
            order_rows_built=len(structures.order_rows),
            line_rows_built=len(structures.line_rows),
            orders_skipped=structures.skipped,
        ),
        store=StoreStats(
            hourly_rows_input=len(merged),
            hourly_rows_written=hourly_written,
            order_rows_written=orders_written,
            line_rows_written=lines_written,
        ),
    )
    log.info("Sync complete", **summary.store.model_dump(), orders_fetched=summary.shopify.orders_fetched)
    return summary


async def sync_once(days: Optional[int] = None, create_schema: bool = False) -> SyncSummary:
    """Open the store and upstream clients from settings, sync, and close them."""
    settings = get_settings()
    async with open_row_store(settings, create_schema=create_schema) as store:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
            shopify = ShopifyAdminClient(settings.shopify, http_client=http_client)
            return await run_sync(settings, store, shopify, http_client=http_client, days=days)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Shopify orders and marketing spend into the dashboard store")
    parser.add_argument("--days", type=int, default=None, help="Sync window in days (7..365); defaults to SYNC_DAYS")
    parser.add_argument("--create-tables", action="store_true", help="Create the dashboard tables before syncing")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(log_level=args.log_level, service="dashboard-sync")
    try:
        summary = asyncio.run(sync_once(days=args.days, create_schema=args.create_tables))
    except Exception as e:
        logger.error("Sync failed", error=str(e), error_type=type(e).__name__)
        print(json.dumps({"ok": False, "error": str(e)}, indent=2))
        return 1
    print(json.dumps(summary.model_dump(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
