"""
Finance and Customer Reports

Month-to-date breakdowns over reportable orders plus the AOV and website
sessions comparisons. Every report carries ``status`` and
``unavailable_reason`` so a missing input is never shown as a zero.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from salesdash.core.calendar import to_iso
from salesdash.core.errors import DashboardError, UpstreamRequestError
from salesdash.core.numbers import pct_change, round_half_up, safe_ratio, share_pct
from salesdash.metrics.aggregation import Row, aggregate_orders, filter_between, group_order_totals
from salesdash.metrics.snapshots import (
    SOURCE_ORDERS_TABLE,
    SOURCE_SHOPIFYQL,
    MtdComparableSnapshot,
    SessionsSnapshot,
    mtd_comparable_snapshot,
    sessions_comparable_snapshot,
)
from salesdash.reports.context import ReportContext, comparison_period, error_message, period

logger = structlog.get_logger(__name__)

NO_ORDERS_REASON = "No reportable orders in the current month"
MISSING_REPORTS_SCOPE = "Missing Shopify app scope: read_reports"


def _status(ok: bool, reason: str) -> Dict[str, str]:
    return {"status": "ok" if ok else "unavailable", "unavailable_reason": "" if ok else reason}


async def build_gross_net_returns(ctx: ReportContext) -> Dict[str, Any]:
    now = ctx.now()
    month_start = ctx.calendar.start_of_month(now)
    orders = await ctx.store.fetch_orders_since(month_start)
    totals = aggregate_orders(filter_between(orders, "created_at_utc", month_start, now))
    returns_rate = share_pct(totals.returns_amount, totals.net_sales)

    return {
        "updatedAt": to_iso(now),
        **_status(totals.orders_count > 0, NO_ORDERS_REASON),
        "period": period(month_start, now),
        "gross_sales": totals.gross_sales,
        "net_sales": totals.net_sales,
        "total_sales": totals.total_sales,
        "returns_amount": totals.returns_amount,
        "returns_rate_pct_of_net": returns_rate,
        "orders_count": totals.orders_count,
    }


async def build_aov(ctx: ReportContext) -> Dict[str, Any]:
    """
    Average order value, MTD vs the previous comparable MTD.

    AOV is net sales over orders. Sales and counts each come from the
    comparable snapshot when both of its periods are present, else from the
    orders table. ``mtd_sales`` is an alias of ``mtd_net_sales`` kept for
    dashboards that read the older field name.
    """
    now = ctx.now()
    cal = ctx.calendar
    month_start = cal.start_of_month(now)
    prev_month_start = cal.add_months(month_start, -1)
    prev_end = cal.previous_mtd_comparable_end(now, month_start)

    async def comparable() -> Tuple[Optional[MtdComparableSnapshot], str]:
        try:
            return await mtd_comparable_snapshot(ctx.analytics, cal, now), ""
        except (UpstreamRequestError, httpx.HTTPError) as e:
            reason = error_message(e, "ShopifyQL comparable snapshot unavailable")
            logger.warning("Comparable snapshot unavailable for AOV", error=reason)
            return None, reason

    async def stored_orders() -> Tuple[Optional[List[Row]], str]:
        try:
            return await ctx.store.fetch_orders_since(prev_month_start), ""
        except (DashboardError, SQLAlchemyError) as e:
            reason = error_message(e, "Orders table unavailable")
            logger.warning("Orders table unavailable for AOV", error=reason)
            return None, reason

    (orders, orders_error), (snapshot, snapshot_error) = await asyncio.gather(stored_orders(), comparable())
    current = previous = None
    if orders is not None:
        current = aggregate_orders(filter_between(orders, "created_at_utc", month_start, now))
        previous = aggregate_orders(filter_between(orders, "created_at_utc", prev_month_start, prev_end))

    has_sales = snapshot is not None and snapshot.current_mtd_net_sales is not None and snapshot.previous_mtd_net_sales is not None
    has_orders = snapshot is not None and snapshot.current_mtd_orders is not None and snapshot.previous_mtd_orders is not None
    net_sales = snapshot.current_mtd_net_sales if has_sales else (current.net_sales if current is not None else None)
    previous_net_sales = snapshot.previous_mtd_net_sales if has_sales else (previous.net_sales if previous is not None else None)
    order_count = snapshot.current_mtd_orders if has_orders else (current.orders_count if current is not None else None)
    previous_order_count = snapshot.previous_mtd_orders if has_orders else (previous.orders_count if previous is not None else None)

    aov = safe_ratio(net_sales, order_count)
    previous_aov = safe_ratio(previous_net_sales, previous_order_count)
    ok = aov is not None and previous_aov is not None

    return {
        "updatedAt": to_iso(now),
        **_status(ok, orders_error or snapshot_error or "AOV data unavailable"),
        "source_sales": SOURCE_SHOPIFYQL if has_sales else SOURCE_ORDERS_TABLE,
        "source_orders": SOURCE_SHOPIFYQL if has_orders else SOURCE_ORDERS_TABLE,
        "period": comparison_period(month_start, now, prev_month_start, prev_end),
        "mtd_aov": round_half_up(aov, 2),
        "previous_period_aov": round_half_up(previous_aov, 2),
        "aov_change_pct": pct_change(aov, previous_aov),
        "mtd_orders": round_half_up(order_count, 2),
        "mtd_net_sales": round_half_up(net_sales, 2),
        "previous_mtd_net_sales": round_half_up(previous_net_sales, 2),
        "mtd_sales": round_half_up(net_sales, 2),
    }


async def build_sessions_mtd(ctx: ReportContext) -> Dict[str, Any]:
    """
    Storefront sessions MTD vs the previous comparable MTD.

    When sessions are unavailable the app's granted scopes are checked so the
    reason can name a missing ``read_reports`` scope.
    """
    now = ctx.now()
    cal = ctx.calendar
    month_start = cal.start_of_month(now)
    prev_month_start = cal.add_months(month_start, -1)
    prev_end = cal.previous_mtd_comparable_end(now, month_start)

    snapshot: Optional[SessionsSnapshot] = None
    reason = ""
    try:
        snapshot = await sessions_comparable_snapshot(ctx.analytics, cal, now)
    except (UpstreamRequestError, httpx.HTTPError) as e:
        reason = error_message(e, "Shopify sessions snapshot unavailable")
        logger.warning("Sessions snapshot unavailable", error=reason)

    current = snapshot.current_mtd if snapshot is not None else None
    previous = snapshot.previous_mtd if snapshot is not None else None
    ok = current is not None and previous is not None

    if not ok:
        try:
            scopes = await ctx.shopify.access_scopes()
        except (UpstreamRequestError, httpx.HTTPError) as e:
            logger.warning("Shopify access scopes check failed", error=str(e))
            scopes = []
        if scopes and "read_reports" not in scopes:
            reason = reason or MISSING_REPORTS_SCOPE
        if not ctx.analytics.is_configured:
            reason = reason or "Shopify credentials are not configured"

    return {
        "updatedAt": to_iso(now),
        "status": "ok" if ok else "unavailable",
        "source": snapshot.source if snapshot is not None else SOURCE_SHOPIFYQL,
        "metric": snapshot.metric if snapshot is not None else None,
        "query_used": snapshot.query_used if snapshot is not None else "",
        "unavailable_reason": "" if ok else (reason or "Sessions data unavailable"),
        "period": comparison_period(month_start, now, prev_month_start, prev_end),
        "mtd_sessions": round_half_up(current, 0),
        "previous_mtd_sessions": round_half_up(previous, 0),
        "sessions_change": round_half_up(current - previous, 0) if ok else None,
        "sessions_change_pct": pct_change(current, previous),
    }


async def build_new_vs_returning(ctx: ReportContext) -> Dict[str, Any]:
    now = ctx.now()
    month_start = ctx.calendar.start_of_month(now)
    orders = await ctx.store.fetch_orders_since(month_start)
    scoped = filter_between(orders, "created_at_utc", month_start, now)

    revenue = {"new": 0.0, "returning": 0.0, "unknown": 0.0}
    counts = {"new": 0, "returning": 0, "unknown": 0}
    for group in group_order_totals(scoped, "customer_type"):
        bucket = group["customer_type"] if group["customer_type"] in ("new", "returning") else "unknown"
        revenue[bucket] += group["revenue"]
        counts[bucket] += group["orders"]

    total_revenue = sum(revenue.values())
    return {
        "updatedAt": to_iso(now),
        **_status(sum(counts.values()) > 0, NO_ORDERS_REASON),
        "period": period(month_start, now),
        "revenue": {key: round_half_up(value, 2) for key, value in revenue.items()},
        "orders": counts,
        "shares_pct": {key: share_pct(value, total_revenue) for key, value in revenue.items()},
    }


async def build_channel_split(ctx: ReportContext) -> Dict[str, Any]:
    now = ctx.now()
    month_start = ctx.calendar.start_of_month(now)
    orders = await ctx.store.fetch_orders_since(month_start)
    groups = group_order_totals(filter_between(orders, "created_at_utc", month_start, now), "source_name")

    total_revenue = sum(group["revenue"] for group in groups)
    channels = [
        {
            "channel": group["source_name"],
            "revenue": round_half_up(group["revenue"], 2),
            "orders": group["orders"],
            "revenue_share_pct": share_pct(group["revenue"], total_revenue),
        }
        for group in sorted(groups, key=lambda g: g["revenue"], reverse=True)
    ]
    return {
        "updatedAt": to_iso(now),
        **_status(bool(channels), NO_ORDERS_REASON),
        "period": period(month_start, now),
        "total_revenue": round_half_up(total_revenue, 2),
        "channels": channels,
    }


async def build_discount_impact(ctx: ReportContext) -> Dict[str, Any]:
    now = ctx.now()
    month_start = ctx.calendar.start_of_month(now)
    orders = await ctx.store.fetch_orders_since(month_start)
    scoped = filter_between(orders, "created_at_utc", month_start, now)
    totals = aggregate_orders(scoped)
    discounted = aggregate_orders([row for row in scoped if (row.get("discounts") or 0) > 0]).orders_count

    return {
        "updatedAt": to_iso(now),
        **_status(totals.orders_count > 0, NO_ORDERS_REASON),
        "period": period(month_start, now),
        "discounted_orders_count": discounted,
        "discounted_orders_pct": share_pct(discounted, totals.orders_count),
        "total_discounts": totals.discounts,
        "avg_discount_per_order": round_half_up(safe_ratio(totals.discounts, totals.orders_count), 2),
        "discount_rate_pct_of_gross": share_pct(totals.discounts, totals.gross_sales),
    }


async def build_heatmap_today(ctx: ReportContext) -> Dict[str, Any]:
    """Today's sales and orders per UTC hour, all 24 hours present."""
    now = ctx.now()
    today_start = ctx.calendar.start_of_day(now)
    rows = filter_between(await ctx.store.fetch_hourly_since(today_start), "logged_at_utc", today_start, now)

    by_hour = {f"{h:02d}": {"sales_amount": 0.0, "orders": 0.0} for h in range(24)}
    for row in rows:
        bucket = by_hour[f"{row['logged_at_utc'].hour:02d}"]
        bucket["sales_amount"] += row.get("sales_amount") or 0.0
        bucket["orders"] += row.get("orders") or 0.0

    return {
        "updatedAt": to_iso(now),
        **_status(bool(rows), "No hourly rows logged today"),
        "day_utc": to_iso(today_start)[:10],
        "heatmap": [
            {
                "hour_utc": hour,
                "sales_amount": round_half_up(values["sales_amount"], 2),
                "orders": round_half_up(values["orders"], 2),
            }
            for hour, values in sorted(by_hour.items())
        ],
    }
