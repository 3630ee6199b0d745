"""
KPI Reports

Month-to-date KPI bundle and year-to-date comparison. Sales and order
figures prefer the analytics snapshots and fall back to stored order rows;
ad spend always comes from the hourly rows.
"""

import asyncio
from typing import Any, Dict

from salesdash.core.calendar import ONE_MS, to_iso
from salesdash.core.numbers import pct_change, round_half_up, safe_ratio
from salesdash.metrics.aggregation import aggregate_hourly, aggregate_orders, filter_between, filter_reportable
from salesdash.metrics.snapshots import (
    SOURCE_ORDERS_TABLE,
    SOURCE_SHOPIFYQL,
    SOURCE_UNAVAILABLE,
    guarded,
    month_field,
    month_snapshot,
    mtd_comparable_snapshot,
    resolve_first,
    same_time_snapshot,
    snapshot_field,
    ytd_comparable_snapshot,
)
from salesdash.reports.context import ReportContext, comparison_period


async def build_summary(ctx: ReportContext) -> Dict[str, Any]:
    """
    MTD KPI bundle: current vs previous comparable MTD.

    Headline values use the comparable daily snapshot, then the month
    snapshot, then the orders table. Percentage changes for sales and orders
    prefer the same-time snapshot and are rounded to whole percents.
    """
    now = ctx.now()
    cal = ctx.calendar
    month_start = cal.start_of_month(now)
    prev_month_start = cal.add_months(month_start, -1)
    prev_end = cal.previous_mtd_comparable_end(now, month_start)

    orders, hourly, month, comparable, same_time = await asyncio.gather(
        ctx.store.fetch_orders_since(prev_month_start),
        ctx.store.fetch_hourly_since(prev_month_start),
        guarded(month_snapshot(ctx.analytics, cal, now), "month"),
        guarded(mtd_comparable_snapshot(ctx.analytics, cal, now), "mtd_comparable"),
        guarded(same_time_snapshot(ctx.analytics, ctx.shopify, cal, now), "same_time"),
    )

    current_rows = filter_reportable(filter_between(orders, "created_at_utc", month_start, now))
    previous_rows = filter_reportable(filter_between(orders, "created_at_utc", prev_month_start, prev_end))
    current_totals = aggregate_orders(current_rows)
    previous_totals = aggregate_orders(previous_rows)
    current_hourly = aggregate_hourly(filter_between(hourly, "logged_at_utc", month_start, now))
    previous_hourly = aggregate_hourly(filter_between(hourly, "logged_at_utc", prev_month_start, prev_end))

    sales = resolve_first(
        (SOURCE_SHOPIFYQL, snapshot_field(comparable, "current_mtd")),
        (SOURCE_SHOPIFYQL, month_field(month, "current", "total_sales")),
        (SOURCE_ORDERS_TABLE, current_totals.total_sales),
    )
    previous_sales = resolve_first(
        (SOURCE_SHOPIFYQL, snapshot_field(comparable, "previous_mtd")),
        (SOURCE_ORDERS_TABLE, previous_totals.total_sales),
    )
    orders_count = resolve_first(
        (SOURCE_SHOPIFYQL, snapshot_field(comparable, "current_mtd_orders")),
        (SOURCE_ORDERS_TABLE, current_totals.orders_count),
    )
    previous_orders = resolve_first(
        (SOURCE_SHOPIFYQL, snapshot_field(comparable, "previous_mtd_orders")),
        (SOURCE_ORDERS_TABLE, previous_totals.orders_count),
    )
    net_sales = resolve_first(
        (SOURCE_SHOPIFYQL, snapshot_field(comparable, "current_mtd_net_sales")),
        (SOURCE_SHOPIFYQL, month_field(month, "current", "net_sales")),
        (SOURCE_ORDERS_TABLE, current_totals.net_sales),
    )
    previous_net_sales = resolve_first(
        (SOURCE_SHOPIFYQL, snapshot_field(comparable, "previous_mtd_net_sales")),
        (SOURCE_ORDERS_TABLE, previous_totals.net_sales),
    )

    ad_spend = current_hourly["ad_spend"]
    previous_ad_spend = previous_hourly["ad_spend"]
    aov = safe_ratio(net_sales.value, orders_count.value)
    previous_aov = safe_ratio(previous_net_sales.value, previous_orders.value)
    roas = safe_ratio(sales.value, ad_spend)
    previous_roas = safe_ratio(previous_sales.value, previous_ad_spend)

    # Change percentages compare equal elapsed durations when available
    sales_for_change = resolve_first(("same_time", snapshot_field(same_time, "current_mtd_sales")), ("mtd", sales.value))
    prev_sales_for_change = resolve_first(
        ("same_time", snapshot_field(same_time, "previous_mtd_sales")), ("mtd", previous_sales.value)
    )
    orders_for_change = resolve_first(
        ("same_time", snapshot_field(same_time, "current_mtd_orders")), ("mtd", orders_count.value)
    )
    prev_orders_for_change = resolve_first(
        ("same_time", snapshot_field(same_time, "previous_mtd_orders")), ("mtd", previous_orders.value)
    )

    current = {
        "sales_amount": round_half_up(sales.value, 2),
        "orders": round_half_up(orders_count.value, 2),
        "ad_spend": round_half_up(ad_spend, 2),
        "roas": round_half_up(roas, 4),
        "aov": round_half_up(aov, 2),
        "row_count": len(current_rows),
    }
    previous = {
        "sales_amount": round_half_up(previous_sales.value, 2),
        "orders": round_half_up(previous_orders.value, 2),
        "ad_spend": round_half_up(previous_ad_spend, 2),
        "roas": round_half_up(previous_roas, 4),
        "aov": round_half_up(previous_aov, 2),
        "row_count": len(previous_rows),
    }

    summary = {
        "mtd_sales": current["sales_amount"],
        "mtd_orders": current["orders"],
        "mtd_ad_spend": current["ad_spend"],
        "mtd_roas": current["roas"],
        "mtd_aov": current["aov"],
        "sales_source": sales.source,
    }
    kpis = {
        "current": current,
        "previous": previous,
        "change": {
            "sales_amount_pct": pct_change(sales_for_change.value, prev_sales_for_change.value, 0),
            "orders_pct": pct_change(orders_for_change.value, prev_orders_for_change.value, 0),
            "ad_spend_pct": pct_change(current["ad_spend"], previous["ad_spend"]),
            "roas_pct": pct_change(current["roas"], previous["roas"]),
            "aov_pct": pct_change(aov, previous_aov),
        },
    }

    return {
        "updatedAt": to_iso(now),
        "window": {
            **comparison_period(month_start, now, prev_month_start, prev_end),
            "reporting_timezone": ctx.reporting_timezone,
        },
        "summary": summary,
        "kpis": kpis,
    }


async def build_ytd(ctx: ReportContext) -> Dict[str, Any]:
    """
    Year-to-date vs the same local date and time last year.

    Without a snapshot and without stored rows a value is null, not zero.
    """
    now = ctx.now()
    cal = ctx.calendar
    year_start = cal.start_of_year(now)
    prev_year_start = cal.add_years(year_start, -1)
    prev_end = cal.previous_ytd_comparable_end(now)
    prev_year_end = year_start - ONE_MS

    snapshot, orders = await asyncio.gather(
        guarded(ytd_comparable_snapshot(ctx.analytics, cal, now), "ytd_comparable"),
        ctx.store.fetch_orders_since(prev_year_start),
    )

    current_rows = filter_reportable(filter_between(orders, "created_at_utc", year_start, now))
    previous_rows = filter_reportable(filter_between(orders, "created_at_utc", prev_year_start, prev_end))
    full_year_rows = filter_reportable(filter_between(orders, "created_at_utc", prev_year_start, prev_year_end))
    current_totals = aggregate_orders(current_rows)
    previous_totals = aggregate_orders(previous_rows)
    full_year_totals = aggregate_orders(full_year_rows)

    def pick(name: str, rows, value):
        return resolve_first(
            (SOURCE_SHOPIFYQL, snapshot_field(snapshot, name)),
            (SOURCE_ORDERS_TABLE, value if rows else None),
        )

    sales = pick("current_ytd_sales", current_rows, current_totals.total_sales)
    previous_sales = pick("previous_ytd_sales", previous_rows, previous_totals.total_sales)
    orders_count = pick("current_ytd_orders", current_rows, current_totals.orders_count)
    previous_orders = pick("previous_ytd_orders", previous_rows, previous_totals.orders_count)
    full_year_sales = pick("previous_full_year_sales", full_year_rows, full_year_totals.total_sales)
    full_year_orders = pick("previous_full_year_orders", full_year_rows, full_year_totals.orders_count)
    sales_pct = pct_change(sales.value, previous_sales.value)

    return {
        "updatedAt": to_iso(now),
        "period": {
            **comparison_period(year_start, now, prev_year_start, prev_end),
            "reporting_timezone": ctx.reporting_timezone,
            "comparison_basis": "same_local_datetime_previous_year",
        },
        "current": {
            "sales_amount": round_half_up(sales.value, 2),
            "orders": round_half_up(orders_count.value, 0),
            "row_count": len(current_rows),
        },
        "previous": {
            "sales_amount": round_half_up(previous_sales.value, 2),
            "orders": round_half_up(previous_orders.value, 0),
            "row_count": len(previous_rows),
        },
        "previous_year": {
            "sales_amount": round_half_up(full_year_sales.value, 2),
            "orders": round_half_up(full_year_orders.value, 0),
            "row_count": len(full_year_rows),
            "start_utc": to_iso(prev_year_start),
            "end_utc": to_iso(prev_year_end),
        },
        "change": {
            "sales_amount_pct": sales_pct,
            "orders_pct": pct_change(orders_count.value, previous_orders.value),
            "growth_rate_pct": sales_pct,
        },
        "source": {
            "sales": sales.source if sales.available else SOURCE_UNAVAILABLE,
            "orders": orders_count.source if orders_count.available else SOURCE_UNAVAILABLE,
        },
    }
