"""
Product Reports

Top products, week-over-week momentum and the refund watchlist. All of them
read order lines restricted to reportable orders.
"""

from typing import Any, Dict, List

from salesdash.core.calendar import ONE_MS, to_iso
from salesdash.core.numbers import is_finite, pct_change, round_half_up, share_pct
from salesdash.metrics.aggregation import aggregate_products, filter_between
from salesdash.reports.context import ReportContext, period

PRODUCT_METRICS = ("units", "revenue")


async def build_top_products(ctx: ReportContext, metric: str = "units", limit: int = 10) -> Dict[str, Any]:
    """
    Month-to-date best sellers ranked by net units or net revenue.

    Both variants report their share of the month total for the ranking
    metric.
    """
    if metric not in PRODUCT_METRICS:
        raise ValueError(f"Unsupported product metric: {metric}")

    now = ctx.now()
    month_start = ctx.calendar.start_of_month(now)
    products = aggregate_products(await ctx.reportable_lines(month_start, now))
    total = sum(p[metric] for p in products)
    ranked = sorted(products, key=lambda p: p[metric], reverse=True)[:limit]

    rows = []
    for rank, product in enumerate(ranked, start=1):
        rows.append({
            "rank": rank,
            "product_key": product["product_key"],
            "product_id": product["product_id"],
            "title": product["title"],
            "units": round_half_up(product["units"], 2),
            "revenue": round_half_up(product["revenue"], 2),
            f"{'unit' if metric == 'units' else 'revenue'}_share_pct": share_pct(product[metric], total),
        })

    return {
        "updatedAt": to_iso(now),
        "period": period(month_start, now),
        f"total_{metric}": round_half_up(total, 2),
        "products": rows,
    }


def rank_momentum(current: List[Dict[str, Any]], previous: List[Dict[str, Any]], metric: str) -> List[Dict[str, Any]]:
    """
    Per-product change between two product rollups, largest gain first.

    Ranking is by absolute delta, so a product that grew by 30 outranks one
    that grew by 10 regardless of volume. Products absent from ``current``
    are not listed.
    """
    previous_by_key = {p["product_key"]: p for p in previous}
    merged = []
    for product in current:
        prior = previous_by_key.get(product["product_key"])
        current_value = product[metric]
        previous_value = prior[metric] if prior else 0.0
        merged.append({
            "product_key": product["product_key"],
            "title": product["title"],
            "metric": metric,
            "current_value": round_half_up(current_value, 2),
            "previous_value": round_half_up(previous_value, 2),
            "delta": round_half_up(current_value - previous_value, 2),
            "delta_pct": pct_change(current_value, previous_value),
        })
    return sorted(merged, key=lambda item: item["delta"] or 0.0, reverse=True)


async def build_product_momentum(ctx: ReportContext, metric: str = "revenue", limit: int = 10) -> Dict[str, Any]:
    """Trailing 7 local days vs the 7 days before them."""
    metric = metric if metric in PRODUCT_METRICS else "revenue"
    now = ctx.now()
    cal = ctx.calendar
    this_week_start = cal.add_days(now, -6)
    prev_week_start = cal.add_days(this_week_start, -7)
    prev_week_end = this_week_start - ONE_MS

    lines = await ctx.reportable_lines(prev_week_start, now)
    this_week = aggregate_products(filter_between(lines, "created_at_utc", this_week_start, now))
    prev_week = aggregate_products(filter_between(lines, "created_at_utc", prev_week_start, prev_week_end))

    return {
        "updatedAt": to_iso(now),
        "metric": metric,
        "windows": {
            "this_week_start_utc": to_iso(this_week_start),
            "this_week_end_utc": to_iso(now),
            "prev_week_start_utc": to_iso(prev_week_start),
            "prev_week_end_utc": to_iso(prev_week_end),
        },
        "products": rank_momentum(this_week, prev_week, metric)[:limit],
    }


def build_watchlist(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Products with returns, highest return rate first.

    Return rate is returned units over units sold (net + returned); ties go
    to the larger returned revenue and a missing rate sorts last.
    """
    items = []
    for product in products:
        sold = product["units"] + product["returned_units"]
        if not product["returned_units"] > 0:
            continue
        items.append({
            "product_key": product["product_key"],
            "product_id": product["product_id"],
            "title": product["title"],
            "sold_units": round_half_up(sold, 2),
            "returned_units": round_half_up(product["returned_units"], 2),
            "return_rate_pct": share_pct(product["returned_units"], sold),
            "returned_revenue": round_half_up(product["returned_revenue"], 2),
        })

    def sort_key(item):
        rate = item["return_rate_pct"]
        return (rate if is_finite(rate) else -1.0, item["returned_revenue"] or 0.0)

    return sorted(items, key=sort_key, reverse=True)


async def build_refund_watchlist(ctx: ReportContext, limit: int = 10) -> Dict[str, Any]:
    now = ctx.now()
    month_start = ctx.calendar.start_of_month(now)
    products = aggregate_products(await ctx.reportable_lines(month_start, now))
    return {
        "updatedAt": to_iso(now),
        "period": period(month_start, now),
        "products": build_watchlist(products)[:limit],
    }
