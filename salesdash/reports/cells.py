"""
Dashboard Cells

Runs every dashboard report concurrently and collects them into one payload.
The fan-out is all-settled: a failing report becomes ``null`` and its error
message is listed under ``errors``; the rest are returned unchanged.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict

import structlog

from salesdash.core.calendar import to_iso
from salesdash.reports.context import ReportContext, error_message
from salesdash.reports.finance import (
    build_aov,
    build_channel_split,
    build_discount_impact,
    build_gross_net_returns,
    build_heatmap_today,
    build_new_vs_returning,
    build_sessions_mtd,
)
from salesdash.reports.kpis import build_summary, build_ytd
from salesdash.reports.pace import build_daily_pace, build_projection, build_sales_goal
from salesdash.reports.products import build_product_momentum, build_refund_watchlist, build_top_products

logger = structlog.get_logger(__name__)

CellJob = Callable[[ReportContext], Awaitable[Dict[str, Any]]]

CELL_JOBS: Dict[str, CellJob] = {
    "summary": build_summary,
    "ytd_comparison": build_ytd,
    "top_products_units": lambda ctx: build_top_products(ctx, "units", 10),
    "top_products_revenue": lambda ctx: build_top_products(ctx, "revenue", 10),
    "product_momentum": lambda ctx: build_product_momentum(ctx, "revenue", 10),
    "daily_sales_pace": build_daily_pace,
    "mtd_projection": build_projection,
    "sales_goal": build_sales_goal,
    "gross_net_returns": build_gross_net_returns,
    "aov": build_aov,
    "website_sessions_mtd": build_sessions_mtd,
    "new_vs_returning": build_new_vs_returning,
    "channel_split": build_channel_split,
    "discount_impact": build_discount_impact,
    "hourly_heatmap_today": build_heatmap_today,
    "refund_watchlist": lambda ctx: build_refund_watchlist(ctx, 10),
}


async def build_cells(ctx: ReportContext, jobs: Dict[str, CellJob] = CELL_JOBS) -> Dict[str, Any]:
    names = list(jobs)
    results = await asyncio.gather(*(jobs[name](ctx) for name in names), return_exceptions=True)

    cells: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            cells[name] = None
            errors[name] = error_message(result)
            logger.warning("Dashboard cell failed", cell=name, error=errors[name])
        else:
            cells[name] = result

    summary = cells.pop("summary", None)
    return {
        "updatedAt": to_iso(ctx.now()),
        "summary": summary.get("summary") if summary else None,
        "kpis": summary.get("kpis") if summary else None,
        **cells,
        "errors": errors,
    }
