"""
Dashboard API Endpoints

Read-only JSON reports for the dashboard. Every handler delegates to a
report builder; failures propagate to the error boundary in the request
middleware, except ``/cells`` which is all-settled.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from salesdash.reports import (
    ReportContext,
    build_aov,
    build_cells,
    build_channel_split,
    build_clean,
    build_daily_pace,
    build_daily_trend,
    build_discount_impact,
    build_gross_net_returns,
    build_heatmap_today,
    build_hourly_trend,
    build_latest,
    build_new_vs_returning,
    build_product_momentum,
    build_projection,
    build_quality_report,
    build_refund_watchlist,
    build_sales_goal,
    build_sessions_mtd,
    build_sources_report,
    build_summary,
    build_top_products,
    build_ytd,
)
from salesdash.serving.api.dependencies import get_report_context, parse_days, parse_limit, parse_metric

router = APIRouter()

Payload = Dict[str, Any]


# =============================================================================
# HOURLY ROWS
# =============================================================================

@router.get("/clean")
async def get_clean(days: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_clean(ctx, parse_days(days, 120, 365))


@router.get("/latest")
async def get_latest(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_latest(ctx)


@router.get("/trend/hourly")
async def get_hourly_trend(days: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_hourly_trend(ctx, parse_days(days, 30, 365))


@router.get("/trend/daily")
async def get_daily_trend(days: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_daily_trend(ctx, parse_days(days, 90, 730))


@router.get("/quality")
async def get_quality(days: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_quality_report(ctx, parse_days(days, 30, 365))


@router.get("/sources")
async def get_sources(days: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_sources_report(ctx, parse_days(days, 30, 365))


# =============================================================================
# KPIS AND PACE
# =============================================================================

@router.get("/summary")
@router.get("/kpis")
async def get_summary(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    """Month-to-date KPI bundle; ``/kpis`` is an alias."""
    return await build_summary(ctx)


@router.get("/ytd")
async def get_ytd(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_ytd(ctx)


@router.get("/cells")
async def get_cells(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    """Every dashboard cell in one response; a failed cell is null and listed under ``errors``."""
    return await build_cells(ctx)


@router.get("/pace")
async def get_pace(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_daily_pace(ctx)


@router.get("/projection")
async def get_projection(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_projection(ctx)


@router.get("/goal")
async def get_goal(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_sales_goal(ctx)


# =============================================================================
# PRODUCTS
# =============================================================================

@router.get("/products/top-units")
async def get_top_units(limit: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_top_products(ctx, "units", parse_limit(limit))


@router.get("/products/top-revenue")
async def get_top_revenue(limit: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_top_products(ctx, "revenue", parse_limit(limit))


@router.get("/products/momentum")
async def get_momentum(
    metric: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    ctx: ReportContext = Depends(get_report_context),
) -> Payload:
    return await build_product_momentum(ctx, parse_metric(metric), parse_limit(limit))


@router.get("/refund-watchlist")
async def get_refund_watchlist(limit: Optional[str] = Query(None), ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_refund_watchlist(ctx, parse_limit(limit))


# =============================================================================
# FINANCE AND CUSTOMERS
# =============================================================================

@router.get("/finance/gross-net-returns")
async def get_gross_net_returns(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_gross_net_returns(ctx)


@router.get("/aov")
async def get_aov(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_aov(ctx)


@router.get("/sessions/mtd")
async def get_sessions_mtd(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_sessions_mtd(ctx)


@router.get("/customers/new-vs-returning")
async def get_new_vs_returning(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_new_vs_returning(ctx)


@router.get("/channels")
async def get_channels(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_channel_split(ctx)


@router.get("/discount-impact")
async def get_discount_impact(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_discount_impact(ctx)


@router.get("/heatmap/today")
async def get_heatmap_today(ctx: ReportContext = Depends(get_report_context)) -> Payload:
    return await build_heatmap_today(ctx)
