"""
Hourly Row Reports

Raw hourly rows, trend series and data-quality views over a trailing window
of ``days``.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List

from salesdash.core.calendar import to_iso
from salesdash.metrics.aggregation import build_quality, build_source_coverage, daily_series, hourly_series
from salesdash.reports.context import ReportContext

Row = Dict[str, Any]


def serialize_row(row: Row) -> Row:
    """Row with datetimes rendered as ISO-8601 UTC strings."""
    return {key: to_iso(value) if isinstance(value, datetime) else value for key, value in row.items()}


async def _rows_for_days(ctx: ReportContext, days: int) -> List[Row]:
    return await ctx.store.fetch_hourly_since(ctx.now() - timedelta(days=days))


async def build_clean(ctx: ReportContext, days: int = 120) -> Dict[str, Any]:
    rows = [serialize_row(row) for row in await _rows_for_days(ctx, days)]
    return {
        "updatedAt": to_iso(ctx.now()),
        "days": days,
        "rowCount": len(rows),
        "rows": rows,
        "data": rows,
    }


async def build_latest(ctx: ReportContext) -> Dict[str, Any]:
    """Most recent hourly row of the last 7 days, or null."""
    rows = await _rows_for_days(ctx, 7)
    return {
        "updatedAt": to_iso(ctx.now()),
        "latest": serialize_row(rows[-1]) if rows else None,
    }


async def build_hourly_trend(ctx: ReportContext, days: int = 30) -> Dict[str, Any]:
    series = hourly_series(await _rows_for_days(ctx, days))
    return {"updatedAt": to_iso(ctx.now()), "days": days, "points": len(series), "series": series}


async def build_daily_trend(ctx: ReportContext, days: int = 90) -> Dict[str, Any]:
    series = daily_series(await _rows_for_days(ctx, days))
    return {"updatedAt": to_iso(ctx.now()), "days": days, "points": len(series), "series": series}


async def build_quality_report(ctx: ReportContext, days: int = 30) -> Dict[str, Any]:
    rows = await _rows_for_days(ctx, days)
    return {"updatedAt": to_iso(ctx.now()), "days": days, "quality": build_quality(rows, ctx.now())}


async def build_sources_report(ctx: ReportContext, days: int = 30) -> Dict[str, Any]:
    rows = await _rows_for_days(ctx, days)
    return {"updatedAt": to_iso(ctx.now()), "days": days, "sources": build_source_coverage(rows)}
