"""
Pace, Projection and Sales Goal Reports
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from salesdash.config.settings import ReportingSettings
from salesdash.core.calendar import ONE_MS, to_iso
from salesdash.core.numbers import format_amount, is_finite, round_half_up, safe_ratio
from salesdash.metrics.aggregation import OrderTotals, aggregate_orders, filter_between
from salesdash.metrics.snapshots import (
    SOURCE_ORDERS_TABLE,
    SOURCE_SHOPIFYQL,
    MonthSnapshot,
    guarded,
    month_field,
    month_snapshot,
    resolve_first,
)
from salesdash.reports.context import ReportContext

Row = Dict[str, Any]


async def _month_inputs(
    ctx: ReportContext, now: datetime, with_previous: bool
) -> Tuple[List[Row], Optional[MonthSnapshot]]:
    cal = ctx.calendar
    month_start = cal.start_of_month(now)
    since = cal.add_months(month_start, -1) if with_previous else month_start
    orders, snapshot = await asyncio.gather(
        ctx.store.fetch_orders_since(since),
        guarded(month_snapshot(ctx.analytics, cal, now), "month"),
    )
    return orders, snapshot


def _mtd_values(snapshot: Optional[MonthSnapshot], totals: OrderTotals) -> Dict[str, Any]:
    total = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "current", "total_sales")),
        (SOURCE_ORDERS_TABLE, totals.total_sales),
    )
    gross = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "current", "gross_sales")),
        (SOURCE_ORDERS_TABLE, totals.gross_sales),
    )
    net = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "current", "net_sales")),
        (SOURCE_ORDERS_TABLE, totals.net_sales),
    )
    return {
        "sales_source": total.source,
        "mtd_sales": round_half_up(total.value, 2),
        "mtd_gross_sales": round_half_up(gross.value, 2),
        "mtd_net_sales": round_half_up(net.value, 2),
    }


async def build_daily_pace(ctx: ReportContext) -> Dict[str, Any]:
    """
    Sales needed per remaining day to reach the month target.

    The target is MONTHLY_SALES_TARGET when set, else last month's total.
    """
    now = ctx.now()
    cal = ctx.calendar
    month_start = cal.start_of_month(now)
    prev_month_start = cal.add_months(month_start, -1)
    prev_month_end = month_start - ONE_MS

    orders, snapshot = await _month_inputs(ctx, now, with_previous=True)
    month_rows = filter_between(orders, "created_at_utc", month_start, now)
    mtd_totals = aggregate_orders(month_rows)
    prev_totals = aggregate_orders(filter_between(orders, "created_at_utc", prev_month_start, prev_month_end))
    mtd = _mtd_values(snapshot, mtd_totals)

    prev_total = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "previous", "total_sales")),
        (SOURCE_ORDERS_TABLE, prev_totals.total_sales),
    )
    prev_gross = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "previous", "gross_sales")),
        (SOURCE_ORDERS_TABLE, prev_totals.gross_sales),
    )
    prev_net = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "previous", "net_sales")),
        (SOURCE_ORDERS_TABLE, prev_totals.net_sales),
    )

    override = ctx.settings.reporting.monthly_sales_target
    if is_finite(override):
        target: Optional[float] = override
    else:
        target = prev_total.value or None

    today_sales = aggregate_orders(filter_between(month_rows, "created_at_utc", cal.start_of_day(now), now)).total_sales
    days_elapsed = cal.day_of_month(now)
    days_remaining = max(0, cal.days_in_month(now) - days_elapsed)
    required = None
    if is_finite(target) and target > 0:
        required = max(0.0, (target - (mtd["mtd_sales"] or 0.0)) / max(1, days_remaining))

    return {
        "updatedAt": to_iso(now),
        "target_source": "env_monthly_sales_target" if is_finite(override) else "previous_month_total_sales",
        "sales_source": mtd["sales_source"],
        "month_goal": round_half_up(target, 2),
        "mtd_sales": mtd["mtd_sales"],
        "mtd_gross_sales": mtd["mtd_gross_sales"],
        "mtd_net_sales": mtd["mtd_net_sales"],
        "today_sales": round_half_up(today_sales, 2),
        "required_daily_pace": round_half_up(required, 2),
        "on_track_today": today_sales >= required if required is not None else None,
        "previous_month_gross_sales": round_half_up(prev_gross.value, 2),
        "previous_month_total_sales": round_half_up(prev_total.value, 2),
        "previous_month_net_sales": round_half_up(prev_net.value, 2),
        "previous_month_orders": prev_totals.orders_count,
        "days_elapsed": days_elapsed,
        "days_remaining": days_remaining,
    }


async def build_projection(ctx: ReportContext) -> Dict[str, Any]:
    """Straight-line month-end projection from the MTD daily run rate."""
    now = ctx.now()
    cal = ctx.calendar
    month_start = cal.start_of_month(now)

    orders, snapshot = await _month_inputs(ctx, now, with_previous=False)
    mtd = _mtd_values(snapshot, aggregate_orders(filter_between(orders, "created_at_utc", month_start, now)))

    days_elapsed = cal.day_of_month(now)
    days_in_month = cal.days_in_month(now)
    run_rate = (mtd["mtd_sales"] or 0.0) / days_elapsed if days_elapsed > 0 else None
    projected = run_rate * days_in_month if run_rate is not None else None

    goal = ctx.settings.reporting.monthly_sales_target
    has_goal = is_finite(goal) and goal > 0
    progress = ((mtd["mtd_sales"] or 0.0) / goal * 100) if has_goal else None
    projected_vs_target = ((projected - goal) / goal * 100) if has_goal and projected is not None else None

    return {
        "updatedAt": to_iso(now),
        "sales_source": mtd["sales_source"],
        "mtd_sales": mtd["mtd_sales"],
        "mtd_gross_sales": mtd["mtd_gross_sales"],
        "mtd_net_sales": mtd["mtd_net_sales"],
        "progress_pct_of_target": round_half_up(progress, 2),
        "projected_month_end_sales": round_half_up(projected, 2),
        "projected_vs_target_pct": round_half_up(projected_vs_target, 2),
        "run_rate_daily_sales": round_half_up(run_rate, 2),
        "month_goal": round_half_up(goal, 2) if is_finite(goal) else None,
        "days_elapsed": days_elapsed,
        "days_in_month": days_in_month,
    }


def resolve_sales_target(
    reporting: ReportingSettings, month_key: str, previous_month_total: Optional[float]
) -> Tuple[Optional[float], str]:
    """
    Month target and where it came from.

    Precedence: SALES_TARGETS_BY_MONTH[month_key], MONTHLY_SALES_TARGET,
    then last month's total times SALES_TARGET_MULTIPLIER.
    """
    by_month = reporting.sales_targets_by_month.get(month_key)
    if is_finite(by_month) and by_month > 0:
        return float(by_month), "month_target"
    fixed = reporting.monthly_sales_target
    if is_finite(fixed) and fixed > 0:
        return float(fixed), "fixed_target"
    if is_finite(previous_month_total) and previous_month_total > 0:
        multiplier = reporting.sales_target_multiplier if reporting.sales_target_multiplier > 0 else 1.0
        return round_half_up(previous_month_total * multiplier, 2), "previous_month_multiplier"
    return None, "unavailable"


def compute_sales_goal(
    current: Optional[float],
    previous_month_total: Optional[float],
    reporting: ReportingSettings,
    month_key: str,
    days_elapsed: int,
    days_in_month: int,
) -> Dict[str, Any]:
    target, target_source = resolve_sales_target(reporting, month_key, previous_month_total)
    expected = round_half_up(days_elapsed / days_in_month * 100, 2) if days_in_month > 0 else None
    goal: Dict[str, Any] = {
        "month": month_key,
        "status": "unavailable",
        "target": target,
        "target_source": target_source,
        "multiplier": reporting.sales_target_multiplier if reporting.sales_target_multiplier > 0 else 1.0,
        "current": round_half_up(current, 2),
        "previous_month_total": round_half_up(previous_month_total, 2),
        "beat_target": None,
        "gap_target": None,
        "progress_pct": None,
        "expected_progress_pct": expected,
        "on_pace": None,
        "days_elapsed": days_elapsed,
        "days_in_month": days_in_month,
    }
    if not is_finite(current) or target is None:
        return goal

    beat = current >= target
    gap = current - target
    progress = round_half_up(safe_ratio(current, target) * 100, 2)
    on_pace = progress >= expected if expected is not None else current >= target * 0.5
    goal.update({
        "status": "target_achieved" if beat else ("on_pace" if on_pace else "behind_pace"),
        "beat_target": beat,
        "gap_target": f"+{format_amount(gap)}" if gap >= 0 else f"-{format_amount(-gap)}",
        "progress_pct": progress,
        "on_pace": on_pace,
    })
    return goal


async def build_sales_goal(ctx: ReportContext) -> Dict[str, Any]:
    now = ctx.now()
    cal = ctx.calendar
    month_start = cal.start_of_month(now)
    prev_month_start = cal.add_months(month_start, -1)

    orders, snapshot = await _month_inputs(ctx, now, with_previous=True)
    current = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "current", "total_sales")),
        (SOURCE_ORDERS_TABLE, aggregate_orders(filter_between(orders, "created_at_utc", month_start, now)).total_sales),
    )
    prev_rows = filter_between(orders, "created_at_utc", prev_month_start, month_start - ONE_MS)
    previous = resolve_first(
        (SOURCE_SHOPIFYQL, month_field(snapshot, "previous", "total_sales")),
        (SOURCE_ORDERS_TABLE, aggregate_orders(prev_rows).total_sales if prev_rows else None),
    )

    goal = compute_sales_goal(
        current.value,
        previous.value,
        ctx.settings.reporting,
        cal.to_ym(now),
        cal.day_of_month(now),
        cal.days_in_month(now),
    )
    return {"updatedAt": to_iso(now), "sales_source": current.source, **goal}
