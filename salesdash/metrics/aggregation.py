"""
Aggregation Primitives

Pure rollups over normalized row dicts. Every function is total: empty input
gives zeroed structures, missing numbers count as zero, and the result does
not depend on row order (apart from series that are sorted explicitly).

Order rollups apply the reportable predicate themselves: voided, cancelled
and test orders never reach a sum.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import polars as pl

from salesdash.core.calendar import ensure_utc, hour_key_from_datetime, to_iso
from salesdash.core.numbers import is_finite, round_half_up, safe_ratio, to_number

Row = Dict[str, Any]

ORDER_AMOUNTS = ["gross_sales", "net_sales", "total_sales", "discounts", "returns_amount"]
HOURLY_AMOUNTS = ["sales_amount", "orders", "ad_spend"]
LINE_AMOUNTS = ["net_quantity", "net_revenue_after_returns", "gross_revenue", "returned_quantity", "returned_revenue"]


def frame(rows: Sequence[Row], schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    """
    Build a DataFrame with an explicit schema from row dicts.

    Float columns go through ``to_number`` so strings and non-finite values
    become nulls instead of failing the build.
    """
    columns: Dict[str, List[Any]] = {}
    for name, dtype in schema.items():
        values = [row.get(name) for row in rows]
        if dtype == pl.Float64:
            values = [to_number(v) for v in values]
        elif dtype == pl.Utf8:
            values = [None if v is None else str(v) for v in values]
        columns[name] = values
    return pl.DataFrame(columns, schema=schema)


def _sums(df: pl.DataFrame, names: Iterable[str]) -> Dict[str, float]:
    if df.is_empty():
        return {name: 0.0 for name in names}
    totals = df.select([pl.col(name).fill_null(0.0).sum().alias(name) for name in names]).row(0, named=True)
    return {name: float(totals[name] or 0.0) for name in names}


# =============================================================================
# ORDERS
# =============================================================================

def is_reportable_order(row: Row) -> bool:
    """Not voided, not cancelled and not a test order."""
    if str(row.get("financial_status") or "").lower() == "voided":
        return False
    if row.get("cancelled_at_utc"):
        return False
    if row.get("is_test") is True:
        return False
    return True


def filter_reportable(rows: Iterable[Row]) -> List[Row]:
    return [row for row in rows if is_reportable_order(row)]


@dataclass
class OrderTotals:
    gross_sales: float = 0.0
    net_sales: float = 0.0
    total_sales: float = 0.0
    discounts: float = 0.0
    returns_amount: float = 0.0
    orders_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ORDER_SCHEMA = {name: pl.Float64 for name in ORDER_AMOUNTS}


def aggregate_orders(rows: Sequence[Row]) -> OrderTotals:
    reportable = filter_reportable(rows)
    sums = _sums(frame(reportable, ORDER_SCHEMA), ORDER_AMOUNTS)
    return OrderTotals(
        **{name: round_half_up(value, 2) for name, value in sums.items()},
        orders_count=len(reportable),
    )


def group_order_totals(rows: Sequence[Row], key: str, default: str = "unknown") -> List[Row]:
    """
    Revenue (total sales) and order count per value of ``key``.

    Only reportable orders count. Groups keep first-seen order.
    """
    reportable = filter_reportable(rows)
    if not reportable:
        return []
    df = frame(reportable, {key: pl.Utf8, "total_sales": pl.Float64})
    grouped = (
        df.with_columns(pl.col(key).fill_null(default))
        .group_by(key, maintain_order=True)
        .agg([
            pl.col("total_sales").fill_null(0.0).sum().alias("revenue"),
            pl.len().alias("orders"),
        ])
    )
    return grouped.to_dicts()


# =============================================================================
# HOURLY
# =============================================================================

HOURLY_SCHEMA = {name: pl.Float64 for name in HOURLY_AMOUNTS}


def aggregate_hourly(rows: Sequence[Row]) -> Dict[str, Any]:
    sums = _sums(frame(rows, HOURLY_SCHEMA), HOURLY_AMOUNTS)
    return {
        "sales_amount": round_half_up(sums["sales_amount"], 2),
        "orders": round_half_up(sums["orders"], 2),
        "ad_spend": round_half_up(sums["ad_spend"], 2),
        "roas": round_half_up(safe_ratio(sums["sales_amount"], sums["ad_spend"]), 4),
        "aov": round_half_up(safe_ratio(sums["sales_amount"], sums["orders"]), 2),
        "row_count": len(rows),
    }


def hourly_series(rows: Sequence[Row]) -> List[Row]:
    """Per-row hourly trend points, in store order."""
    series = []
    for row in rows:
        sales, orders = row.get("sales_amount"), row.get("orders")
        aov = round_half_up(sales / orders, 2) if is_finite(sales) and is_finite(orders) and orders != 0 else None
        series.append({
            "logged_at_utc": to_iso(row.get("logged_at_utc")),
            "logged_at_local": row.get("logged_at_local"),
            "sales_amount": sales,
            "orders": orders,
            "ad_spend": row.get("ad_spend"),
            "roas": row.get("roas"),
            "aov": aov,
        })
    return series


def _utc_day(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).strftime("%Y-%m-%d") if isinstance(value, datetime) else None


def daily_series(rows: Sequence[Row]) -> List[Row]:
    """Hourly rows rolled up per UTC day, sorted by day."""
    keyed = [dict(row, day=_utc_day(row.get("logged_at_utc"))) for row in rows]
    keyed = [row for row in keyed if row["day"]]
    if not keyed:
        return []

    df = frame(keyed, {"day": pl.Utf8, **HOURLY_SCHEMA})
    grouped = (
        df.group_by("day")
        .agg([
            *[pl.col(name).fill_null(0.0).sum().alias(name) for name in HOURLY_AMOUNTS],
            pl.len().alias("rows"),
        ])
        .sort("day")
    )

    series = []
    for item in grouped.iter_rows(named=True):
        series.append({
            "day": item["day"],
            "sales_amount": round_half_up(item["sales_amount"], 2),
            "orders": round_half_up(item["orders"], 2),
            "ad_spend": round_half_up(item["ad_spend"], 2),
            "aov": round_half_up(safe_ratio(item["sales_amount"], item["orders"]), 2),
            "roas": round_half_up(safe_ratio(item["sales_amount"], item["ad_spend"]), 4),
            "rows": int(item["rows"]),
        })
    return series


def build_quality(rows: Sequence[Row], now: datetime) -> Dict[str, Any]:
    """
    Data-quality indicators for a window of hourly rows (ordered by time).

    Expected hours span the first to the last row inclusive; a missing hour
    is any hour in that span without a row.
    """
    if not rows:
        return {
            "row_count": 0,
            "unique_hour_keys": 0,
            "expected_hours": 0,
            "missing_hours": 0,
            "duplicate_rows": 0,
            "hours_without_sales": 0,
            "hours_without_marketing": 0,
            "latest_row_age_minutes": None,
            "rows_per_day": [],
        }

    seen_keys: Set[str] = set()
    seen_hours: Set[str] = set()
    duplicate_rows = 0
    without_sales = 0
    without_marketing = 0

    for row in rows:
        key = str(row.get("row_key") or "").strip()
        if key:
            if key in seen_keys:
                duplicate_rows += 1
            else:
                seen_keys.add(key)
        logged = row.get("logged_at_utc")
        if isinstance(logged, datetime):
            seen_hours.add(hour_key_from_datetime(logged))
        if not is_finite(row.get("sales_amount")) and not is_finite(row.get("orders")):
            without_sales += 1
        if not is_finite(row.get("ad_spend")) and not is_finite(row.get("roas")):
            without_marketing += 1

    first, last = rows[0].get("logged_at_utc"), rows[-1].get("logged_at_utc")
    if isinstance(first, datetime) and isinstance(last, datetime) and last >= first:
        expected_hours = int((ensure_utc(last) - ensure_utc(first)).total_seconds() // 3600) + 1
    else:
        expected_hours = len(seen_hours)
    latest_age = (
        int((ensure_utc(now) - ensure_utc(last)).total_seconds() // 60) if isinstance(last, datetime) else None
    )

    days = [{"day": _utc_day(row.get("logged_at_utc"))} for row in rows]
    per_day = (
        frame([d for d in days if d["day"]], {"day": pl.Utf8})
        .group_by("day")
        .agg(pl.len().alias("rows"))
        .sort("day")
    )

    return {
        "row_count": len(rows),
        "unique_hour_keys": len(seen_hours),
        "expected_hours": expected_hours,
        "missing_hours": max(0, expected_hours - len(seen_hours)),
        "duplicate_rows": duplicate_rows,
        "hours_without_sales": without_sales,
        "hours_without_marketing": without_marketing,
        "latest_row_age_minutes": latest_age,
        "rows_per_day": [{"day": d, "rows": int(n)} for d, n in per_day.iter_rows()],
    }


def build_source_coverage(rows: Sequence[Row]) -> Dict[str, Any]:
    """Provenance counts and sales/marketing coverage of hourly rows."""
    coverage = {"both": 0, "sales_only": 0, "marketing_only": 0, "neither": 0}
    for row in rows:
        has_sales = is_finite(row.get("sales_amount")) or is_finite(row.get("orders"))
        has_marketing = is_finite(row.get("ad_spend")) or is_finite(row.get("roas"))
        if has_sales and has_marketing:
            coverage["both"] += 1
        elif has_sales:
            coverage["sales_only"] += 1
        elif has_marketing:
            coverage["marketing_only"] += 1
        else:
            coverage["neither"] += 1

    def counts(column: str) -> Dict[str, int]:
        if not rows:
            return {}
        df = frame(rows, {column: pl.Utf8}).with_columns(pl.col(column).fill_null("unknown"))
        grouped = df.group_by(column, maintain_order=True).agg(pl.len().alias("n"))
        return {name: int(n) for name, n in grouped.iter_rows()}

    return {
        "rows": len(rows),
        "source_sales_counts": counts("source_sales"),
        "source_marketing_counts": counts("source_marketing"),
        "coverage": coverage,
    }


# =============================================================================
# PRODUCTS
# =============================================================================

LINE_SCHEMA = {
    "product_id": pl.Utf8,
    "product_title": pl.Utf8,
    **{name: pl.Float64 for name in LINE_AMOUNTS},
}


def product_key(line: Row) -> str:
    if line.get("product_id"):
        return str(line["product_id"])
    return f"title:{line.get('product_title') or 'Unknown Product'}"


def aggregate_products(lines: Sequence[Row]) -> List[Row]:
    """
    Roll order lines up per product.

    Units are net of returns and revenue is net revenue after returns.
    """
    if not lines:
        return []
    df = frame(lines, LINE_SCHEMA).with_columns(
        pl.Series("product_key", [product_key(line) for line in lines], dtype=pl.Utf8)
    )
    grouped = df.group_by("product_key", maintain_order=True).agg([
        pl.col("product_id").first(),
        pl.col("product_title").fill_null("Unknown Product").first().alias("title"),
        pl.col("net_quantity").fill_null(0.0).sum().alias("units"),
        pl.col("net_revenue_after_returns").fill_null(0.0).sum().alias("revenue"),
        pl.col("gross_revenue").fill_null(0.0).sum().alias("gross_revenue"),
        pl.col("returned_quantity").fill_null(0.0).sum().alias("returned_units"),
        pl.col("returned_revenue").fill_null(0.0).sum().alias("returned_revenue"),
    ])
    return grouped.to_dicts()


# =============================================================================
# FILTERS
# =============================================================================

def filter_between(rows: Iterable[Row], key: str, start: datetime, end: datetime) -> List[Row]:
    """Rows whose ``key`` timestamp lies in [start, end]."""
    start, end = ensure_utc(start), ensure_utc(end)
    out = []
    for row in rows:
        value = row.get(key)
        if isinstance(value, datetime) and start <= ensure_utc(value) <= end:
            out.append(row)
    return out


def filter_lines_by_order_ids(lines: Iterable[Row], order_ids: Set[str]) -> List[Row]:
    if not order_ids:
        return []
    return [line for line in lines if line.get("order_id") in order_ids]
