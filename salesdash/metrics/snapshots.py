"""
Period-Comparison Snapshots

Each snapshot asks an external source for the figures of a current period
and its comparable previous period. A snapshot is ``None`` when the source is
not configured; query failures raise and are absorbed by ``guarded`` so the
report builders can fall back to the stored order rows.

Fallback is expressed with ``resolve_first``: an ordered list of
``(source, value)`` candidates where the first finite number wins.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import httpx
import structlog

from salesdash.core.calendar import ReportingCalendar, parse_instant, to_iso
from salesdash.core.errors import UpstreamRequestError
from salesdash.core.numbers import is_finite, round_half_up, to_number
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.integrations.shopifyql import AnalyticsTable, ShopifyQLClient

logger = structlog.get_logger(__name__)

SOURCE_SHOPIFYQL = "shopifyql"
SOURCE_SAME_TIME = "shopify_same_time"
SOURCE_ORDERS_TABLE = "orders_table"
SOURCE_UNAVAILABLE = "unavailable"

SESSION_METRICS = ["sessions", "online_store_visitors", "online_store_sessions", "visitors"]
DAY_COLUMNS = ["day", "date", "time"]


@dataclass
class Snapshot:
    source: str
    range: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MonthSnapshot(Snapshot):
    """Whole current month vs whole previous month (gross/net/total)."""

    current: Optional[Dict[str, Optional[float]]] = None
    previous: Optional[Dict[str, Optional[float]]] = None


@dataclass
class MtdComparableSnapshot(Snapshot):
    current_mtd: float = 0.0
    current_mtd_net_sales: float = 0.0
    current_mtd_orders: float = 0.0
    previous_mtd: float = 0.0
    previous_mtd_net_sales: float = 0.0
    previous_mtd_orders: float = 0.0


@dataclass
class YtdComparableSnapshot(Snapshot):
    current_ytd_sales: float = 0.0
    previous_ytd_sales: float = 0.0
    current_ytd_orders: float = 0.0
    previous_ytd_orders: float = 0.0
    previous_full_year_sales: float = 0.0
    previous_full_year_orders: float = 0.0


@dataclass
class SameTimeSnapshot(Snapshot):
    current_mtd_sales: float = 0.0
    current_mtd_net_sales: float = 0.0
    previous_mtd_sales: float = 0.0
    previous_mtd_net_sales: float = 0.0
    current_mtd_orders: Optional[float] = None
    previous_mtd_orders: Optional[float] = None


@dataclass
class SessionsSnapshot(Snapshot):
    metric: str = ""
    query_used: str = ""
    current_mtd: float = 0.0
    previous_mtd: float = 0.0


# =============================================================================
# FALLBACK CHAINS
# =============================================================================

@dataclass(frozen=True)
class Resolved:
    value: Optional[float]
    source: str

    @property
    def available(self) -> bool:
        return self.value is not None


Candidate = Tuple[str, Union[Any, Callable[[], Any]]]


def resolve_first(*candidates: Candidate) -> Resolved:
    """
    First candidate whose value is a finite number.

    A candidate value may be given directly or as a zero-argument callable.
    An absent value never counts as zero: ``None`` skips to the next source.
    """
    for source, getter in candidates:
        value = getter() if callable(getter) else getter
        if is_finite(value):
            return Resolved(float(value), source)
    return Resolved(None, SOURCE_UNAVAILABLE)


def snapshot_field(snapshot: Any, name: str) -> Any:
    return getattr(snapshot, name, None) if snapshot is not None else None


def month_field(snapshot: Optional[MonthSnapshot], which: str, name: str) -> Any:
    """``month_field(snap, "previous", "total_sales")``; None when absent."""
    block = snapshot_field(snapshot, which)
    return block.get(name) if isinstance(block, dict) else None


async def guarded(awaitable: Awaitable[Any], label: str) -> Any:
    """Await a snapshot; upstream failures are logged and become None."""
    try:
        return await awaitable
    except (UpstreamRequestError, httpx.HTTPError) as e:
        logger.warning("Snapshot unavailable", snapshot=label, error=str(e))
        return None


# =============================================================================
# HELPERS
# =============================================================================

def _day_key(table: AnalyticsTable, row, column: str = "day") -> str:
    return str(table.cell(row, column) or "")[:10]


def _add(total: float, value: Any) -> float:
    number = to_number(value)
    return total + number if number is not None else total


def _metric(value: Any) -> Optional[float]:
    return round_half_up(to_number(value), 2)


# =============================================================================
# SNAPSHOTS
# =============================================================================

async def month_snapshot(
    analytics: ShopifyQLClient, calendar: ReportingCalendar, now: datetime
) -> Optional[MonthSnapshot]:
    if not analytics.is_configured:
        return None

    month_start = calendar.start_of_month(now)
    since = calendar.to_ymd(calendar.add_months(month_start, -1))
    until = calendar.to_ymd(calendar.add_months(month_start, 1))
    table = await analytics.query(
        f"FROM sales SHOW gross_sales, net_sales, total_sales GROUP BY month SINCE {since} UNTIL {until}"
    )
    if table is None:
        return None

    by_month: Dict[str, Dict[str, Optional[float]]] = {}
    for row in table.rows:
        month_key = str(table.cell(row, "month") or "")[:10]
        if not month_key:
            continue
        by_month[month_key] = {
            "gross_sales": _metric(table.cell(row, "gross_sales")),
            "net_sales": _metric(table.cell(row, "net_sales")),
            "total_sales": _metric(table.cell(row, "total_sales")),
        }

    return MonthSnapshot(
        source=SOURCE_SHOPIFYQL,
        current=by_month.get(calendar.to_ymd(month_start)),
        previous=by_month.get(since),
        range={"since": since, "until": until},
    )


async def mtd_comparable_snapshot(
    analytics: ShopifyQLClient, calendar: ReportingCalendar, now: datetime
) -> Optional[MtdComparableSnapshot]:
    """
    Month-to-date vs the previous month through the comparable day.

    One daily query covers both months; previous-month days after the
    comparable day of month are ignored.
    """
    if not analytics.is_configured:
        return None

    month_start = calendar.start_of_month(now)
    prev_month_start = calendar.add_months(month_start, -1)
    prev_end = calendar.previous_mtd_comparable_end(now, month_start)
    since = calendar.to_ymd(prev_month_start)
    until = calendar.to_ymd(calendar.add_days(now, 1))
    table = await analytics.query(
        f"FROM sales SHOW total_sales, net_sales, orders GROUP BY day SINCE {since} UNTIL {until}"
    )
    if table is None:
        return None

    current_prefix = calendar.to_ym(month_start)
    previous_prefix = calendar.to_ym(prev_month_start)
    comparable_day = calendar.day_of_month(prev_end)
    totals = {key: 0.0 for key in ("sales", "net", "orders", "prev_sales", "prev_net", "prev_orders")}

    for row in table.rows:
        day_key = _day_key(table, row)
        if not day_key:
            continue
        sales = table.cell(row, "total_sales")
        net = table.cell(row, "net_sales")
        orders = table.cell(row, "orders")
        if day_key[:7] == current_prefix:
            totals["sales"] = _add(totals["sales"], sales)
            totals["net"] = _add(totals["net"], net)
            totals["orders"] = _add(totals["orders"], orders)
        elif day_key[:7] == previous_prefix and day_key[8:10].isdigit() and int(day_key[8:10]) <= comparable_day:
            totals["prev_sales"] = _add(totals["prev_sales"], sales)
            totals["prev_net"] = _add(totals["prev_net"], net)
            totals["prev_orders"] = _add(totals["prev_orders"], orders)

    return MtdComparableSnapshot(
        source=SOURCE_SHOPIFYQL,
        current_mtd=round_half_up(totals["sales"], 2),
        current_mtd_net_sales=round_half_up(totals["net"], 2),
        current_mtd_orders=round_half_up(totals["orders"], 2),
        previous_mtd=round_half_up(totals["prev_sales"], 2),
        previous_mtd_net_sales=round_half_up(totals["prev_net"], 2),
        previous_mtd_orders=round_half_up(totals["prev_orders"], 2),
        range={"since": since, "until": until, "previous_end_utc": to_iso(prev_end)},
    )


async def ytd_comparable_snapshot(
    analytics: ShopifyQLClient, calendar: ReportingCalendar, now: datetime
) -> Optional[YtdComparableSnapshot]:
    """
    Year-to-date through today's local date vs the previous year through the
    comparable date, plus the previous year's full totals.
    """
    if not analytics.is_configured:
        return None

    year_start = calendar.start_of_year(now)
    prev_year_start = calendar.add_years(year_start, -1)
    prev_end = calendar.previous_ytd_comparable_end(now)
    since = calendar.to_ymd(prev_year_start)
    until = calendar.to_ymd(calendar.add_days(now, 1))
    table = await analytics.query(f"FROM sales SHOW total_sales, orders GROUP BY day SINCE {since} UNTIL {until}")
    if table is None:
        return None

    current_year = calendar.to_ymd(year_start)[:4]
    previous_year = since[:4]
    current_through = calendar.to_ymd(now)
    previous_through = calendar.to_ymd(prev_end)
    totals = {key: 0.0 for key in ("sales", "orders", "prev_sales", "prev_orders", "full_sales", "full_orders")}

    for row in table.rows:
        day_key = _day_key(table, row)
        if not day_key:
            continue
        sales = table.cell(row, "total_sales")
        orders = table.cell(row, "orders")
        if day_key[:4] == current_year and day_key <= current_through:
            totals["sales"] = _add(totals["sales"], sales)
            totals["orders"] = _add(totals["orders"], orders)
        elif day_key[:4] == previous_year:
            totals["full_sales"] = _add(totals["full_sales"], sales)
            totals["full_orders"] = _add(totals["full_orders"], orders)
            if day_key <= previous_through:
                totals["prev_sales"] = _add(totals["prev_sales"], sales)
                totals["prev_orders"] = _add(totals["prev_orders"], orders)

    return YtdComparableSnapshot(
        source=SOURCE_SHOPIFYQL,
        current_ytd_sales=round_half_up(totals["sales"], 2),
        previous_ytd_sales=round_half_up(totals["prev_sales"], 2),
        current_ytd_orders=round_half_up(totals["orders"], 2),
        previous_ytd_orders=round_half_up(totals["prev_orders"], 2),
        previous_full_year_sales=round_half_up(totals["full_sales"], 2),
        previous_full_year_orders=round_half_up(totals["full_orders"], 2),
        range={"since": since, "until": until, "previous_end_utc": to_iso(prev_end)},
    )


async def same_time_snapshot(
    analytics: ShopifyQLClient,
    shopify: ShopifyAdminClient,
    calendar: ReportingCalendar,
    now: datetime,
) -> Optional[SameTimeSnapshot]:
    """
    Elapsed-duration comparison.

    The previous window runs from the previous month start for exactly as
    long as the current month has been running. Sales come from an hourly
    query; order counts from two concurrent REST count calls.
    """
    if not analytics.is_configured:
        return None

    month_start = calendar.start_of_month(now)
    prev_month_start = calendar.add_months(month_start, -1)
    prev_end = prev_month_start + (now - month_start)
    since = calendar.to_ymd(prev_month_start)
    until = calendar.to_ymd(calendar.add_days(now, 1))

    table, current_orders, previous_orders = await asyncio.gather(
        analytics.query(f"FROM sales SHOW total_sales, net_sales GROUP BY hour SINCE {since} UNTIL {until}"),
        shopify.count_orders(month_start, now),
        shopify.count_orders(prev_month_start, prev_end),
    )
    if table is None:
        return None

    sales = net = prev_sales = prev_net = 0.0
    for row in table.rows:
        hour = parse_instant(table.cell(row, "hour"))
        if hour is None:
            continue
        if month_start <= hour <= now:
            sales = _add(sales, table.cell(row, "total_sales"))
            net = _add(net, table.cell(row, "net_sales"))
        if prev_month_start <= hour <= prev_end:
            prev_sales = _add(prev_sales, table.cell(row, "total_sales"))
            prev_net = _add(prev_net, table.cell(row, "net_sales"))

    return SameTimeSnapshot(
        source=SOURCE_SAME_TIME,
        current_mtd_sales=round_half_up(sales, 2),
        current_mtd_net_sales=round_half_up(net, 2),
        previous_mtd_sales=round_half_up(prev_sales, 2),
        previous_mtd_net_sales=round_half_up(prev_net, 2),
        current_mtd_orders=current_orders if is_finite(current_orders) else None,
        previous_mtd_orders=previous_orders if is_finite(previous_orders) else None,
        range={
            "current_start_utc": to_iso(month_start),
            "current_end_utc": to_iso(now),
            "previous_start_utc": to_iso(prev_month_start),
            "previous_end_utc": to_iso(prev_end),
        },
    )


def _compare_queries(month_start_ymd: str) -> List[Tuple[str, str]]:
    return [
        (metric, f"FROM sales, sessions SHOW {metric} SINCE {month_start_ymd} UNTIL today COMPARE TO previous_period")
        for metric in ("sessions", "online_store_visitors", "online_store_sessions")
    ]


def _daily_session_queries(since: str, until: str) -> List[str]:
    window = f"SINCE {since} UNTIL {until}"
    queries = [f"FROM sales, sessions SHOW day, {m} GROUP BY day {window} ORDER BY day" for m in SESSION_METRICS]
    queries += [f"FROM sales, sessions SHOW {m} {window} TIMESERIES day ORDER BY day" for m in SESSION_METRICS]
    for source in ("sessions", "visits"):
        queries += [
            f"FROM {source} SHOW {m} TIMESERIES day {window}"
            for m in ("sessions", "online_store_sessions", "online_store_visitors")
        ]
    queries += [
        f"FROM sessions SHOW {m} GROUP BY day {window}"
        for m in ("sessions", "online_store_sessions", "online_store_visitors")
    ]
    queries.append(f"FROM sales, sessions SHOW sessions TIMESERIES day {window}")
    return queries


async def _sessions_from_comparison(
    analytics: ShopifyQLClient, month_start_ymd: str, prev_end: datetime
) -> Optional[SessionsSnapshot]:
    for metric, query_text in _compare_queries(month_start_ymd):
        try:
            table = await analytics.query(query_text)
        except UpstreamRequestError as e:
            logger.debug("Sessions comparison query failed", metric=metric, error=str(e))
            continue
        if table is None or not table.rows:
            continue

        metric_column = table.pick_column([metric, "sessions", "online_store_visitors", "online_store_sessions"])
        if not metric_column:
            continue
        comparison_column = table.find_column(f"comparison_{metric_column}", "previous_period")
        if not comparison_column:
            continue

        first = table.rows[0]
        current = to_number(table.cell(first, metric_column))
        previous = to_number(table.cell(first, comparison_column))
        if current is None or previous is None:
            continue

        return SessionsSnapshot(
            source=SOURCE_SHOPIFYQL,
            metric=metric_column,
            query_used=query_text,
            current_mtd=round_half_up(current, 2),
            previous_mtd=round_half_up(previous, 2),
            range={"since": month_start_ymd, "until": "today", "previous_end_utc": to_iso(prev_end)},
        )
    return None


async def sessions_comparable_snapshot(
    analytics: ShopifyQLClient, calendar: ReportingCalendar, now: datetime
) -> Optional[SessionsSnapshot]:
    """
    Storefront sessions month-to-date vs the comparable previous period.

    ``COMPARE TO previous_period`` queries are tried first, then a series of
    daily time-series queries (the sessions dataset name and metric columns
    differ between shops and API versions). When every daily candidate
    fails, the last error is raised.
    """
    if not analytics.is_configured:
        return None

    month_start = calendar.start_of_month(now)
    prev_month_start = calendar.add_months(month_start, -1)
    prev_end = calendar.previous_mtd_comparable_end(now, month_start)
    month_start_ymd = calendar.to_ymd(month_start)

    snapshot = await _sessions_from_comparison(analytics, month_start_ymd, prev_end)
    if snapshot is not None:
        return snapshot

    since = calendar.to_ymd(prev_month_start)
    until = calendar.to_ymd(calendar.add_days(now, 1))
    last_error: Optional[Exception] = None
    table: Optional[AnalyticsTable] = None
    metric_column = day_column = query_used = ""

    for query_text in _daily_session_queries(since, until):
        try:
            candidate = await analytics.query(query_text)
        except UpstreamRequestError as e:
            last_error = e
            continue
        if candidate is None:
            continue
        metric_column = candidate.pick_column(SESSION_METRICS)
        day_column = candidate.pick_column(DAY_COLUMNS)
        if metric_column and day_column:
            table, query_used = candidate, query_text
            break

    if table is None:
        if last_error is not None:
            raise last_error
        return None

    current_prefix = calendar.to_ym(month_start)
    previous_prefix = calendar.to_ym(prev_month_start)
    comparable_day = calendar.day_of_month(prev_end)
    current = previous = 0.0
    for row in table.rows:
        day_key = _day_key(table, row, day_column)
        sessions = to_number(table.cell(row, metric_column))
        if not day_key or sessions is None:
            continue
        if day_key[:7] == current_prefix:
            current += sessions
        elif day_key[:7] == previous_prefix and day_key[8:10].isdigit() and int(day_key[8:10]) <= comparable_day:
            previous += sessions

    return SessionsSnapshot(
        source=SOURCE_SHOPIFYQL,
        metric=metric_column,
        query_used=query_used,
        current_mtd=round_half_up(current, 2),
        previous_mtd=round_half_up(previous, 2),
        range={"since": since, "until": until, "previous_end_utc": to_iso(prev_end)},
    )

