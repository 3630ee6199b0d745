"""
Report Context

Everything a report builder needs, bundled once per application (or per
test) and passed explicitly: settings, row store, upstream clients, the
reporting calendar and a clock.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Set

from salesdash.config.settings import Settings
from salesdash.core.calendar import ReportingCalendar, to_iso
from salesdash.database.repository import RowStore
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.integrations.shopifyql import ShopifyQLClient
from salesdash.metrics.aggregation import filter_between, filter_lines_by_order_ids, filter_reportable

Row = Dict[str, Any]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReportContext:
    settings: Settings
    store: RowStore
    analytics: ShopifyQLClient
    shopify: ShopifyAdminClient
    calendar: ReportingCalendar
    clock: Callable[[], datetime] = field(default=utc_now)

    def now(self) -> datetime:
        return self.clock()

    @property
    def reporting_timezone(self) -> str:
        return self.calendar.tz_name

    async def reportable_order_ids(self, start: datetime, end: datetime) -> Set[str]:
        orders = await self.store.fetch_orders_since(start)
        scoped = filter_reportable(filter_between(orders, "created_at_utc", start, end))
        return {row["order_id"] for row in scoped}

    async def reportable_lines(self, start: datetime, end: datetime) -> List[Row]:
        """Order lines created in [start, end] that belong to reportable orders."""
        lines, order_ids = await asyncio.gather(
            self.store.fetch_lines_since(start),
            self.reportable_order_ids(start, end),
        )
        return filter_lines_by_order_ids(filter_between(lines, "created_at_utc", start, end), order_ids)

    async def reportable_orders(self, start: datetime, end: datetime) -> List[Row]:
        orders = await self.store.fetch_orders_since(start)
        return filter_reportable(filter_between(orders, "created_at_utc", start, end))


def period(start: datetime, end: datetime) -> Dict[str, str]:
    return {"start_utc": to_iso(start), "end_utc": to_iso(end)}


def comparison_period(
    current_start: datetime, current_end: datetime, previous_start: datetime, previous_end: datetime
) -> Dict[str, str]:
    return {
        "current_start_utc": to_iso(current_start),
        "current_end_utc": to_iso(current_end),
        "previous_start_utc": to_iso(previous_start),
        "previous_end_utc": to_iso(previous_end),
    }


def error_message(error: BaseException, fallback: str = "Unknown error") -> str:
    text = str(error).strip()
    return text or fallback
