"""
Hourly Row Merge

Combines Shopify sales buckets, marketing buckets and the hourly rows
already stored into the rows to upsert. New values win when present; a
source with nothing for an hour keeps the stored value and its provenance.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from salesdash.core.calendar import to_iso, utc_from_hour_key
from salesdash.core.numbers import clean_number, is_finite, round_half_up

Row = Dict[str, Any]

ROW_KEY_SUFFIX = "tw"
_ROW_KEY_HOUR = re.compile(r"^(\d{4}-\d{2}-\d{2}-\d{2})")

SOURCE_SHOPIFY = "shopify"
SOURCE_APPS_SCRIPT = "apps_script"


def row_key_for_hour(hour_key: str) -> str:
    return f"{hour_key}-{ROW_KEY_SUFFIX}"


def index_existing_rows(rows: List[Row]) -> Dict[str, Row]:
    by_hour: Dict[str, Row] = {}
    for row in rows:
        match = _ROW_KEY_HOUR.match(str(row.get("row_key") or ""))
        if match:
            by_hour[match.group(1)] = row
    return by_hour


def _prefer(new: Any, stored: Any) -> Optional[float]:
    return new if is_finite(new) else clean_number(stored)


def merge_hourly_rows(
    marketing_by_hour: Dict[str, Row],
    sales_by_hour: Dict[str, Row],
    existing_rows: List[Row],
    run_at: datetime,
) -> List[Row]:
    """
    One row per hour key present in any input, sorted by hour.

    Deterministic for fixed inputs and ``run_at``: replaying a sync with the
    same upstream data yields identical rows.
    """
    existing_by_hour = index_existing_rows(existing_rows)
    hours = sorted(set(existing_by_hour) | set(marketing_by_hour) | set(sales_by_hour))

    merged = []
    for hour_key in hours:
        logged_at = utc_from_hour_key(hour_key)
        if logged_at is None:
            continue
        existing = existing_by_hour.get(hour_key, {})
        marketing = marketing_by_hour.get(hour_key, {})
        sales = sales_by_hour.get(hour_key, {})

        sales_amount = _prefer(sales.get("sales_amount"), existing.get("sales_amount"))
        orders = _prefer(sales.get("orders"), existing.get("orders"))
        ad_spend = _prefer(marketing.get("ad_spend"), existing.get("ad_spend"))
        roas = _prefer(marketing.get("roas"), existing.get("roas"))

        merged.append({
            "row_key": row_key_for_hour(hour_key),
            "logged_at_utc": logged_at,
            "logged_at_local": marketing.get("logged_at_local") or existing.get("logged_at_local") or to_iso(logged_at),
            "sales_amount": round_half_up(sales_amount, 2),
            "orders": round_half_up(orders, 2),
            "ad_spend": round_half_up(ad_spend, 2),
            "roas": round_half_up(roas, 4),
            "source_sales": SOURCE_SHOPIFY if is_finite(sales_amount) else existing.get("source_sales") or None,
            "source_marketing": (
                SOURCE_APPS_SCRIPT
                if is_finite(ad_spend) or is_finite(roas)
                else existing.get("source_marketing") or None
            ),
            "ingested_at_utc": run_at,
        })
    return merged
