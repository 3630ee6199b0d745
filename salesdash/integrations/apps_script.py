"""
Apps Script Marketing Feed

The marketing spreadsheet is published through a Google Apps Script web app.
``mode=clean`` returns one row per logged hour with ad spend and ROAS.
"""

import re
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog

from salesdash.core.calendar import hour_key_from_datetime, parse_instant
from salesdash.core.errors import IntegrationNotConfigured, MarketingFeedError
from salesdash.core.numbers import clean_number, round_half_up
from salesdash.integrations.base import body_excerpt

logger = structlog.get_logger(__name__)

_ROW_KEY_HOUR = re.compile(r"^(\d{4}-\d{2}-\d{2}-\d{2})")


def extract_rows(payload: Any) -> List[Dict[str, Any]]:
    """Rows from a bare list, or from a ``data`` / ``rows`` list."""
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        rows = payload["data"]
    elif isinstance(payload, dict) and isinstance(payload.get("rows"), list):
        rows = payload["rows"]
    else:
        rows = []
    return [row for row in rows if isinstance(row, dict)]


def normalize_hour_key(row: Dict[str, Any]) -> str:
    match = _ROW_KEY_HOUR.match(str(row.get("row_key") or "").strip())
    if match:
        return match.group(1)
    logged = row.get("logged_at_utc") or row.get("logged_at_local") or row.get("Logged At")
    instant = parse_instant(logged)
    return hour_key_from_datetime(instant) if instant else ""


def marketing_by_hour(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Index marketing rows by UTC hour key.

    Rows with neither ad spend nor ROAS are skipped; a later row for the same
    hour replaces an earlier one.
    """
    by_hour: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        hour_key = normalize_hour_key(row)
        if not hour_key:
            continue
        ad_spend = clean_number(row.get("ad_spend"))
        roas = clean_number(row.get("roas"))
        if ad_spend is None and roas is None:
            continue
        by_hour[hour_key] = {
            "ad_spend": round_half_up(ad_spend, 2),
            "roas": round_half_up(roas, 4),
            "logged_at_local": row.get("logged_at_local") or None,
        }
    return by_hour


async def fetch_marketing_by_hour(
    url: str,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> Dict[str, Dict[str, Any]]:
    """
    Fetch the ``mode=clean`` feed and index it by hour.

    Raises:
        IntegrationNotConfigured: no Apps Script URL
        MarketingFeedError: non-2xx or undecodable response
    """
    if not url or not url.strip():
        raise IntegrationNotConfigured("apps_script", "APPS_SCRIPT_URL is required")

    separator = "&" if "?" in url else "?"
    request_url = f"{url}{separator}mode=clean&_={int(time.time() * 1000)}"

    try:
        if http_client is not None:
            response = await http_client.get(request_url, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                response = await client.get(request_url)
    except httpx.HTTPError as e:
        raise MarketingFeedError(f"Apps Script mode=clean request failed: {e}") from e

    if response.status_code >= 400:
        raise MarketingFeedError(
            f"Apps Script mode=clean failed ({response.status_code}): {body_excerpt(response)}",
            status_code=response.status_code,
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise MarketingFeedError("Apps Script mode=clean returned non-JSON body") from e

    by_hour = marketing_by_hour(extract_rows(payload))
    logger.info("Marketing feed fetched", marketing_hours=len(by_hour))
    return by_hour
