"""
Request Dependencies

Accessors for the objects the application lifespan puts on ``app.state``
and the query-string parsers shared by the dashboard routes.
"""

import math
from typing import Any, Optional

from fastapi import Request

from salesdash.core.numbers import to_number
from salesdash.integrations.google_calendar import GoogleCalendarClient, is_local_host
from salesdash.reports.context import ReportContext


def get_report_context(request: Request) -> ReportContext:
    return request.app.state.report_context


def get_google_client(request: Request) -> GoogleCalendarClient:
    return request.app.state.google_calendar


def parse_bounded(raw: Any, fallback: int, maximum: int) -> int:
    """
    Positive integer query value clamped to [1, maximum].

    Missing or empty values use ``fallback``; non-numeric values also fall
    back instead of failing the request. Fractions are floored.
    """
    if raw is None or str(raw).strip() == "":
        return fallback
    value = to_number(str(raw).strip())
    if value is None:
        return fallback
    return max(1, min(maximum, math.floor(value)))


def parse_days(raw: Optional[str], fallback: int, maximum: int) -> int:
    return parse_bounded(raw, fallback, maximum)


def parse_limit(raw: Optional[str], fallback: int = 10, maximum: int = 50) -> int:
    return parse_bounded(raw, fallback, maximum)


def parse_metric(raw: Optional[str]) -> str:
    return "units" if (raw or "").strip().lower() == "units" else "revenue"


def request_base_url(request: Request) -> str:
    """Public origin of the request, honouring X-Forwarded-Proto and X-Forwarded-Host."""
    def first(value: Optional[str]) -> str:
        return (value or "").split(",")[0].strip()

    host = first(request.headers.get("x-forwarded-host")) or first(request.headers.get("host")) or "localhost"
    proto = first(request.headers.get("x-forwarded-proto")).lower()
    if proto not in ("http", "https"):
        proto = "http" if is_local_host(host) else "https"
    return f"{proto}://{host}"
