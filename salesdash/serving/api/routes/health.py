"""
Health Check Endpoints

Liveness for orchestration systems, the endpoint directory and the CORS
preflight answer for every ``/api`` path.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Response

from salesdash.core.calendar import to_iso
from salesdash.reports.context import utc_now

router = APIRouter()

SERVICE_NAME = "dashboard-api"

ENDPOINTS: List[str] = [
    "/api/health",
    "/api/endpoints",
    "/api/clean?days=120",
    "/api/latest",
    "/api/summary",
    "/api/kpis",
    "/api/ytd",
    "/api/cells",
    "/api/trend/hourly?days=30",
    "/api/trend/daily?days=90",
    "/api/quality?days=30",
    "/api/sources?days=30",
    "/api/products/top-units?limit=10",
    "/api/products/top-revenue?limit=10",
    "/api/products/momentum?metric=revenue&limit=10",
    "/api/pace",
    "/api/projection",
    "/api/goal",
    "/api/finance/gross-net-returns",
    "/api/aov",
    "/api/sessions/mtd",
    "/api/customers/new-vs-returning",
    "/api/channels",
    "/api/discount-impact",
    "/api/heatmap/today",
    "/api/refund-watchlist?limit=10",
    "/api/google/oauth/start",
    "/api/google/oauth/callback",
    "/api/google/calendar/upcoming?max=4",
]


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Liveness probe; does not touch the store or any upstream."""
    return {"ok": True, "service": SERVICE_NAME, "time": to_iso(utc_now())}


@router.get("/endpoints")
async def list_endpoints() -> Dict[str, List[str]]:
    return {"endpoints": ENDPOINTS}


@router.options("/{path:path}")
async def preflight(path: str) -> Response:
    return Response(status_code=204)
