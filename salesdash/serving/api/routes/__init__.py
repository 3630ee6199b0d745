"""
API Routes Module
"""
from .dashboard import router as dashboard_router
from .google import router as google_router
from .health import router as health_router

__all__ = [
    "dashboard_router",
    "google_router",
    "health_router",
]
