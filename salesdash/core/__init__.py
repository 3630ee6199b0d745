"""
Core Module

Calendar arithmetic, numeric helpers and the exception hierarchy.
"""
from .calendar import ReportingCalendar, ZonedParts
from .errors import (
    AnalyticsQueryError,
    AuthorizationRequired,
    DashboardError,
    GoogleCalendarError,
    IntegrationNotConfigured,
    MarketingFeedError,
    PaginationExceededError,
    ShopifyRequestError,
    UpstreamRequestError,
)

__all__ = [
    "ReportingCalendar",
    "ZonedParts",
    "AnalyticsQueryError",
    "AuthorizationRequired",
    "DashboardError",
    "GoogleCalendarError",
    "IntegrationNotConfigured",
    "MarketingFeedError",
    "PaginationExceededError",
    "ShopifyRequestError",
    "UpstreamRequestError",
]
