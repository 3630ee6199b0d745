"""
Upstream Integrations
"""
from .apps_script import fetch_marketing_by_hour
from .google_calendar import GoogleCalendarClient
from .shopify import ShopifyAdminClient
from .shopifyql import AnalyticsTable, NamedRow, PositionalRow, ShopifyQLClient

__all__ = [
    "fetch_marketing_by_hour",
    "GoogleCalendarClient",
    "ShopifyAdminClient",
    "AnalyticsTable",
    "NamedRow",
    "PositionalRow",
    "ShopifyQLClient",
]
