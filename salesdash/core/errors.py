"""
Dashboard Exceptions

Failure classes shared by the integrations, the report builders and the
HTTP layer:

- IntegrationNotConfigured: a source is missing credentials. Builders report
  ``status: "unavailable"`` instead of failing.
- UpstreamRequestError and subclasses: an upstream answered badly. Callers
  log and fall back to the next source.
- PaginationExceededError: a scan hit its page ceiling. Fatal.
- AuthorizationRequired: the user has to (re)authorize an OAuth integration.
"""

from typing import Any, Dict, Optional


class DashboardError(Exception):
    """Base class for every error raised by the dashboard backend"""

    code = "dashboard_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.code != DashboardError.code:
            payload["code"] = self.code
        return payload


class IntegrationNotConfigured(DashboardError):
    """An integration has no credentials configured"""

    code = "not_configured"

    def __init__(self, integration: str, message: Optional[str] = None):
        super().__init__(message or f"{integration} is not configured")
        self.integration = integration


class UpstreamRequestError(DashboardError):
    """An upstream service returned an error or an unusable payload"""

    code = "upstream_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.status_code = status_code


class AnalyticsQueryError(UpstreamRequestError):
    """ShopifyQL request failed, returned GraphQL errors, or reported parse errors"""

    code = "analytics_query_failed"


class ShopifyRequestError(UpstreamRequestError):
    """Shopify REST Admin API request failed"""

    code = "shopify_request_failed"


class MarketingFeedError(UpstreamRequestError):
    """Apps Script marketing feed request failed"""

    code = "marketing_feed_failed"


class GoogleCalendarError(UpstreamRequestError):
    """Google OAuth or Calendar API request failed"""

    code = "google_calendar_failed"


class PaginationExceededError(DashboardError):
    """A paginated scan needed more pages than its configured ceiling"""

    code = "pagination_exceeded"

    def __init__(self, source: str, max_pages: int, hint: str = ""):
        message = f"{source} pagination exceeded max_pages={max_pages}"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message, details={"source": source, "max_pages": max_pages})
        self.source = source
        self.max_pages = max_pages


class AuthorizationRequired(DashboardError):
    """The user must complete the OAuth flow again"""

    code = "google_auth_required"

    def __init__(self, message: str = "Google Calendar authorization required", auth_url: str = ""):
        super().__init__(message)
        self.auth_url = auth_url

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["auth_url"] = self.auth_url
        return payload
