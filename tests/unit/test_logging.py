"""
Unit Tests - Logging Processors
"""
from starlette.requests import Request

from salesdash.config.logging import REDACTED, add_service, redact_secrets
from salesdash.serving.api.middleware import loggable_query


def make_request(query: bytes) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/api/google/oauth/callback",
        "query_string": query,
        "headers": [],
    })


class TestRedaction:
    """Tests for credential masking"""

    def test_top_level_secrets_masked(self):
        event = redact_secrets(None, "info", {"event": "Token refreshed", "access_token": "ya29.x", "expires_in": 3600})
        assert event["access_token"] == REDACTED
        assert event["expires_in"] == 3600

    def test_nested_headers_masked(self):
        event = redact_secrets(None, "info", {"headers": {"X-Shopify-Access-Token": "shpat_1", "Accept": "json"}})
        assert event["headers"] == {"X-Shopify-Access-Token": REDACTED, "Accept": "json"}

    def test_empty_values_left_alone(self):
        event = redact_secrets(None, "info", {"refresh_token": None})
        assert event["refresh_token"] is None


def test_add_service_keeps_explicit_value():
    processor = add_service("dashboard-sync")
    assert processor(None, "info", {})["service"] == "dashboard-sync"
    assert processor(None, "info", {"service": "other"})["service"] == "other"


def test_oauth_code_masked_in_query():
    query = loggable_query(make_request(b"code=4/abc&scope=calendar.readonly"))
    assert query == {"code": REDACTED, "scope": "calendar.readonly"}
