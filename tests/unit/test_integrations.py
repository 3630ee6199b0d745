"""
Unit Tests - Upstream Integrations

All HTTP traffic goes through httpx.MockTransport.
"""
import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from salesdash.config.settings import GoogleSettings
from salesdash.core.errors import (
    AnalyticsQueryError,
    AuthorizationRequired,
    IntegrationNotConfigured,
    MarketingFeedError,
    PaginationExceededError,
    ShopifyRequestError,
)
from salesdash.integrations.apps_script import fetch_marketing_by_hour, marketing_by_hour
from salesdash.integrations.google_calendar import GoogleCalendarClient, normalize_event
from salesdash.integrations.shopify import ShopifyAdminClient, get_next_page_url
from salesdash.integrations.shopifyql import AnalyticsTable, ShopifyQLClient
from salesdash.serving.cache import TTLCache

UTC = timezone.utc
START = datetime(2026, 3, 1, tzinfo=UTC)
END = datetime(2026, 3, 15, 14, 30, tzinfo=UTC)
FEED_URL = "https://script.google.com/macros/s/abc/exec"


class TestShopifyQL:
    """Tests for the ShopifyQL client"""

    def test_positional_and_named_rows(self):
        table = AnalyticsTable.from_table_data({
            "columns": [{"name": "day"}, {"name": "total_sales"}],
            "rows": [["2026-03-01", "10"], {"day": "2026-03-02", "total_sales": "20"}, "junk"],
        })
        assert len(table) == 2
        assert table.cell(table.rows[0], "total_sales") == "10"
        assert table.cell(table.rows[1], "day") == "2026-03-02"
        assert table.cell(table.rows[0], "missing") is None
        assert table.pick_column(["sessions", "day"]) == "day"

    async def test_results_are_cached(self, shopify_settings, mock_http):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
            return httpx.Response(200, json={"data": {"shopifyqlQuery": {
                "parseErrors": [],
                "tableData": {"columns": [{"name": "total_sales"}], "rows": [["12.5"]]},
            }}})

        client = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        first = await client.query("FROM sales SHOW total_sales")
        second = await client.query("FROM sales SHOW total_sales")

        assert len(calls) == 1
        assert second.cell(second.rows[0], "total_sales") == "12.5"
        assert first.column_index == second.column_index

    async def test_cache_expires(self, shopify_settings, mock_http):
        now = [0.0]
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"data": {"shopifyqlQuery": {"tableData": {"columns": [], "rows": []}}}})

        cache = TTLCache(60, clock=lambda: now[0])
        client = ShopifyQLClient(shopify_settings, cache, http_client=mock_http(handler))
        await client.query("FROM sales SHOW orders")
        now[0] = 61.0
        await client.query("FROM sales SHOW orders")
        assert len(calls) == 2

    async def test_parse_errors_raise(self, shopify_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"shopifyqlQuery": {"parseErrors": ["bad token"]}}})

        client = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        with pytest.raises(AnalyticsQueryError, match="bad token"):
            await client.query("FROM nowhere")

    async def test_http_error_raises(self, shopify_settings, mock_http):
        client = ShopifyQLClient(
            shopify_settings, TTLCache(60), http_client=mock_http(lambda r: httpx.Response(500, text="oops"))
        )
        with pytest.raises(AnalyticsQueryError) as exc_info:
            await client.query("FROM sales SHOW orders")
        assert exc_info.value.status_code == 500

    async def test_unconfigured_returns_none(self, test_settings):
        client = ShopifyQLClient(test_settings.shopify, TTLCache(60))
        assert await client.query("FROM sales SHOW orders") is None


class TestShopifyAdmin:
    """Tests for the REST Admin client"""

    def test_next_page_url(self):
        header = (
            '<https://shop/admin/orders.json?page_info=prev>; rel="previous", '
            '<https://shop/admin/orders.json?page_info=next1>; rel="next"'
        )
        assert get_next_page_url(header) == "https://shop/admin/orders.json?page_info=next1"
        assert get_next_page_url(None) is None
        assert get_next_page_url('<https://shop/x>; rel="previous"') is None

    async def test_orders_follow_link_header(self, shopify_settings, mock_http):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if "page_info=2" in str(request.url):
                return httpx.Response(200, json={"orders": [{"id": 3}]})
            return httpx.Response(
                200,
                json={"orders": [{"id": 1}, {"id": 2}]},
                headers={"link": f'<https://{shopify_settings.store_domain}/admin/orders.json?page_info=2>; rel="next"'},
            )

        client = ShopifyAdminClient(shopify_settings, http_client=mock_http(handler))
        result = await client.fetch_orders(START, END)

        assert [order["id"] for order in result.orders] == [1, 2, 3]
        assert result.pages_fetched == 2
        first_query = parse_qs(urlparse(seen[0]).query)
        assert first_query["status"] == ["any"]
        assert first_query["limit"] == ["2"]
        assert first_query["created_at_min"] == ["2026-03-01T00:00:00.000Z"]
        # Cursor pages carry only their own query string
        assert "status" not in parse_qs(urlparse(seen[1]).query)

    async def test_page_ceiling(self, shopify_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"orders": [{"id": 1}]},
                headers={"link": '<https://demo/admin/orders.json?page_info=again>; rel="next"'},
            )

        client = ShopifyAdminClient(shopify_settings, http_client=mock_http(handler))
        with pytest.raises(PaginationExceededError):
            await client.fetch_orders(START, END)

    async def test_unconfigured_fetch_raises(self, test_settings):
        client = ShopifyAdminClient(test_settings.shopify)
        with pytest.raises(IntegrationNotConfigured):
            await client.fetch_orders(START, END)

    async def test_http_error_raises(self, shopify_settings, mock_http):
        client = ShopifyAdminClient(shopify_settings, http_client=mock_http(lambda r: httpx.Response(403, text="denied")))
        with pytest.raises(ShopifyRequestError):
            await client.count_orders(START, END)

    async def test_count_orders(self, shopify_settings, mock_http):
        client = ShopifyAdminClient(
            shopify_settings, http_client=mock_http(lambda r: httpx.Response(200, json={"count": 42}))
        )
        assert await client.count_orders(START, END) == 42.0

    async def test_access_scopes_cached(self, shopify_settings, mock_http):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"access_scopes": [{"handle": "read_orders"}, {"handle": " "}]})

        client = ShopifyAdminClient(shopify_settings, TTLCache(300), http_client=mock_http(handler))
        assert await client.access_scopes() == ["read_orders"]
        assert await client.access_scopes() == ["read_orders"]
        assert len(calls) == 1


class TestAppsScript:
    """Tests for the marketing feed"""

    def test_marketing_by_hour(self):
        rows = [
            {"row_key": "2026-03-15-09-tw", "ad_spend": "£12.00", "roas": "4.5", "logged_at_local": "15/03 09:00"},
            {"logged_at_utc": "2026-03-15T10:20:00Z", "ad_spend": "", "roas": ""},
            {"logged_at_utc": "2026-03-15T11:05:00Z", "ad_spend": "3", "roas": None},
        ]
        by_hour = marketing_by_hour(rows)
        assert set(by_hour) == {"2026-03-15-09", "2026-03-15-11"}
        assert by_hour["2026-03-15-09"]["ad_spend"] == 12.0
        assert by_hour["2026-03-15-11"]["roas"] is None

    async def test_fetch_requests_clean_mode(self, mock_http):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, json={"data": [{"row_key": "2026-03-15-09-tw", "ad_spend": 5, "roas": 2}]})

        by_hour = await fetch_marketing_by_hour(FEED_URL, mock_http(handler))
        assert by_hour["2026-03-15-09"]["roas"] == 2.0
        assert seen[0].params["mode"] == "clean"

    async def test_fetch_requires_url(self):
        with pytest.raises(IntegrationNotConfigured):
            await fetch_marketing_by_hour("  ")

    async def test_non_json_body(self, mock_http):
        with pytest.raises(MarketingFeedError):
            await fetch_marketing_by_hour(FEED_URL, mock_http(lambda r: httpx.Response(200, text="<html>")))


class TestGoogleCalendar:
    """Tests for the OAuth flow and upcoming events"""

    @pytest.fixture
    def google_settings(self):
        return GoogleSettings(client_id="client-1", client_secret="secret-1")

    def test_redirect_uri_ignores_localhost_for_public_host(self):
        client = GoogleCalendarClient(GoogleSettings(redirect_uri="http://localhost:8787/api/google/oauth/callback"))
        assert client.redirect_uri("https://dash.example.com") == "https://dash.example.com/api/google/oauth/callback"
        assert client.redirect_uri("http://localhost:8787") == "http://localhost:8787/api/google/oauth/callback"

    def test_authorize_url(self, google_settings):
        client = GoogleCalendarClient(google_settings)
        query = parse_qs(urlparse(client.authorize_url("https://dash/cb")).query)
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["redirect_uri"] == ["https://dash/cb"]

    def test_normalize_event(self):
        event = normalize_event({"id": "e1", "summary": "  ", "start": {"date": "2026-03-16"}, "end": {"date": "2026-03-17"}})
        assert event["title"] == "(Untitled)"
        assert event["is_all_day"] is True
        assert normalize_event({"id": "e2", "start": {}}) is None

    async def test_upcoming_requires_authorization(self, google_settings):
        client = GoogleCalendarClient(google_settings)
        with pytest.raises(AuthorizationRequired):
            await client.upcoming("primary")

    async def test_upcoming_with_refresh_token(self, google_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "oauth2.googleapis.com":
                form = parse_qs(request.content.decode())
                assert form["grant_type"] == ["refresh_token"]
                return httpx.Response(200, json={"access_token": "at-1", "expires_in": 3600})
            assert request.headers["Authorization"] == "Bearer at-1"
            return httpx.Response(200, json={
                "timeZone": "Europe/London",
                "items": [
                    {"id": "a", "summary": "Stand-up", "start": {"dateTime": "2026-03-16T09:00:00Z"}},
                    {"id": "b", "status": "cancelled", "start": {"dateTime": "2026-03-16T10:00:00Z"}},
                ],
            })

        client = GoogleCalendarClient(google_settings, http_client=mock_http(handler), clock=lambda: 1_700_000_000.0)
        client.adopt_refresh_token("rt-cookie")
        result = await client.upcoming("primary", max_results=4)

        assert result["time_zone"] == "Europe/London"
        assert [event["id"] for event in result["events"]] == ["a"]

    async def test_invalid_grant_clears_refresh_token(self, google_settings, mock_http):
        client = GoogleCalendarClient(
            google_settings, http_client=mock_http(lambda r: httpx.Response(400, json={"error": "invalid_grant"}))
        )
        client.adopt_refresh_token("stale")
        with pytest.raises(AuthorizationRequired):
            await client.upcoming("primary")
        assert client.refresh_token == ""

    async def test_exchange_code_keeps_refresh_token(self, google_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            form = parse_qs(request.content.decode())
            assert form["code"] == ["auth-code"]
            return httpx.Response(200, content=json.dumps({"access_token": "at", "refresh_token": "rt", "expires_in": 10}))

        client = GoogleCalendarClient(google_settings, http_client=mock_http(handler))
        await client.exchange_code("auth-code", "https://dash/cb")
        assert client.refresh_token == "rt"
