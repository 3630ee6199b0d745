"""
Unit Tests - Period Snapshots and Fallback Chains
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from salesdash.core.calendar import ReportingCalendar
from salesdash.core.errors import AnalyticsQueryError
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.integrations.shopifyql import ShopifyQLClient
from salesdash.metrics.snapshots import (
    SOURCE_UNAVAILABLE,
    guarded,
    month_field,
    month_snapshot,
    mtd_comparable_snapshot,
    resolve_first,
    same_time_snapshot,
    sessions_comparable_snapshot,
    ytd_comparable_snapshot,
)
from salesdash.serving.cache import TTLCache

UTC = timezone.utc


def table_response(columns, rows):
    payload = {
        "data": {
            "shopifyqlQuery": {
                "parseErrors": [],
                "tableData": {"columns": [{"name": c} for c in columns], "rows": rows},
            }
        }
    }
    return httpx.Response(200, json=payload)


def parse_error_response(message):
    return httpx.Response(200, json={"data": {"shopifyqlQuery": {"parseErrors": [message], "tableData": None}}})


class TestResolveFirst:
    """Tests for ordered fallback resolution"""

    def test_first_finite_value_wins(self):
        resolved = resolve_first(("shopifyql", None), ("orders_table", 120.5))
        assert resolved.value == 120.5
        assert resolved.source == "orders_table"

    def test_zero_is_a_value(self):
        resolved = resolve_first(("shopifyql", 0), ("orders_table", 99))
        assert resolved.value == 0.0
        assert resolved.source == "shopifyql"

    def test_callables_are_lazy(self):
        calls = []

        def later():
            calls.append(1)
            return 5

        resolved = resolve_first(("a", 1.0), ("b", later))
        assert resolved.source == "a"
        assert calls == []

    def test_nothing_available(self):
        resolved = resolve_first(("a", None), ("b", lambda: float("nan")))
        assert resolved.value is None
        assert resolved.source == SOURCE_UNAVAILABLE
        assert not resolved.available


class TestGuarded:
    """Tests for failure absorption"""

    async def test_upstream_failure_becomes_none(self):
        async def failing():
            raise AnalyticsQueryError("boom")

        assert await guarded(failing(), "month") is None

    async def test_value_passes_through(self):
        async def ok():
            return {"x": 1}

        assert await guarded(ok(), "month") == {"x": 1}

    async def test_programming_errors_propagate(self):
        async def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await guarded(broken(), "month")


class TestSnapshots:
    """Tests for ShopifyQL-backed snapshots"""

    async def test_unconfigured_source_gives_none(self, test_settings, fixed_now):
        analytics = ShopifyQLClient(test_settings.shopify, TTLCache(60))
        assert await month_snapshot(analytics, ReportingCalendar("UTC"), fixed_now) is None

    async def test_month_snapshot(self, shopify_settings, mock_http, fixed_now):
        def handler(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["variables"]["query"]
            assert "GROUP BY month SINCE 2026-02-01 UNTIL 2026-04-01" in query
            return table_response(
                ["month", "gross_sales", "net_sales", "total_sales"],
                [["2026-02-01", "900", "800", "850.5"], ["2026-03-01", "400", "380", "390"]],
            )

        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        snapshot = await month_snapshot(analytics, ReportingCalendar("UTC"), fixed_now)
        assert month_field(snapshot, "previous", "total_sales") == 850.5
        assert month_field(snapshot, "current", "net_sales") == 380.0

    async def test_mtd_snapshot_stops_at_comparable_day(self, shopify_settings, mock_http, fixed_now):
        def handler(request: httpx.Request) -> httpx.Response:
            return table_response(
                ["day", "total_sales", "net_sales", "orders"],
                [
                    ["2026-02-10", 100, 90, 2],
                    ["2026-02-15", 50, 45, 1],
                    ["2026-02-20", 500, 450, 9],
                    ["2026-03-05", 200, 180, 3],
                ],
            )

        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        snapshot = await mtd_comparable_snapshot(analytics, ReportingCalendar("UTC"), fixed_now)
        assert snapshot.current_mtd == 200.0
        assert snapshot.current_mtd_orders == 3.0
        assert snapshot.previous_mtd == 150.0
        assert snapshot.previous_mtd_net_sales == 135.0

    async def test_ytd_snapshot_leap_day_counts_only_in_full_year(self, shopify_settings, mock_http):
        """Feb 28 2029 compares against Feb 28 2028; Feb 29 2028 lands only in the full year"""
        now = datetime(2029, 2, 28, 12, tzinfo=UTC)

        def handler(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["variables"]["query"]
            assert "GROUP BY day SINCE 2028-01-01 UNTIL 2029-03-01" in query
            return table_response(
                ["day", "total_sales", "orders"],
                [
                    ["2028-01-10", 6, 1],
                    ["2028-02-28", 4, 1],
                    ["2028-02-29", 25, 2],
                    ["2028-12-31", 65, 5],
                    ["2029-02-28", 10, 1],
                ],
            )

        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        snapshot = await ytd_comparable_snapshot(analytics, ReportingCalendar("UTC"), now)
        assert snapshot.current_ytd_sales == 10.0
        assert snapshot.previous_ytd_sales == 10.0
        assert snapshot.previous_ytd_orders == 2.0
        assert snapshot.previous_full_year_sales == 100.0
        assert snapshot.previous_full_year_orders == 9.0
        assert snapshot.range["previous_end_utc"] == "2028-02-28T12:00:00.000Z"

    async def test_same_time_snapshot_matches_elapsed_duration(self, shopify_settings, mock_http, fixed_now):
        count_windows = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/orders/count.json"):
                since = request.url.params["created_at_min"]
                count_windows.append((since, request.url.params["created_at_max"]))
                return httpx.Response(200, json={"count": 6 if since.startswith("2026-03") else 3})
            query = json.loads(request.content)["variables"]["query"]
            assert "GROUP BY hour SINCE 2026-02-01 UNTIL 2026-03-16" in query
            return table_response(
                ["hour", "total_sales", "net_sales"],
                [
                    ["2026-02-15T14:00:00Z", 10, 9],
                    ["2026-02-15T15:00:00Z", 99, 90],
                    ["2026-03-15T14:00:00Z", 5, 4],
                    ["2026-03-15T15:00:00Z", 50, 45],
                ],
            )

        client = mock_http(handler)
        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=client)
        shopify = ShopifyAdminClient(shopify_settings, http_client=client)
        snapshot = await same_time_snapshot(analytics, shopify, ReportingCalendar("UTC"), fixed_now)

        assert snapshot.source == "shopify_same_time"
        assert snapshot.current_mtd_sales == 5.0
        assert snapshot.current_mtd_net_sales == 4.0
        assert snapshot.previous_mtd_sales == 10.0
        assert snapshot.previous_mtd_net_sales == 9.0
        assert snapshot.current_mtd_orders == 6
        assert snapshot.previous_mtd_orders == 3
        assert snapshot.range["previous_end_utc"] == "2026-02-15T14:30:00.000Z"
        assert sorted(count_windows) == [
            ("2026-02-01T00:00:00.000Z", "2026-02-15T14:30:00.000Z"),
            ("2026-03-01T00:00:00.000Z", "2026-03-15T14:30:00.000Z"),
        ]

    async def test_sessions_from_comparison_named_rows(self, shopify_settings, mock_http, fixed_now):
        def handler(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["variables"]["query"]
            assert "COMPARE TO previous_period" in query
            return table_response(
                ["sessions", "comparison_sessions__previous_period"],
                [{"sessions": 1200, "comparison_sessions__previous_period": 1000}],
            )

        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        snapshot = await sessions_comparable_snapshot(analytics, ReportingCalendar("UTC"), fixed_now)
        assert snapshot.metric == "sessions"
        assert snapshot.current_mtd == 1200.0
        assert snapshot.previous_mtd == 1000.0
        assert "SINCE 2026-03-01 UNTIL today" in snapshot.query_used

    async def test_sessions_fall_back_to_daily_positional_rows(self, shopify_settings, mock_http, fixed_now):
        def handler(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["variables"]["query"]
            if "COMPARE TO" in query:
                return parse_error_response("COMPARE TO is not supported")
            return table_response(
                ["day", "sessions"],
                [["2026-02-10", 30], ["2026-02-20", 99], ["2026-03-02", 40], ["2026-03-14", 60]],
            )

        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        snapshot = await sessions_comparable_snapshot(analytics, ReportingCalendar("UTC"), fixed_now)
        assert snapshot.metric == "sessions"
        assert snapshot.current_mtd == 100.0
        assert snapshot.previous_mtd == 30.0
        assert "GROUP BY day" in snapshot.query_used

    async def test_sessions_raise_last_error_when_every_query_fails(self, shopify_settings, mock_http, fixed_now):
        def handler(request: httpx.Request) -> httpx.Response:
            return parse_error_response("sessions dataset unavailable")

        analytics = ShopifyQLClient(shopify_settings, TTLCache(60), http_client=mock_http(handler))
        with pytest.raises(AnalyticsQueryError, match="sessions dataset unavailable"):
            await sessions_comparable_snapshot(analytics, ReportingCalendar("UTC"), fixed_now)
