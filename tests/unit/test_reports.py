"""
Unit Tests - Dashboard Reports

Reports run against the in-memory store with every upstream unconfigured,
so each figure comes from the stored order and hourly rows.
"""
import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from salesdash.config.settings import ReportingSettings
from salesdash.core.calendar import ReportingCalendar
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.integrations.shopifyql import ShopifyQLClient
from salesdash.reports.cells import CELL_JOBS, build_cells
from salesdash.reports.context import ReportContext
from salesdash.reports.finance import (
    build_aov,
    build_channel_split,
    build_gross_net_returns,
    build_heatmap_today,
    build_new_vs_returning,
    build_sessions_mtd,
)
from salesdash.reports.kpis import build_summary, build_ytd
from salesdash.reports.pace import build_daily_pace, build_sales_goal, compute_sales_goal
from salesdash.reports.products import build_top_products, build_watchlist, rank_momentum
from salesdash.serving.cache import TTLCache

UTC = timezone.utc


def at(month, day, hour=12, year=2026):
    return datetime(year, month, day, hour, tzinfo=UTC)


def shop_table(columns, rows):
    return httpx.Response(200, json={
        "data": {
            "shopifyqlQuery": {
                "parseErrors": [],
                "tableData": {"columns": [{"name": c} for c in columns], "rows": rows},
            }
        }
    })


def answer_shop(request: httpx.Request) -> httpx.Response:
    """
    March 2026 through the 15th: the comparable daily snapshot shows 300 vs
    200 in sales and 5 vs 4 orders, the same-time snapshot 300 vs 100 in
    sales and 6 vs 3 orders.
    """
    if request.url.path.endswith("/orders/count.json"):
        return httpx.Response(200, json={"count": 6 if request.url.params["created_at_min"].startswith("2026-03") else 3})

    query = json.loads(request.content)["variables"]["query"]
    if "GROUP BY hour" in query:
        return shop_table(
            ["hour", "total_sales", "net_sales"],
            [["2026-02-10T10:00:00Z", 100, 90], ["2026-03-05T10:00:00Z", 300, 270]],
        )
    if "GROUP BY day" in query:
        return shop_table(
            ["day", "total_sales", "net_sales", "orders"],
            [["2026-02-10", 200, 180, 4], ["2026-03-05", 300, 270, 5]],
        )
    return shop_table(["month", "gross_sales", "net_sales", "total_sales"], [])


@pytest.fixture
def connected_context(test_settings, shopify_settings, store, fixed_now):
    """Report context whose ShopifyQL and Admin API calls are answered by ``answer_shop``"""
    client = httpx.AsyncClient(transport=httpx.MockTransport(answer_shop))
    return ReportContext(
        settings=test_settings,
        store=store,
        analytics=ShopifyQLClient(shopify_settings, TTLCache(60), http_client=client),
        shopify=ShopifyAdminClient(shopify_settings, http_client=client),
        calendar=ReportingCalendar("UTC"),
        clock=lambda: fixed_now,
    )


@pytest.fixture
async def seeded(store, make_order, make_line, make_hourly):
    """
    March 2026 month-to-date: 150 in reportable sales over two orders,
    one voided order, and February orders either side of the comparable day.
    """
    await store.upsert_rows("orders", [
        make_order("o1", at(3, 2), 100.0, customer_type="new", source_name="web", discounts=10.0),
        make_order("o2", at(3, 10), 50.0, customer_type="returning", source_name="pos"),
        make_order("o3", at(3, 11), 30.0, financial_status="voided"),
        make_order("f1", at(2, 3), 80.0),
        make_order("f2", at(2, 20), 500.0),
        make_order("y1", at(1, 10), 200.0),
        make_order("p1", at(2, 1, year=2025), 100.0),
        make_order("p2", at(6, 1, year=2025), 400.0),
    ])
    await store.upsert_rows("lines", [
        make_line("o1", "l1", at(3, 2), quantity=2.0, net_quantity=2.0, net_revenue_after_returns=20.0),
        make_line(
            "o2", "l2", at(3, 10),
            product_id="p-2", product_title="Wool Scarf", net_quantity=5.0, net_revenue_after_returns=25.0,
        ),
        make_line("o3", "l3", at(3, 11), net_quantity=100.0, net_revenue_after_returns=1000.0),
    ])
    await store.upsert_rows("hourly", [
        make_hourly(at(3, 2, 10), sales=100.0, orders=1, ad_spend=50.0),
        make_hourly(at(3, 14, 9), sales=5.0, orders=1),
        make_hourly(at(3, 15, 9), sales=20.0, orders=1),
        make_hourly(at(3, 15, 16), sales=99.0, orders=9),
    ])
    return store


class TestKpis:
    """Tests for the MTD and YTD bundles"""

    async def test_summary_falls_back_to_orders_table(self, report_context, seeded):
        report = await build_summary(report_context)

        summary = report["summary"]
        assert summary["mtd_sales"] == 150.0
        assert summary["mtd_orders"] == 2.0
        assert summary["mtd_ad_spend"] == 50.0
        assert summary["mtd_roas"] == 3.0
        assert summary["sales_source"] == "orders_table"

        kpis = report["kpis"]
        assert kpis["previous"]["sales_amount"] == 80.0
        assert kpis["change"]["sales_amount_pct"] == 88.0
        assert kpis["change"]["orders_pct"] == 100.0
        assert kpis["change"]["ad_spend_pct"] is None
        assert report["window"]["previous_end_utc"] == "2026-02-15T23:59:59.999Z"

    async def test_summary_changes_follow_same_time_snapshot(self, connected_context):
        """Headline values come from the comparable snapshot, changes from the same-time one"""
        report = await build_summary(connected_context)

        assert report["summary"]["mtd_sales"] == 300.0
        assert report["summary"]["sales_source"] == "shopifyql"
        kpis = report["kpis"]
        assert kpis["current"]["orders"] == 5.0
        assert kpis["previous"]["sales_amount"] == 200.0
        assert kpis["previous"]["orders"] == 4.0
        assert kpis["change"]["sales_amount_pct"] == 200.0
        assert kpis["change"]["orders_pct"] == 100.0

    async def test_summary_on_empty_store(self, report_context):
        report = await build_summary(report_context)
        assert report["summary"]["mtd_sales"] == 0.0
        assert report["kpis"]["change"]["sales_amount_pct"] is None

    async def test_ytd(self, report_context, seeded):
        report = await build_ytd(report_context)
        assert report["current"]["sales_amount"] == 930.0
        assert report["previous"]["sales_amount"] == 100.0
        assert report["previous_year"]["sales_amount"] == 500.0
        assert report["change"]["sales_amount_pct"] == 830.0
        assert report["source"]["sales"] == "orders_table"

    async def test_ytd_without_rows_is_null(self, report_context):
        report = await build_ytd(report_context)
        assert report["current"]["sales_amount"] is None
        assert report["source"]["sales"] == "unavailable"


class TestPaceAndGoal:
    """Tests for pace and sales goal"""

    def test_goal_beats_multiplied_target(self):
        reporting = ReportingSettings(sales_target_multiplier=1.1)
        goal = compute_sales_goal(46000.0, 40000.0, reporting, "2026-03", 15, 31)
        assert goal["target"] == 44000.0
        assert goal["target_source"] == "previous_month_multiplier"
        assert goal["beat_target"] is True
        assert goal["gap_target"] == "+2000"
        assert goal["status"] == "target_achieved"

    def test_goal_month_target_behind_pace(self):
        reporting = ReportingSettings(sales_targets_by_month={"2026-03": 50000})
        goal = compute_sales_goal(20000.0, 40000.0, reporting, "2026-03", 15, 31)
        assert goal["target"] == 50000.0
        assert goal["target_source"] == "month_target"
        assert goal["gap_target"] == "-30000"
        assert goal["progress_pct"] == 40.0
        assert goal["expected_progress_pct"] == 48.39
        assert goal["status"] == "behind_pace"

    def test_goal_without_any_target(self):
        goal = compute_sales_goal(100.0, None, ReportingSettings(), "2026-03", 15, 31)
        assert goal["status"] == "unavailable"
        assert goal["beat_target"] is None

    async def test_daily_pace_targets_previous_month(self, report_context, seeded):
        pace = await build_daily_pace(report_context)
        assert pace["target_source"] == "previous_month_total_sales"
        assert pace["month_goal"] == 580.0
        assert pace["mtd_sales"] == 150.0
        assert pace["days_remaining"] == 16
        assert pace["required_daily_pace"] == 26.88
        assert pace["on_track_today"] is False

    async def test_sales_goal_report(self, report_context, seeded):
        goal = await build_sales_goal(report_context)
        assert goal["month"] == "2026-03"
        assert goal["current"] == 150.0
        assert goal["previous_month_total"] == 580.0
        assert goal["status"] == "behind_pace"


class TestProducts:
    """Tests for product rankings"""

    async def test_top_products_by_units(self, report_context, seeded):
        report = await build_top_products(report_context, "units", 10)
        assert [p["title"] for p in report["products"]] == ["Wool Scarf", "Linen Shirt"]
        assert report["total_units"] == 7.0
        assert report["products"][0]["unit_share_pct"] == 71.43

    async def test_top_products_by_revenue_skips_voided_orders(self, report_context, seeded):
        report = await build_top_products(report_context, "revenue", 1)
        assert len(report["products"]) == 1
        assert report["products"][0]["revenue"] == 25.0
        assert report["total_revenue"] == 45.0

    def test_momentum_ranks_by_delta(self):
        current = [
            {"product_key": "a", "title": "A", "units": 4.0, "revenue": 40.0},
            {"product_key": "b", "title": "B", "units": 3.0, "revenue": 30.0},
        ]
        previous = [{"product_key": "a", "title": "A", "units": 3.0, "revenue": 30.0}]
        ranked = rank_momentum(current, previous, "revenue")
        assert [item["product_key"] for item in ranked] == ["b", "a"]
        assert ranked[0]["delta"] == 30.0
        assert ranked[0]["delta_pct"] is None
        assert ranked[1]["delta_pct"] == 33.33

    def test_watchlist_orders_by_return_rate(self):
        def product(key, units, returned, revenue):
            return {
                "product_key": key, "product_id": key, "title": key.upper(),
                "units": units, "returned_units": returned, "returned_revenue": revenue,
            }

        watchlist = build_watchlist([
            product("a", 8.0, 2.0, 40.0),
            product("b", 1.0, 1.0, 5.0),
            product("c", 10.0, 0.0, 0.0),
        ])
        assert [item["product_key"] for item in watchlist] == ["b", "a"]
        assert watchlist[1]["return_rate_pct"] == 20.0


class TestFinance:
    """Tests for the finance and customer breakdowns"""

    async def test_gross_net_returns(self, report_context, seeded):
        report = await build_gross_net_returns(report_context)
        assert report["status"] == "ok"
        assert report["total_sales"] == 150.0
        assert report["orders_count"] == 2

    async def test_empty_month_is_unavailable(self, report_context):
        report = await build_gross_net_returns(report_context)
        assert report["status"] == "unavailable"
        assert report["unavailable_reason"]

    async def test_new_vs_returning(self, report_context, seeded):
        report = await build_new_vs_returning(report_context)
        assert report["revenue"] == {"new": 100.0, "returning": 50.0, "unknown": 0.0}
        assert report["shares_pct"]["new"] == 66.67

    async def test_channel_split(self, report_context, seeded):
        report = await build_channel_split(report_context)
        assert [c["channel"] for c in report["channels"]] == ["web", "pos"]
        assert report["total_revenue"] == 150.0

    async def test_heatmap_today(self, report_context, seeded):
        report = await build_heatmap_today(report_context)
        assert len(report["heatmap"]) == 24
        assert report["day_utc"] == "2026-03-15"
        by_hour = {cell["hour_utc"]: cell for cell in report["heatmap"]}
        assert by_hour["09"]["sales_amount"] == 20.0
        assert by_hour["16"]["sales_amount"] == 0.0

    async def test_aov_from_orders_table(self, report_context, seeded):
        report = await build_aov(report_context)
        assert report["status"] == "ok"
        assert report["source_sales"] == "orders_table"
        assert report["mtd_orders"] == 2.0
        assert report["mtd_aov"] == 75.0
        assert report["previous_period_aov"] == 80.0
        assert report["mtd_sales"] == report["mtd_net_sales"] == 150.0

    async def test_aov_unavailable_when_store_fails(self, report_context, monkeypatch):
        async def offline(since):
            raise OperationalError("SELECT orders", {}, Exception("store offline"))

        monkeypatch.setattr(report_context.store, "fetch_orders_since", offline)
        report = await build_aov(report_context)
        assert report["status"] == "unavailable"
        assert "store offline" in report["unavailable_reason"]
        assert report["mtd_aov"] is None
        assert report["mtd_sales"] is None

    async def test_sessions_unavailable_without_credentials(self, report_context):
        report = await build_sessions_mtd(report_context)
        assert report["status"] == "unavailable"
        assert report["unavailable_reason"] == "Shopify credentials are not configured"
        assert report["mtd_sessions"] is None


class TestCells:
    """Tests for the all-settled fan-out"""

    async def test_failing_cell_is_null(self, report_context):
        async def ok(ctx):
            return {"value": 1}

        async def broken(ctx):
            raise RuntimeError("boom")

        result = await build_cells(report_context, {"aov": ok, "channel_split": broken})
        assert result["aov"] == {"value": 1}
        assert result["channel_split"] is None
        assert result["errors"] == {"channel_split": "boom"}
        assert result["summary"] is None

    async def test_every_cell_builds_on_empty_store(self, report_context):
        result = await build_cells(report_context)
        assert result["errors"] == {}
        assert set(CELL_JOBS) - {"summary"} <= set(result)
        assert result["kpis"]["current"]["sales_amount"] == 0.0
