"""
Unit Tests - Aggregation Primitives
"""
from datetime import datetime, timedelta, timezone

from salesdash.metrics.aggregation import (
    aggregate_hourly,
    aggregate_orders,
    aggregate_products,
    build_quality,
    build_source_coverage,
    daily_series,
    filter_between,
    group_order_totals,
    is_reportable_order,
)

UTC = timezone.utc
T0 = datetime(2026, 3, 10, 9, tzinfo=UTC)


class TestOrderRollups:
    """Tests for order totals"""

    def test_voided_order_excluded(self, make_order):
        rows = [
            make_order("1", T0, 100.0),
            make_order("2", T0, 50.0, financial_status="voided"),
        ]
        totals = aggregate_orders(rows)
        assert totals.total_sales == 100.0
        assert totals.orders_count == 1

    def test_cancelled_and_test_orders_excluded(self, make_order):
        assert not is_reportable_order(make_order("1", T0, 10.0, cancelled_at_utc=T0))
        assert not is_reportable_order(make_order("2", T0, 10.0, is_test=True))
        assert is_reportable_order(make_order("3", T0, 10.0, financial_status="refunded"))

    def test_empty_input_is_zeroed(self):
        totals = aggregate_orders([])
        assert totals.to_dict() == {
            "gross_sales": 0.0,
            "net_sales": 0.0,
            "total_sales": 0.0,
            "discounts": 0.0,
            "returns_amount": 0.0,
            "orders_count": 0,
        }

    def test_missing_amounts_count_as_zero(self, make_order):
        totals = aggregate_orders([make_order("1", T0, 40.0), make_order("2", T0, None)])
        assert totals.total_sales == 40.0
        assert totals.orders_count == 2

    def test_group_order_totals_by_channel(self, make_order):
        rows = [
            make_order("1", T0, 30.0, source_name="web"),
            make_order("2", T0, 20.0, source_name="pos"),
            make_order("3", T0, 25.0, source_name="web"),
            make_order("4", T0, 99.0, source_name=None),
            make_order("5", T0, 500.0, source_name="web", is_test=True),
        ]
        groups = {g["source_name"]: g for g in group_order_totals(rows, "source_name")}
        assert groups["web"]["revenue"] == 55.0
        assert groups["web"]["orders"] == 2
        assert groups["pos"]["orders"] == 1
        assert groups["unknown"]["revenue"] == 99.0


class TestHourlyRollups:
    """Tests for hourly series and quality"""

    def test_aggregate_hourly_ratios(self, make_hourly):
        rows = [
            make_hourly(T0, sales=300.0, orders=3, ad_spend=100.0),
            make_hourly(T0 + timedelta(hours=1), sales=100.0, orders=1, ad_spend=None),
        ]
        summary = aggregate_hourly(rows)
        assert summary["sales_amount"] == 400.0
        assert summary["aov"] == 100.0
        assert summary["roas"] == 4.0
        assert summary["row_count"] == 2

    def test_aggregate_hourly_without_spend_has_no_roas(self, make_hourly):
        assert aggregate_hourly([make_hourly(T0, sales=10.0, orders=1)])["roas"] is None

    def test_daily_series_groups_by_utc_day(self, make_hourly):
        rows = [
            make_hourly(datetime(2026, 3, 9, 23, tzinfo=UTC), sales=10.0, orders=1),
            make_hourly(datetime(2026, 3, 10, 0, tzinfo=UTC), sales=20.0, orders=1),
            make_hourly(datetime(2026, 3, 10, 5, tzinfo=UTC), sales=30.0, orders=2),
        ]
        series = daily_series(rows)
        assert [point["day"] for point in series] == ["2026-03-09", "2026-03-10"]
        assert series[1]["sales_amount"] == 50.0
        assert series[1]["rows"] == 2
        assert series[1]["aov"] == 16.67

    def test_quality_counts_missing_hours(self, make_hourly):
        rows = [
            make_hourly(T0, sales=10.0, orders=1),
            make_hourly(T0 + timedelta(hours=2), sales=None, orders=None),
        ]
        quality = build_quality(rows, T0 + timedelta(hours=3))
        assert quality["expected_hours"] == 3
        assert quality["missing_hours"] == 1
        assert quality["hours_without_sales"] == 1
        assert quality["hours_without_marketing"] == 2
        assert quality["latest_row_age_minutes"] == 60

    def test_quality_flags_duplicate_keys(self, make_hourly):
        rows = [make_hourly(T0, sales=1.0), make_hourly(T0, sales=2.0)]
        quality = build_quality(rows, T0)
        assert quality["duplicate_rows"] == 1
        assert quality["unique_hour_keys"] == 1

    def test_quality_empty(self):
        quality = build_quality([], T0)
        assert quality["row_count"] == 0
        assert quality["latest_row_age_minutes"] is None

    def test_source_coverage(self, make_hourly):
        rows = [
            make_hourly(T0, sales=10.0, orders=1, ad_spend=5.0, source_marketing="apps_script"),
            make_hourly(T0 + timedelta(hours=1), sales=10.0, orders=1),
            make_hourly(T0 + timedelta(hours=2), sales=None, orders=None, source_sales=None),
        ]
        coverage = build_source_coverage(rows)
        assert coverage["coverage"] == {"both": 1, "sales_only": 1, "marketing_only": 0, "neither": 1}
        assert coverage["source_sales_counts"] == {"shopify": 2, "unknown": 1}


class TestProductRollups:
    """Tests for per-product rollups"""

    def test_units_and_revenue_net_of_returns(self, make_line):
        lines = [
            make_line("1", "a", T0, net_quantity=3.0, net_revenue_after_returns=30.0, returned_quantity=2.0),
            make_line("2", "b", T0, net_quantity=1.0, net_revenue_after_returns=10.0),
            make_line("3", "c", T0, product_id="p-2", product_title="Wool Scarf", net_quantity=5.0),
        ]
        products = {p["product_key"]: p for p in aggregate_products(lines)}
        assert products["p-1"]["units"] == 4.0
        assert products["p-1"]["revenue"] == 40.0
        assert products["p-1"]["returned_units"] == 2.0
        assert products["p-2"]["title"] == "Wool Scarf"

    def test_lines_without_product_id_group_by_title(self, make_line):
        lines = [
            make_line("1", "a", T0, product_id=None, product_title="Gift Card"),
            make_line("2", "b", T0, product_id=None, product_title="Gift Card"),
        ]
        products = aggregate_products(lines)
        assert len(products) == 1
        assert products[0]["product_key"] == "title:Gift Card"
        assert products[0]["units"] == 2.0


class TestFilters:
    """Tests for time-window filters"""

    def test_filter_between_is_inclusive(self, make_order):
        rows = [
            make_order("1", T0, 1.0),
            make_order("2", T0 + timedelta(hours=1), 1.0),
            make_order("3", T0 + timedelta(hours=2), 1.0),
        ]
        kept = filter_between(rows, "created_at_utc", T0, T0 + timedelta(hours=1))
        assert [row["order_id"] for row in kept] == ["1", "2"]
