"""
Metrics Module

Aggregation primitives and period-comparison snapshots.
"""
from .aggregation import (
    OrderTotals,
    aggregate_hourly,
    aggregate_orders,
    aggregate_products,
    filter_between,
    filter_reportable,
    is_reportable_order,
)

__all__ = [
    "OrderTotals",
    "aggregate_hourly",
    "aggregate_orders",
    "aggregate_products",
    "filter_between",
    "filter_reportable",
    "is_reportable_order",
]
