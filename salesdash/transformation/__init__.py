"""
Data Transformation Module
"""
from .hourly import merge_hourly_rows, row_key_for_hour
from .orders import OrderStructures, build_order_structures, is_reportable_shopify_order

__all__ = [
    "merge_hourly_rows",
    "row_key_for_hour",
    "OrderStructures",
    "build_order_structures",
    "is_reportable_shopify_order",
]
