"""
Database Module
"""
from .connection import (
    build_engine,
    build_session_factory,
    close_database,
    create_tables,
    get_session_factory,
    init_database,
    open_row_store,
)
from .models import Base, HourlyMetric, ShopifyOrder, ShopifyOrderLine
from .repository import RowStore

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_tables",
    "init_database",
    "close_database",
    "get_session_factory",
    "open_row_store",
    "Base",
    "HourlyMetric",
    "ShopifyOrder",
    "ShopifyOrderLine",
    "RowStore",
]
