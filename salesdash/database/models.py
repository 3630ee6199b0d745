"""
Database Models - Dashboard Row Store

Three tables written by the hourly sync job and read by the report builders:

- HourlyMetric: one row per UTC hour bucket (sales merged with marketing)
- ShopifyOrder: one row per order, amounts already normalized
- ShopifyOrderLine: one row per order line, with returns folded in

Every table is keyed by a natural key so re-running the sync job upserts the
same rows instead of appending duplicates. Timestamps are stored in UTC.
"""

from datetime import datetime
from typing import Dict, List, Optional, Type

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Money columns come back as floats so aggregation never mixes Decimal and float
Money = Numeric(14, 2, asdecimal=False)
Ratio = Numeric(14, 4, asdecimal=False)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class HourlyMetric(Base):
    """
    Hourly metrics table

    Sales columns come from Shopify orders, marketing columns from the
    spreadsheet feed. A source that has no value for an hour keeps the value
    already stored.
    """
    __tablename__ = "hourly_metrics"

    row_key: Mapped[str] = mapped_column(String(32), primary_key=True)  # YYYY-MM-DD-HH-tw
    logged_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    logged_at_local: Mapped[Optional[str]] = mapped_column(String(64))

    sales_amount: Mapped[Optional[float]] = mapped_column(Money)
    orders: Mapped[Optional[float]] = mapped_column(Money)
    ad_spend: Mapped[Optional[float]] = mapped_column(Money)
    roas: Mapped[Optional[float]] = mapped_column(Ratio)

    source_sales: Mapped[Optional[str]] = mapped_column(String(32))
    source_marketing: Mapped[Optional[str]] = mapped_column(String(32))
    ingested_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_hourly_metrics_logged_at", "logged_at_utc"),
    )


class ShopifyOrder(Base):
    """
    Orders table

    ``customer_type`` is decided once at ingestion from the customer's order
    count and never revisited.
    """
    __tablename__ = "shopify_orders"

    order_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    order_name: Mapped[Optional[str]] = mapped_column(String(64))
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    currency: Mapped[Optional[str]] = mapped_column(String(8))
    source_name: Mapped[str] = mapped_column(String(64), default="unknown")
    customer_id: Mapped[Optional[str]] = mapped_column(String(32))
    customer_type: Mapped[str] = mapped_column(String(16), default="unknown")

    gross_sales: Mapped[Optional[float]] = mapped_column(Money)
    net_sales: Mapped[Optional[float]] = mapped_column(Money)
    total_sales: Mapped[Optional[float]] = mapped_column(Money)
    discounts: Mapped[Optional[float]] = mapped_column(Money)
    returns_amount: Mapped[float] = mapped_column(Money, default=0)
    refunds_count: Mapped[int] = mapped_column(Integer, default=0)
    line_items_count: Mapped[int] = mapped_column(Integer, default=0)

    financial_status: Mapped[Optional[str]] = mapped_column(String(32))
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(32))
    cancelled_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)
    ingested_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_shopify_orders_created_at", "created_at_utc"),
    )


class ShopifyOrderLine(Base):
    """Order lines table, keyed by ``{order_id}:{line_item_id}``"""
    __tablename__ = "shopify_order_lines"

    order_line_key: Mapped[str] = mapped_column(String(80), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(32), nullable=False)
    line_item_id: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    product_id: Mapped[Optional[str]] = mapped_column(String(32))
    variant_id: Mapped[Optional[str]] = mapped_column(String(32))
    sku: Mapped[Optional[str]] = mapped_column(String(128))
    product_title: Mapped[Optional[str]] = mapped_column(Text)
    variant_title: Mapped[Optional[str]] = mapped_column(Text)
    vendor: Mapped[Optional[str]] = mapped_column(String(255))
    source_name: Mapped[str] = mapped_column(String(64), default="unknown")
    customer_type: Mapped[str] = mapped_column(String(16), default="unknown")

    quantity: Mapped[float] = mapped_column(Money, default=0)
    gross_revenue: Mapped[float] = mapped_column(Money, default=0)
    discount_amount: Mapped[float] = mapped_column(Money, default=0)
    net_revenue: Mapped[float] = mapped_column(Money, default=0)
    returned_quantity: Mapped[float] = mapped_column(Money, default=0)
    returned_revenue: Mapped[float] = mapped_column(Money, default=0)
    net_quantity: Mapped[float] = mapped_column(Money, default=0)
    net_revenue_after_returns: Mapped[float] = mapped_column(Money, default=0)
    ingested_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_shopify_order_lines_created_at", "created_at_utc"),
        Index("ix_shopify_order_lines_order_id", "order_id"),
    )


# Natural key and scan column for each table
TABLES: Dict[str, Type[Base]] = {
    "hourly": HourlyMetric,
    "orders": ShopifyOrder,
    "lines": ShopifyOrderLine,
}

TIME_COLUMNS: Dict[str, str] = {
    "hourly": "logged_at_utc",
    "orders": "created_at_utc",
    "lines": "created_at_utc",
}


def natural_key(model: Type[Base]) -> List[str]:
    return [column.name for column in model.__table__.primary_key.columns]
