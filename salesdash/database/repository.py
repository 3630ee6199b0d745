"""
Row Store Repository

Paginated reads and chunked upserts over the three dashboard tables.

Reads scan ``time_column >= since`` in pages ordered by the time column and
stop at the first short page; a scan that would need more than ``max_pages``
pages raises PaginationExceededError instead of returning a partial result.
Writes are ``INSERT ... ON CONFLICT (natural key) DO UPDATE`` so replaying
the sync job never duplicates rows.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesdash.core.calendar import ensure_utc
from salesdash.core.errors import PaginationExceededError
from salesdash.core.numbers import to_number
from salesdash.database.models import TABLES, TIME_COLUMNS, natural_key

logger = structlog.get_logger(__name__)

Row = Dict[str, Any]


def _ts(value: Any) -> Optional[datetime]:
    return ensure_utc(value) if isinstance(value, datetime) else None


def _num0(value: Any) -> float:
    return to_number(value) or 0.0


def normalize_hourly_row(row: Row) -> Row:
    return {
        "row_key": row.get("row_key"),
        "logged_at_utc": _ts(row.get("logged_at_utc")),
        "logged_at_local": row.get("logged_at_local"),
        "sales_amount": to_number(row.get("sales_amount")),
        "orders": to_number(row.get("orders")),
        "ad_spend": to_number(row.get("ad_spend")),
        "roas": to_number(row.get("roas")),
        "source_sales": row.get("source_sales") or None,
        "source_marketing": row.get("source_marketing") or None,
        "ingested_at_utc": _ts(row.get("ingested_at_utc")),
    }


def normalize_order_row(row: Row) -> Row:
    return {
        "order_id": row.get("order_id"),
        "order_name": row.get("order_name"),
        "created_at_utc": _ts(row.get("created_at_utc")),
        "processed_at_utc": _ts(row.get("processed_at_utc")),
        "currency": row.get("currency"),
        "source_name": row.get("source_name") or "unknown",
        "customer_id": row.get("customer_id"),
        "customer_type": row.get("customer_type") or "unknown",
        "gross_sales": to_number(row.get("gross_sales")),
        "net_sales": to_number(row.get("net_sales")),
        "total_sales": to_number(row.get("total_sales")),
        "discounts": to_number(row.get("discounts")),
        "returns_amount": to_number(row.get("returns_amount")),
        "refunds_count": to_number(row.get("refunds_count")),
        "line_items_count": to_number(row.get("line_items_count")),
        "financial_status": row.get("financial_status"),
        "fulfillment_status": row.get("fulfillment_status"),
        "cancelled_at_utc": _ts(row.get("cancelled_at_utc")),
        "is_test": bool(row.get("is_test")),
    }


def normalize_line_row(row: Row) -> Row:
    return {
        "order_line_key": row.get("order_line_key"),
        "order_id": row.get("order_id"),
        "line_item_id": row.get("line_item_id"),
        "created_at_utc": _ts(row.get("created_at_utc")),
        "product_id": row.get("product_id") or None,
        "variant_id": row.get("variant_id") or None,
        "sku": row.get("sku") or None,
        "product_title": row.get("product_title") or "Unknown Product",
        "variant_title": row.get("variant_title") or None,
        "vendor": row.get("vendor") or None,
        "source_name": row.get("source_name") or "unknown",
        "customer_type": row.get("customer_type") or "unknown",
        "quantity": _num0(row.get("quantity")),
        "gross_revenue": _num0(row.get("gross_revenue")),
        "discount_amount": _num0(row.get("discount_amount")),
        "net_revenue": _num0(row.get("net_revenue")),
        "returned_quantity": _num0(row.get("returned_quantity")),
        "returned_revenue": _num0(row.get("returned_revenue")),
        "net_quantity": _num0(row.get("net_quantity")),
        "net_revenue_after_returns": _num0(row.get("net_revenue_after_returns")),
    }


NORMALIZERS = {
    "hourly": normalize_hourly_row,
    "orders": normalize_order_row,
    "lines": normalize_line_row,
}


def chunked(rows: Sequence[Row], size: int) -> Iterable[Sequence[Row]]:
    for start in range(0, len(rows), max(1, size)):
        yield rows[start:start + size]


class RowStore:
    """
    Async access to the dashboard tables.

    Usage:
        store = RowStore(session_factory, page_size=1000, max_pages=200)
        rows = await store.fetch_orders_since(month_start)
        await store.upsert_rows("hourly", hourly_rows)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        page_size: int = 1000,
        max_pages: int = 200,
        upsert_chunk_size: int = 500,
    ):
        self.session_factory = session_factory
        self.page_size = max(1, min(5000, int(page_size or 1000)))
        self.max_pages = max(1, min(5000, int(max_pages or 200)))
        self.upsert_chunk_size = max(1, int(upsert_chunk_size or 500))

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker[AsyncSession], settings) -> "RowStore":
        return cls(
            session_factory,
            page_size=settings.store.page_size,
            max_pages=settings.store.max_pages,
            upsert_chunk_size=settings.store.upsert_chunk_size,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def select_all(self, table: str, since: datetime) -> List[Row]:
        """
        Scan ``table`` from ``since`` onwards, page by page.

        Returns:
            Normalized row dicts ordered by the table's time column

        Raises:
            PaginationExceededError: if the scan needs more than max_pages pages
        """
        model = TABLES[table]
        time_column = getattr(model, TIME_COLUMNS[table])
        key_columns = [getattr(model, name) for name in natural_key(model)]
        normalize = NORMALIZERS[table]

        query = (
            select(model.__table__)
            .where(time_column >= ensure_utc(since))
            .order_by(time_column.asc(), *key_columns)
        )

        out: List[Row] = []
        async with self.session_factory() as session:
            for page in range(self.max_pages):
                result = await session.execute(
                    query.offset(page * self.page_size).limit(self.page_size)
                )
                chunk = result.mappings().all()
                out.extend(normalize(dict(row)) for row in chunk)
                if len(chunk) < self.page_size:
                    logger.debug("Table scan complete", table=table, rows=len(out), pages=page + 1)
                    return out

        raise PaginationExceededError(model.__tablename__, self.max_pages)

    async def fetch_hourly_since(self, since: datetime) -> List[Row]:
        return await self.select_all("hourly", since)

    async def fetch_orders_since(self, since: datetime) -> List[Row]:
        return await self.select_all("orders", since)

    async def fetch_lines_since(self, since: datetime) -> List[Row]:
        return await self.select_all("lines", since)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_rows(self, table: str, rows: Sequence[Row]) -> int:
        """
        Insert or update rows by natural key, in chunks.

        Columns missing from a row are left out of the statement; columns the
        table does not have are ignored.

        Returns:
            Number of rows written
        """
        if not rows:
            return 0

        model = TABLES[table]
        keys = natural_key(model)
        columns = {column.name for column in model.__table__.columns}

        written = 0
        async with self.session_factory() as session:
            insert = postgresql.insert if session.bind.dialect.name == "postgresql" else sqlite.insert
            for chunk in chunked(list(rows), self.upsert_chunk_size):
                values = [{k: v for k, v in row.items() if k in columns} for row in chunk]
                stmt = insert(model.__table__).values(values)
                update_columns = {
                    name: stmt.excluded[name]
                    for name in values[0].keys()
                    if name not in keys
                }
                if update_columns:
                    stmt = stmt.on_conflict_do_update(index_elements=keys, set_=update_columns)
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=keys)
                await session.execute(stmt)
                written += len(values)
            await session.commit()

        logger.info("Rows upserted", table=model.__tablename__, rows=written)
        return written
