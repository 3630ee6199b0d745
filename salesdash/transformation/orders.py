"""
Shopify Order Transformation

Turns raw Shopify REST orders into order rows, order line rows and hourly
sales buckets. Every order with a valid creation time is stored so later
cancellations overwrite the stored row; only reportable orders feed the
hourly sales buckets.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from salesdash.core.calendar import hour_key_from_datetime, parse_instant
from salesdash.core.numbers import clean_number, round_half_up

logger = structlog.get_logger(__name__)

Row = Dict[str, Any]


def is_reportable_shopify_order(order: Row) -> bool:
    """Upstream form of the reportable predicate (raw Shopify fields)."""
    if str(order.get("financial_status") or "").lower() == "voided":
        return False
    if order.get("cancelled_at"):
        return False
    if order.get("test") is True:
        return False
    return True


def _first_number(*values: Any) -> Optional[float]:
    for value in values:
        number = clean_number(value)
        if number is not None:
            return number
    return None


def derive_gross_sales(order: Row) -> Optional[float]:
    """Subtotal plus discounts, else the line items total."""
    subtotal = _first_number(order.get("current_subtotal_price"), order.get("subtotal_price"))
    discounts = _first_number(order.get("current_total_discounts"), order.get("total_discounts"))
    if subtotal is not None and discounts is not None:
        return subtotal + discounts
    return clean_number(order.get("total_line_items_price"))


def derive_refund_amount(order: Row) -> float:
    """
    Refunded amount for an order.

    Refund transactions are preferred; when they sum to nothing the refund
    line subtotals are used instead.
    """
    refunds = order.get("refunds") or []
    from_transactions = 0.0
    for refund in refunds:
        for tx in refund.get("transactions") or []:
            amount = clean_number(tx.get("amount"))
            if amount is not None:
                from_transactions += amount
    if from_transactions > 0:
        return from_transactions

    from_lines = 0.0
    for refund in refunds:
        for item in refund.get("refund_line_items") or []:
            subtotal = clean_number(item.get("subtotal"))
            if subtotal is not None:
                from_lines += subtotal
    return from_lines


def build_refund_line_map(refunds: List[Row]) -> Dict[str, Dict[str, float]]:
    """Returned quantity and revenue per line item id, summed over all refunds."""
    refund_map: Dict[str, Dict[str, float]] = defaultdict(lambda: {"returned_quantity": 0.0, "returned_revenue": 0.0})
    for refund in refunds:
        for item in refund.get("refund_line_items") or []:
            line_item = item.get("line_item") or {}
            line_id = item.get("line_item_id") or line_item.get("id")
            if not line_id:
                continue
            quantity = clean_number(item.get("quantity")) or 0.0
            revenue = clean_number(item.get("subtotal"))
            if revenue is None:
                revenue = (clean_number(line_item.get("price")) or 0.0) * quantity
            entry = refund_map[str(line_id)]
            entry["returned_quantity"] += quantity
            entry["returned_revenue"] += revenue
    return dict(refund_map)


def customer_type(order: Row) -> str:
    """``new`` when the customer has at most one order at ingestion time."""
    customer = order.get("customer") or {}
    if not customer.get("id"):
        return "unknown"
    orders_count = clean_number(customer.get("orders_count")) or 0
    return "new" if orders_count <= 1 else "returning"


def build_line_rows(order: Row, order_id: str, created_at: datetime, source_name: str, ctype: str, run_at: datetime) -> List[Row]:
    refund_map = build_refund_line_map(order.get("refunds") or [])
    rows = []
    for line in order.get("line_items") or []:
        line_id = str(line.get("id"))
        quantity = clean_number(line.get("quantity")) or 0.0
        gross = (clean_number(line.get("price")) or 0.0) * quantity
        discount = clean_number(line.get("total_discount")) or 0.0
        net = gross - discount
        refunded = refund_map.get(line_id, {"returned_quantity": 0.0, "returned_revenue": 0.0})

        rows.append({
            "order_line_key": f"{order_id}:{line_id}",
            "order_id": order_id,
            "line_item_id": line_id,
            "created_at_utc": created_at,
            "product_id": str(line["product_id"]) if line.get("product_id") else None,
            "variant_id": str(line["variant_id"]) if line.get("variant_id") else None,
            "sku": line.get("sku") or None,
            "product_title": line.get("title") or None,
            "variant_title": line.get("variant_title") or None,
            "vendor": line.get("vendor") or None,
            "source_name": source_name,
            "customer_type": ctype,
            "quantity": round_half_up(quantity, 2),
            "gross_revenue": round_half_up(gross, 2),
            "discount_amount": round_half_up(discount, 2),
            "net_revenue": round_half_up(net, 2),
            "returned_quantity": round_half_up(refunded["returned_quantity"], 2),
            "returned_revenue": round_half_up(refunded["returned_revenue"], 2),
            "net_quantity": round_half_up(max(0.0, quantity - refunded["returned_quantity"]), 2),
            "net_revenue_after_returns": round_half_up(net - refunded["returned_revenue"], 2),
            "ingested_at_utc": run_at,
        })
    return rows


@dataclass
class OrderStructures:
    hourly: Dict[str, Dict[str, float]] = field(default_factory=dict)
    order_rows: List[Row] = field(default_factory=list)
    line_rows: List[Row] = field(default_factory=list)
    skipped: int = 0


def build_order_structures(orders: List[Row], run_at: datetime) -> OrderStructures:
    """
    Build store rows and hourly sales buckets from raw Shopify orders.

    Args:
        orders: Orders as returned by ``orders.json``
        run_at: Sync run time, stamped into ``ingested_at_utc``

    Returns:
        OrderStructures with ``hourly`` keyed by UTC hour key
    """
    result = OrderStructures()
    buckets: Dict[str, Dict[str, float]] = defaultdict(lambda: {"sales_amount": 0.0, "orders": 0.0})

    for order in orders:
        created_at = parse_instant(order.get("created_at"))
        if created_at is None:
            result.skipped += 1
            continue

        order_id = str(order.get("id"))
        source_name = order.get("source_name") or "unknown"
        ctype = customer_type(order)
        gross = derive_gross_sales(order)
        net = _first_number(order.get("current_subtotal_price"), order.get("subtotal_price"))
        total = _first_number(order.get("current_total_price"), order.get("total_price"))
        discounts = _first_number(order.get("current_total_discounts"), order.get("total_discounts"))
        line_items = order.get("line_items") or []
        refunds = order.get("refunds") or []
        customer = order.get("customer") or {}

        result.order_rows.append({
            "order_id": order_id,
            "order_name": order.get("name") or None,
            "created_at_utc": created_at,
            "processed_at_utc": parse_instant(order.get("processed_at")) or created_at,
            "currency": order.get("currency") or None,
            "source_name": source_name,
            "customer_id": str(customer["id"]) if customer.get("id") else None,
            "customer_type": ctype,
            "gross_sales": round_half_up(gross, 2),
            "net_sales": round_half_up(net, 2),
            "total_sales": round_half_up(total, 2),
            "discounts": round_half_up(discounts, 2),
            "returns_amount": round_half_up(derive_refund_amount(order), 2),
            "refunds_count": len(refunds),
            "line_items_count": int(sum(clean_number(item.get("quantity")) or 0 for item in line_items)),
            "financial_status": order.get("financial_status") or None,
            "fulfillment_status": order.get("fulfillment_status") or None,
            "cancelled_at_utc": parse_instant(order.get("cancelled_at")),
            "is_test": order.get("test") is True,
            "ingested_at_utc": run_at,
        })
        result.line_rows.extend(build_line_rows(order, order_id, created_at, source_name, ctype, run_at))

        if is_reportable_shopify_order(order):
            bucket = buckets[hour_key_from_datetime(created_at)]
            if total is not None:
                bucket["sales_amount"] += total
            bucket["orders"] += 1

    result.hourly = {
        hour_key: {
            "sales_amount": round_half_up(bucket["sales_amount"], 2),
            "orders": round_half_up(bucket["orders"], 2),
        }
        for hour_key, bucket in buckets.items()
    }
    if result.skipped:
        logger.warning("Orders without a valid created_at skipped", skipped=result.skipped)
    return result
