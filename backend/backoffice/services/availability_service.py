# Overview: Service-layer operations for stock availability; derives reservations from live order lines.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func

from ..extensions import db
from ..models import StockItem, Order, OrderLine, NON_RESERVING_STATUSES
from .concurrency import lock_for_update
"""
Availability Invariants (authoritative)

Reservation model:
- Reserved quantity is never stored. It is SUM(order_lines.quantity) over lines
  that are not voided and whose order is neither SETTLED nor CANCELLED.
- available = max(0, on_hand - reserved); never negative.
- The reservation itself is the OrderLine row; these functions only read.

Locking:
- compute_availability(with_lock=True) takes SELECT ... FOR UPDATE on the
  stock item row first, so two concurrent reservation checks against the same
  item serialize instead of both seeing the same headroom. This is the only
  explicit lock the check-then-reserve path needs.
"""

DISPLAY_STATUS_IN_STOCK = "IN_STOCK"
DISPLAY_STATUS_PROCESSING = "PROCESSING"
DISPLAY_STATUS_SOLD = "SOLD"


@dataclass
class Availability:
    available: int
    reserved: int
    on_hand: int
    item: StockItem | None

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "reserved": self.reserved,
            "on_hand": self.on_hand,
            "item": self.item.to_dict() if self.item is not None else None,
        }


def _live_line_filters():
    return (
        Order.status.notin_(NON_RESERVING_STATUSES),
        OrderLine.voided_at.is_(None),
    )


def get_reserved_quantity(item_id: int) -> int:
    """Sum of quantities on live, unsettled, non-voided order lines for an item."""
    q = db.session.query(
        func.coalesce(func.sum(OrderLine.quantity), 0)
    ).join(
        Order, OrderLine.order_id == Order.id
    ).filter(
        OrderLine.stock_item_id == item_id,
        *_live_line_filters(),
    )
    return int(q.scalar() or 0)


def compute_availability(item_id: int, *, with_lock: bool = False) -> Availability:
    """
    Compute reserved/available for one stock item.

    with_lock=True must run inside the caller's unit of work; the row lock is
    held until that transaction ends.

    A missing (or soft-deleted) item is not an error: available=0, item=None.
    """
    query = db.session.query(StockItem).filter(
        StockItem.id == item_id,
        StockItem.deleted_at.is_(None),
    )
    if with_lock:
        query = lock_for_update(query)
    item = query.first()

    if item is None:
        return Availability(available=0, reserved=0, on_hand=0, item=None)

    reserved = get_reserved_quantity(item_id)
    on_hand = int(item.on_hand or 0)
    return Availability(
        available=max(0, on_hand - reserved),
        reserved=reserved,
        on_hand=on_hand,
        item=item,
    )


def compute_bulk_availability(item_ids) -> dict[int, dict]:
    """
    Availability for many items in two queries.

    Returns {item_id: {"on_hand", "reserved", "available"}}. Soft-deleted items
    are included so bulk delete/restore can inspect them; unknown ids are absent.
    """
    ids = sorted({int(i) for i in (item_ids or [])})
    if not ids:
        return {}

    reserved_rows = db.session.query(
        OrderLine.stock_item_id,
        func.coalesce(func.sum(OrderLine.quantity), 0).label("reserved"),
    ).join(
        Order, OrderLine.order_id == Order.id
    ).filter(
        OrderLine.stock_item_id.in_(ids),
        *_live_line_filters(),
    ).group_by(OrderLine.stock_item_id).all()

    reserved_by_item = {row.stock_item_id: int(row.reserved or 0) for row in reserved_rows}

    stock_rows = db.session.query(StockItem.id, StockItem.on_hand).filter(
        StockItem.id.in_(ids)
    ).all()

    result: dict[int, dict] = {}
    for row in stock_rows:
        on_hand = int(row.on_hand or 0)
        reserved = reserved_by_item.get(row.id, 0)
        result[row.id] = {
            "on_hand": on_hand,
            "reserved": reserved,
            "available": max(0, on_hand - reserved),
        }
    return result


def check_availability(item_id: int, requested_quantity: int) -> dict:
    """
    Locked availability check ahead of writing an order line.

    The caller reserves by inserting the OrderLine in the same unit of work.
    """
    availability = compute_availability(item_id, with_lock=True)
    return {
        "ok": availability.item is not None and availability.available >= requested_quantity,
        "available": availability.available,
        "item": availability.item,
    }


def derive_display_status(on_hand: int, reserved: int) -> str:
    """
    Display status from the quantity breakdown.

    SOLD when nothing is on hand, PROCESSING when everything on hand is
    spoken for by live orders, otherwise IN_STOCK.
    """
    if on_hand <= 0:
        return DISPLAY_STATUS_SOLD
    if reserved >= on_hand:
        return DISPLAY_STATUS_PROCESSING
    return DISPLAY_STATUS_IN_STOCK


def refresh_display_status(item: StockItem) -> str:
    """Recompute and assign item.status from current on_hand and reservations."""
    reserved = get_reserved_quantity(item.id)
    item.status = derive_display_status(int(item.on_hand or 0), reserved)
    return item.status
