# Overview: Append-only audit trail for orders, returns, credits and stock items.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import AuditEvent, StockItemEvent
"""
Audit Invariants (authoritative)

- Append-only: no updates or deletes of existing rows.
- No domain logic here; callers decide what to record.
- Rows are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no audit trace.
"""

# Activity log actions
ACTION_RETURN_CREATED = "return.created"
ACTION_RETURN_FINALIZED = "return.finalized"
ACTION_RETURN_CANCELLED = "return.cancelled"
ACTION_REFUND_RECORDED = "transaction.refund_recorded"
ACTION_PAYMENT_RECEIVED = "transaction.payment_received"
ACTION_TRANSACTION_VOIDED = "transaction.voided"
ACTION_CREDIT_CREATED = "credit.created"
ACTION_CREDIT_APPLIED = "credit.applied"
ACTION_CREDIT_RESTORED = "credit.restored"
ACTION_ORDER_CANCELLED = "order.cancelled"
ACTION_ORDER_LINE_VOIDED = "order.line_voided"

# Stock item history events
EVENT_RETURN_INITIATED = "RETURN_INITIATED"
EVENT_RETURN_FINALIZED = "RETURN_FINALIZED"
EVENT_INVENTORY_RELEASED = "INVENTORY_RELEASED"
EVENT_REFUND_ISSUED = "REFUND_ISSUED"
EVENT_EXCHANGE_CREDIT_CREATED = "EXCHANGE_CREDIT_CREATED"
EVENT_SOLD = "SOLD"
EVENT_SALE_REVERSED = "SALE_REVERSED"
EVENT_ORDER_CANCELLED = "ORDER_CANCELLED"
EVENT_SOFT_DELETED = "SOFT_DELETED"
EVENT_RESTORED = "RESTORED"
EVENT_LINE_VOIDED = "LINE_VOIDED"


def append_audit_event(
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    order_id: int | None = None,
    actor_user_id: int | None = None,
    summary: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """Append one activity log row (flushes, does not commit)."""
    ev = AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        order_id=order_id,
        actor_user_id=actor_user_id,
        summary=summary,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def log_stock_item_event(
    *,
    stock_item_id: int,
    event_type: str,
    order_id: int | None = None,
    return_id: int | None = None,
    actor_user_id: int | None = None,
    details: Optional[dict] = None,
) -> StockItemEvent:
    ev = StockItemEvent(
        stock_item_id=stock_item_id,
        event_type=event_type,
        order_id=order_id,
        return_id=return_id,
        actor_user_id=actor_user_id,
        details=details,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def get_stock_item_history(stock_item_id: int, limit: int = 50) -> list[StockItemEvent]:
    """Most recent events for a stock item, newest first."""
    return db.session.query(StockItemEvent).filter_by(
        stock_item_id=stock_item_id
    ).order_by(StockItemEvent.occurred_at.desc(), StockItemEvent.id.desc()).limit(limit).all()


def get_order_audit_trail(order_id: int) -> list[AuditEvent]:
    """All activity log rows touching an order, oldest first."""
    return db.session.query(AuditEvent).filter_by(
        order_id=order_id
    ).order_by(AuditEvent.occurred_at, AuditEvent.id).all()
