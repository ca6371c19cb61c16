from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Return(db.Model):
    """
    Return document against an order.

    LIFECYCLE:
    - DRAFT: lines chosen, nothing committed against stock or money
    - FINALIZED: stock released, refund or store credit issued (terminal)
    - CANCELLED: abandoned draft (terminal)

    RETURN TYPES:
    - REFUND: money goes back through a REFUND ledger transaction
    - EXCHANGE: money goes back as a new CustomerCredit
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "R-000123")
    document_number = db.Column(db.String(64), nullable=True, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    return_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    currency = db.Column(db.String(3), nullable=False)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    reason_code = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    reason_details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    # Finalize and cancel both leave DRAFT; a stale write must not commit
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "return_type": self.return_type,
            "status": self.status,
            "currency": self.currency,
            "total_cents": self.total_cents,
            "reason_code": self.reason_code,
            "reason": self.reason,
            "reason_details": self.reason_details,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "finalized_by_user_id": self.finalized_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }


class ReturnLine(db.Model):
    """
    One order line being returned.

    unit_price_cents is copied from the order line (price at sale).
    """
    __tablename__ = "return_lines"
    __table_args__ = (
        db.UniqueConstraint("return_id", "order_line_id", name="uq_return_lines_return_order_line"),
        db.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    restock_condition = db.Column(db.String(32), nullable=False, default="AS_IS")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_doc = db.relationship("Return", backref=db.backref("lines", lazy=True, order_by="ReturnLine.id"))
    order_line = db.relationship("OrderLine")
    stock_item = db.relationship("StockItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "order_line_id": self.order_line_id,
            "stock_item_id": self.stock_item_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "restock_condition": self.restock_condition,
            "created_at": to_utc_z(self.created_at),
        }


class AuditEvent(db.Model):
    """
    Append-only activity log for reconciliation events.

    Written in the same DB transaction as the change it records.
    No updates, no deletes.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    summary = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "order_id": self.order_id,
            "actor_user_id": self.actor_user_id,
            "summary": self.summary,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
