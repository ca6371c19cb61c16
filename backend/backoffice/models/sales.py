from __future__ import annotations

from enum import Enum

from ..extensions import db
from backoffice.time_utils import to_utc_z


class OrderStatus(str, Enum):
    """
    Closed set of invoice statuses.

    UNPAID / PARTIALLY_SETTLED / SETTLED are derived by the invoice ledger.
    CANCELLED is terminal: nothing transitions out of it.
    Only invoice_ledger_service.transition_order_status writes Order.status.
    """
    UNPAID = "UNPAID"
    PARTIALLY_SETTLED = "PARTIALLY_SETTLED"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"


# Orders in these statuses no longer hold a reservation on their lines
NON_RESERVING_STATUSES = (OrderStatus.SETTLED.value, OrderStatus.CANCELLED.value)


class Order(db.Model):
    """
    Customer invoice.

    net_paid_cents, balance_due_cents and status are a cache of the ledger
    (payments, refunds, credit applications). They are recomputed, never
    edited in place.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=True, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    currency = db.Column(db.String(3), nullable=False)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    net_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(24), nullable=False, default=OrderStatus.UNPAID.value, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def live_lines(self) -> list["OrderLine"]:
        return [line for line in self.lines if line.voided_at is None]

    def is_fully_returned(self) -> bool:
        """True when every live line has been returned in full."""
        live = self.live_lines
        return bool(live) and all(
            (line.quantity_returned_total or 0) >= line.quantity for line in live
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "currency": self.currency,
            "total_cents": self.total_cents,
            "net_paid_cents": self.net_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }


class OrderLine(db.Model):
    """
    Line on an order. Reserves stock while its order is live.

    unit_price_cents is the price at the time of sale; returns refund this,
    never the item's current price.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_pos"),
        db.CheckConstraint(
            "quantity_returned_total >= 0 AND quantity_returned_total <= quantity",
            name="ck_order_lines_returned_le_quantity",
        ),
        db.Index("ix_order_lines_item_voided", "stock_item_id", "voided_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    quantity_returned_total = db.Column(db.Integer, nullable=False, default=0)

    # Set once; a voided line no longer reserves stock or counts toward the total
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("lines", lazy=True, order_by="OrderLine.id"))
    stock_item = db.relationship("StockItem")

    @property
    def returnable_quantity(self) -> int:
        return max(0, self.quantity - (self.quantity_returned_total or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "stock_item_id": self.stock_item_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "quantity_returned_total": self.quantity_returned_total,
            "returnable_quantity": self.returnable_quantity,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerTransaction(db.Model):
    """
    Append-only money movement against an order.

    KINDS:
    - PAYMENT: increases net paid
    - REFUND: decreases net paid (optionally produced by a return)

    amount_cents is always positive; the kind carries the sign.
    IMMUTABLE: only the void fields may change after creation.
    """
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_ledger_transactions_amount_nonneg"),
        db.Index("ix_ledger_transactions_order_voided", "order_id", "voided_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_method_other_text = db.Column(db.String(255), nullable=True)
    comment = db.Column(db.Text, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    linked_return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    order = db.relationship("Order", backref=db.backref("transactions", lazy=True))
    linked_return = db.relationship("Return", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_method_other_text": self.payment_method_other_text,
            "comment": self.comment,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_by_user_id": self.created_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
            "linked_return_id": self.linked_return_id,
        }
