from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class StockItem(db.Model):
    """
    Sellable stock item.

    WHY: on_hand is the physical count owned by warehouse operations.
    There is deliberately no reserved column: reservation is derived from
    live order lines (see availability_service), so it cannot drift.

    on_hand changes only when an order settles (decrement), when a settled
    order is unsettled (restore), and when a return is finalized (restore).
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.CheckConstraint("on_hand >= 0", name="ck_stock_items_on_hand_nonneg"),
        db.Index("ix_stock_items_category_sub_type", "category", "sub_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Taxonomy used by the valuation drill-down
    category = db.Column(db.String(64), nullable=True, index=True)
    sub_type = db.Column(db.String(64), nullable=True)

    on_hand = db.Column(db.Integer, nullable=False, default=0)

    # Unit amounts in minor units, each in its own currency
    cost_cents = db.Column(db.Integer, nullable=True)
    cost_currency = db.Column(db.String(3), nullable=False, default="USD")
    price_cents = db.Column(db.Integer, nullable=True)
    price_currency = db.Column(db.String(3), nullable=False, default="GHS")

    # Display status derived from on_hand and reservations: IN_STOCK, PROCESSING, SOLD
    status = db.Column(db.String(16), nullable=False, default="IN_STOCK", index=True)

    # Soft delete (recycle bin)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deleted_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "sub_type": self.sub_type,
            "on_hand": self.on_hand,
            "cost_cents": self.cost_cents,
            "cost_currency": self.cost_currency,
            "price_cents": self.price_cents,
            "price_currency": self.price_currency,
            "status": self.status,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class StockItemEvent(db.Model):
    """
    Append-only history of what happened to a stock item.

    Informational only: no quantity or status is ever derived from these rows.
    """
    __tablename__ = "stock_item_events"
    __table_args__ = (
        db.Index("ix_stock_item_events_item_occurred", "stock_item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    event_type = db.Column(db.String(48), nullable=False, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    stock_item = db.relationship("StockItem", backref=db.backref("events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "event_type": self.event_type,
            "order_id": self.order_id,
            "return_id": self.return_id,
            "actor_user_id": self.actor_user_id,
            "details": self.details,
            "occurred_at": to_utc_z(self.occurred_at),
        }
