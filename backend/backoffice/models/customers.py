from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Customer(db.Model):
    """Customer who owns orders and store credit."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerCredit(db.Model):
    """
    Redeemable store credit issued to a customer.

    WHY: Exchange-type returns pay the customer back in credit instead of cash.
    Created only as a side effect of finalizing such a return.

    STATUS:
    - ACTIVE: remaining_cents > 0
    - CONSUMED: remaining_cents == 0 (may become ACTIVE again if a credited
      invoice is later fully returned and its applications are voided)
    """
    __tablename__ = "customer_credits"
    __table_args__ = (
        db.CheckConstraint("remaining_cents >= 0", name="ck_customer_credits_remaining_nonneg"),
        db.CheckConstraint("remaining_cents <= original_cents", name="ck_customer_credits_remaining_le_original"),
        db.Index("ix_customer_credits_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    currency = db.Column(db.String(3), nullable=False)

    original_cents = db.Column(db.Integer, nullable=False)
    remaining_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    source_return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("credits", lazy=True))
    source_return = db.relationship("Return", backref=db.backref("credit", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def is_usable(self) -> bool:
        return self.status == "ACTIVE" and (self.remaining_cents or 0) > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "currency": self.currency,
            "original_cents": self.original_cents,
            "remaining_cents": self.remaining_cents,
            "status": self.status,
            "source_return_id": self.source_return_id,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
        }


class CreditApplication(db.Model):
    """
    A specific amount of a specific credit applied to a specific order.

    IMMUTABLE: only the void fields may change after creation.
    """
    __tablename__ = "credit_applications"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_applications_amount_pos"),
        db.Index("ix_credit_applications_order_voided", "order_id", "voided_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("customer_credits.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    applied_by_user_id = db.Column(db.Integer, nullable=True)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    credit = db.relationship("CustomerCredit", backref=db.backref("applications", lazy=True))
    order = db.relationship("Order", backref=db.backref("credit_applications", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_id": self.credit_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "applied_at": to_utc_z(self.applied_at),
            "applied_by_user_id": self.applied_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
        }
