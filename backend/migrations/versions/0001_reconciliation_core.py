"""Reconciliation core: stock, orders, ledger, returns, store credit, audit

Revision ID: 0001_reconciliation_core
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_reconciliation_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "stock_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("sub_type", sa.String(64), nullable=True),
        sa.Column("on_hand", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_cents", sa.Integer(), nullable=True),
        sa.Column("cost_currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.Column("price_currency", sa.String(3), nullable=False, server_default="GHS"),
        sa.Column("status", sa.String(16), nullable=False, server_default="IN_STOCK"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("on_hand >= 0", name="ck_stock_items_on_hand_nonneg"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("stock_items", schema=None) as batch_op:
        batch_op.create_index("ix_stock_items_category", ["category"], unique=False)
        batch_op.create_index("ix_stock_items_category_sub_type", ["category", "sub_type"], unique=False)
        batch_op.create_index("ix_stock_items_status", ["status"], unique=False)
        batch_op.create_index("ix_stock_items_deleted_at", ["deleted_at"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("net_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("balance_due_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(24), nullable=False, server_default="UNPAID"),
        _timestamp("created_at"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_customer_status", ["customer_id", "status"], unique=False)

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("stock_item_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("quantity_returned_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_pos"),
        sa.CheckConstraint(
            "quantity_returned_total >= 0 AND quantity_returned_total <= quantity",
            name="ck_order_lines_returned_le_quantity",
        ),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["stock_item_id"], ["stock_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("order_lines", schema=None) as batch_op:
        batch_op.create_index("ix_order_lines_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_lines_item_voided", ["stock_item_id", "voided_at"], unique=False)

    op.create_table(
        "returns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(64), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("return_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reason_code", sa.String(32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("reason_details", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("returns", schema=None) as batch_op:
        batch_op.create_index("ix_returns_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_returns_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_returns_status", ["status"], unique=False)
        batch_op.create_index("ix_returns_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_returns_order_status", ["order_id", "status"], unique=False)

    op.create_table(
        "return_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("order_line_id", sa.Integer(), nullable=False),
        sa.Column("stock_item_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("restock_condition", sa.String(32), nullable=False, server_default="AS_IS"),
        _timestamp("created_at"),
        sa.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_pos"),
        sa.ForeignKeyConstraint(["return_id"], ["returns.id"]),
        sa.ForeignKeyConstraint(["order_line_id"], ["order_lines.id"]),
        sa.ForeignKeyConstraint(["stock_item_id"], ["stock_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("return_id", "order_line_id", name="uq_return_lines_return_order_line"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("return_lines", schema=None) as batch_op:
        batch_op.create_index("ix_return_lines_return_id", ["return_id"], unique=False)
        batch_op.create_index("ix_return_lines_order_line_id", ["order_line_id"], unique=False)
        batch_op.create_index("ix_return_lines_stock_item_id", ["stock_item_id"], unique=False)

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("payment_method_other_text", sa.String(255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=False),
        _timestamp("occurred_at"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("linked_return_id", sa.Integer(), nullable=True),
        sa.CheckConstraint("amount_cents >= 0", name="ck_ledger_transactions_amount_nonneg"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["linked_return_id"], ["returns.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("ledger_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_transactions_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_ledger_transactions_kind", ["kind"], unique=False)
        batch_op.create_index("ix_ledger_transactions_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_ledger_transactions_linked_return_id", ["linked_return_id"], unique=False)
        batch_op.create_index("ix_ledger_transactions_order_voided", ["order_id", "voided_at"], unique=False)

    op.create_table(
        "customer_credits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("original_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("source_return_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("remaining_cents >= 0", name="ck_customer_credits_remaining_nonneg"),
        sa.CheckConstraint("remaining_cents <= original_cents", name="ck_customer_credits_remaining_le_original"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["source_return_id"], ["returns.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("customer_credits", schema=None) as batch_op:
        batch_op.create_index("ix_customer_credits_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_customer_credits_status", ["status"], unique=False)
        batch_op.create_index("ix_customer_credits_source_return_id", ["source_return_id"], unique=False)
        batch_op.create_index("ix_customer_credits_customer_status", ["customer_id", "status"], unique=False)

    op.create_table(
        "credit_applications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("credit_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        _timestamp("applied_at"),
        sa.Column("applied_by_user_id", sa.Integer(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.CheckConstraint("amount_cents > 0", name="ck_credit_applications_amount_pos"),
        sa.ForeignKeyConstraint(["credit_id"], ["customer_credits.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("credit_applications", schema=None) as batch_op:
        batch_op.create_index("ix_credit_applications_credit_id", ["credit_id"], unique=False)
        batch_op.create_index("ix_credit_applications_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_credit_applications_order_voided", ["order_id", "voided_at"], unique=False)

    op.create_table(
        "stock_item_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stock_item_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(48), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("return_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        _timestamp("occurred_at"),
        sa.ForeignKeyConstraint(["stock_item_id"], ["stock_items.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["return_id"], ["returns.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("stock_item_events", schema=None) as batch_op:
        batch_op.create_index("ix_stock_item_events_stock_item_id", ["stock_item_id"], unique=False)
        batch_op.create_index("ix_stock_item_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_stock_item_events_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_stock_item_events_return_id", ["return_id"], unique=False)
        batch_op.create_index("ix_stock_item_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_stock_item_events_item_occurred", ["stock_item_id", "occurred_at"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("summary", sa.String(255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        _timestamp("occurred_at"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("audit_events", schema=None) as batch_op:
        batch_op.create_index("ix_audit_events_action", ["action"], unique=False)
        batch_op.create_index("ix_audit_events_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_audit_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_audit_events_entity", ["entity_type", "entity_id"], unique=False)


def downgrade():
    op.drop_table("audit_events")
    op.drop_table("stock_item_events")
    op.drop_table("credit_applications")
    op.drop_table("customer_credits")
    op.drop_table("ledger_transactions")
    op.drop_table("return_lines")
    op.drop_table("returns")
    op.drop_table("order_lines")
    op.drop_table("orders")
    op.drop_table("stock_items")
    op.drop_table("customers")
