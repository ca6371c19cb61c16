# Overview: Service-layer operations for the invoice ledger; sole writer of order totals and status.

"""
Invoice Ledger Service

WHY: An order's net paid, balance due and status are a cache of its ledger
(payments, refunds, applied store credit). Keeping one recomputation
procedure as the only writer of those fields means they can always be
re-derived and can never disagree with the transactions underneath.

DESIGN PRINCIPLES:
- Ledger transactions are append-only; voiding sets a marker
- recompute_invoice_totals is idempotent and never commits by itself
- Order.status is written only through transition_order_status
- CANCELLED is terminal: no transition out of it exists
- Stock leaves on_hand when an order settles and comes back if it unsettles
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Order,
    OrderStatus,
    LedgerTransaction,
    CreditApplication,
    StockItem,
)
from backoffice.time_utils import utcnow, normalize_datetime
from .audit_service import (
    append_audit_event,
    log_stock_item_event,
    ACTION_PAYMENT_RECEIVED,
    ACTION_REFUND_RECORDED,
    ACTION_TRANSACTION_VOIDED,
    ACTION_ORDER_CANCELLED,
    EVENT_SOLD,
    EVENT_SALE_REVERSED,
    EVENT_ORDER_CANCELLED,
)
from .availability_service import refresh_display_status
from .concurrency import unit_of_work
from .errors import ValidationError, NotFoundError, StateError, ConsistencyError


# =============================================================================
# TRANSACTION KINDS & PAYMENT METHODS (CONSTANTS)
# =============================================================================

KIND_PAYMENT = "PAYMENT"
KIND_REFUND = "REFUND"

VALID_TRANSACTION_KINDS = [KIND_PAYMENT, KIND_REFUND]

METHOD_CASH = "CASH"
METHOD_MOMO = "MOMO"
METHOD_CARD = "CARD"
METHOD_ACH = "ACH"
METHOD_OTHER = "OTHER"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_MOMO,
    METHOD_CARD,
    METHOD_ACH,
    METHOD_OTHER,
]


# =============================================================================
# RECOMPUTATION
# =============================================================================

def derive_settlement_status(net_paid_cents: int, total_cents: int) -> OrderStatus:
    if net_paid_cents <= 0:
        return OrderStatus.UNPAID
    if net_paid_cents >= total_cents:
        return OrderStatus.SETTLED
    return OrderStatus.PARTIALLY_SETTLED


def transition_order_status(order: Order, new_status) -> Order:
    """
    The only assignment to Order.status in the codebase.

    Raises:
        ValidationError: unknown status
        StateError: order is CANCELLED and new_status is something else
    """
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {new_status}", code="INVALID_ORDER_STATUS")

    if order.status == OrderStatus.CANCELLED.value and target is not OrderStatus.CANCELLED:
        raise StateError(
            f"Order {order.id} is cancelled and cannot move to {target.value}",
            current_status=order.status,
            code="ORDER_CANCELLED",
        )

    order.status = target.value
    return order


def recompute_invoice_totals(order: Order) -> Order:
    """
    Recompute net paid, balance due and status from the order's ledger.

    net_paid    = max(0, payments - refunds + applied credit)   (non-voided rows only)
    balance_due = max(0, total - net_paid), or 0 once CANCELLED
    status      = UNPAID | PARTIALLY_SETTLED | SETTLED, CANCELLED is left alone

    Idempotent. Flushes the order row; the caller's unit of work commits.
    """
    rows = db.session.query(
        LedgerTransaction.kind,
        func.coalesce(func.sum(LedgerTransaction.amount_cents), 0).label("amount"),
    ).filter(
        LedgerTransaction.order_id == order.id,
        LedgerTransaction.voided_at.is_(None),
    ).group_by(LedgerTransaction.kind).all()

    sums = {row.kind: int(row.amount or 0) for row in rows}
    payments = sums.get(KIND_PAYMENT, 0)
    refunds = sums.get(KIND_REFUND, 0)

    credits = db.session.query(
        func.coalesce(func.sum(CreditApplication.amount_cents), 0)
    ).filter(
        CreditApplication.order_id == order.id,
        CreditApplication.voided_at.is_(None),
    ).scalar() or 0

    total = int(order.total_cents or 0)
    net_paid = max(0, payments - refunds + int(credits))

    order.net_paid_cents = net_paid
    if order.status == OrderStatus.CANCELLED.value:
        order.balance_due_cents = 0
    else:
        order.balance_due_cents = max(0, total - net_paid)
        transition_order_status(order, derive_settlement_status(net_paid, total))

    db.session.flush()
    return order


def recompute_order(order_id: int) -> tuple[Order, bool]:
    """
    Recompute and commit one order. Returns (order, changed).

    Used by maintenance tooling; `changed` is False on a consistent order.
    """
    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        before = (order.net_paid_cents, order.balance_due_cents, order.status)
        recompute_invoice_totals(order)
        after = (order.net_paid_cents, order.balance_due_cents, order.status)
    return order, before != after


def cancel_order(order: Order, *, reason: str | None, actor_user_id: int | None = None) -> Order:
    """Move an order into the terminal CANCELLED status and zero its balance."""
    transition_order_status(order, OrderStatus.CANCELLED)
    order.balance_due_cents = 0
    order.cancelled_at = utcnow()
    order.cancelled_by_user_id = actor_user_id
    order.cancellation_reason = reason

    append_audit_event(
        action=ACTION_ORDER_CANCELLED,
        entity_type="order",
        entity_id=order.id,
        order_id=order.id,
        actor_user_id=actor_user_id,
        summary=f"Order {order.order_number or order.id} cancelled",
        payload={"reason": reason},
    )
    db.session.flush()
    return order


# =============================================================================
# SETTLEMENT TRANSITIONS (STOCK)
# =============================================================================

def apply_settlement_transition(order: Order, previous_status: str, actor_user_id: int | None = None) -> None:
    """
    Move stock in or out of on_hand when an order crosses the SETTLED line.

    Entering SETTLED decrements each live line's outstanding (not yet
    returned) quantity; leaving SETTLED restores it. Call after
    recompute_invoice_totals, inside the same unit of work.
    """
    was_settled = previous_status == OrderStatus.SETTLED.value
    is_settled = order.status == OrderStatus.SETTLED.value
    if was_settled == is_settled:
        return

    for line in order.live_lines:
        if line.stock_item_id is None:
            continue
        outstanding = line.quantity - (line.quantity_returned_total or 0)
        if outstanding <= 0:
            continue

        item = db.session.query(StockItem).filter_by(id=line.stock_item_id).first()
        if item is None:
            continue

        if is_settled:
            if item.on_hand < outstanding:
                current_app.logger.warning(
                    "Stock item %s on_hand %s below settled quantity %s on order %s",
                    item.id, item.on_hand, outstanding, order.id,
                )
            item.on_hand = max(0, item.on_hand - outstanding)
            event_type = EVENT_SOLD
        else:
            item.on_hand = item.on_hand + outstanding
            event_type = EVENT_SALE_REVERSED

        refresh_display_status(item)
        log_stock_item_event(
            stock_item_id=item.id,
            event_type=event_type,
            order_id=order.id,
            actor_user_id=actor_user_id,
            details={"quantity": outstanding, "on_hand": item.on_hand, "status": item.status},
        )


# =============================================================================
# LEDGER TRANSACTIONS
# =============================================================================

def validate_payment_details(
    payment_method: str | None,
    comment: str | None,
    payment_method_other_text: str | None = None,
) -> tuple[str, str, str | None]:
    """
    Check method/comment for a payment or refund and return them normalized.

    Returns (method, comment, other_text).
    """
    method = (payment_method or "").strip().upper()
    if not method:
        raise ValidationError("Payment method is required", code="METHOD_REQUIRED")
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}",
            code="INVALID_METHOD",
        )

    other_text = None
    if method == METHOD_OTHER:
        other_text = (payment_method_other_text or "").strip()
        if not other_text:
            raise ValidationError(
                'Specify the payment method when selecting "OTHER"',
                code="OTHER_TEXT_REQUIRED",
            )

    comment = (comment or "").strip()
    if not comment:
        raise ValidationError("Comment is required describing the transaction", code="COMMENT_REQUIRED")

    return method, comment, other_text


def create_ledger_transaction(
    order: Order,
    *,
    kind: str,
    amount_cents: int,
    payment_method: str,
    comment: str,
    payment_method_other_text: str | None = None,
    occurred_at=None,
    actor_user_id: int | None = None,
    linked_return_id: int | None = None,
) -> LedgerTransaction:
    """Append a ledger row for already-validated details (flushes, does not recompute)."""
    txn = LedgerTransaction(
        order_id=order.id,
        kind=kind,
        amount_cents=amount_cents,
        currency=order.currency,
        payment_method=payment_method,
        payment_method_other_text=payment_method_other_text,
        comment=comment,
        occurred_at=normalize_datetime(occurred_at),
        created_by_user_id=actor_user_id,
        linked_return_id=linked_return_id,
    )
    db.session.add(txn)
    db.session.flush()

    append_audit_event(
        action=ACTION_PAYMENT_RECEIVED if kind == KIND_PAYMENT else ACTION_REFUND_RECORDED,
        entity_type="ledger_transaction",
        entity_id=txn.id,
        order_id=order.id,
        actor_user_id=actor_user_id,
        summary=f"{kind.title()} of {order.currency} {amount_cents} recorded for order {order.order_number or order.id}",
        payload={
            "kind": kind,
            "amount_cents": amount_cents,
            "payment_method": payment_method,
            "linked_return_id": linked_return_id,
        },
    )
    return txn


def record_transaction(
    order_id: int,
    *,
    kind: str,
    amount_cents: int,
    payment_method: str,
    comment: str,
    payment_method_other_text: str | None = None,
    occurred_at=None,
    actor_user_id: int | None = None,
) -> tuple[LedgerTransaction, Order]:
    """
    Record a payment or a manual refund against an order.

    Raises:
        ValidationError: bad kind, amount, method or comment
        NotFoundError: order missing
        StateError: order cancelled, already settled, or fully returned
        ConsistencyError: overpayment, or refund beyond net paid
    """
    if kind not in VALID_TRANSACTION_KINDS:
        raise ValidationError(
            f"Transaction kind must be one of {VALID_TRANSACTION_KINDS}",
            code="INVALID_TYPE",
        )
    if not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Amount must be a positive number of cents", code="INVALID_AMOUNT")
    method, comment, other_text = validate_payment_details(payment_method, comment, payment_method_other_text)
    try:
        occurred_at = normalize_datetime(occurred_at)
    except ValueError:
        raise ValidationError("Invalid transaction date", code="INVALID_DATE")

    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.status == OrderStatus.CANCELLED.value:
            raise StateError(
                "Cannot add a transaction to a cancelled order",
                current_status=order.status,
                code="INVOICE_CANCELLED",
            )

        if kind == KIND_PAYMENT:
            if order.is_fully_returned():
                raise StateError(
                    "Cannot record payment: all items on this order have been returned",
                    current_status=order.status,
                    code="ALL_ITEMS_RETURNED",
                )
            if order.status == OrderStatus.SETTLED.value:
                raise StateError(
                    "Order is already fully settled",
                    current_status=order.status,
                    code="ALREADY_SETTLED",
                )
            if order.net_paid_cents + amount_cents > order.total_cents:
                raise ConsistencyError(
                    "Payment would exceed the order total",
                    code="OVERPAYMENT",
                    details={"max_allowed_cents": order.total_cents - order.net_paid_cents},
                )
        elif amount_cents > order.net_paid_cents:
            raise ConsistencyError(
                "Refund cannot exceed the amount paid",
                code="REFUND_EXCEEDS_PAID",
                details={"max_allowed_cents": order.net_paid_cents},
            )

        previous_status = order.status
        txn = create_ledger_transaction(
            order,
            kind=kind,
            amount_cents=amount_cents,
            payment_method=method,
            comment=comment,
            payment_method_other_text=other_text,
            occurred_at=occurred_at,
            actor_user_id=actor_user_id,
        )
        recompute_invoice_totals(order)
        apply_settlement_transition(order, previous_status, actor_user_id=actor_user_id)

    current_app.logger.info(
        "Recorded %s of %s on order %s (status %s -> %s)",
        kind, amount_cents, order.id, previous_status, order.status,
    )
    return txn, order


def void_transaction(
    order_id: int,
    transaction_id: int,
    *,
    reason: str,
    actor_user_id: int | None = None,
) -> tuple[LedgerTransaction, Order]:
    """
    Void a ledger transaction (mistake correction) and recompute the order.

    Raises:
        ValidationError: reason missing
        NotFoundError: order or transaction missing
        StateError: order cancelled or transaction already voided
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required when voiding a transaction", code="REASON_REQUIRED")

    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.status == OrderStatus.CANCELLED.value:
            raise StateError(
                "Cannot void transactions on a cancelled order",
                current_status=order.status,
                code="INVOICE_CANCELLED",
            )

        txn = db.session.query(LedgerTransaction).filter_by(
            id=transaction_id, order_id=order_id
        ).first()
        if not txn:
            raise NotFoundError(f"Transaction {transaction_id} not found", code="TRANSACTION_NOT_FOUND")

        if txn.voided_at is not None:
            raise StateError(
                f"Transaction {transaction_id} has already been voided",
                current_status="VOIDED",
                code="ALREADY_VOIDED",
            )

        previous_status = order.status
        txn.voided_at = utcnow()
        txn.voided_by_user_id = actor_user_id
        txn.void_reason = reason

        append_audit_event(
            action=ACTION_TRANSACTION_VOIDED,
            entity_type="ledger_transaction",
            entity_id=txn.id,
            order_id=order.id,
            actor_user_id=actor_user_id,
            summary=f"{txn.kind.title()} of {txn.currency} {txn.amount_cents} voided",
            payload={"reason": reason, "kind": txn.kind, "amount_cents": txn.amount_cents},
        )

        recompute_invoice_totals(order)
        apply_settlement_transition(order, previous_status, actor_user_id=actor_user_id)

    current_app.logger.info(
        "Voided transaction %s on order %s (status %s -> %s)",
        transaction_id, order.id, previous_status, order.status,
    )
    return txn, order


def cancel_invoice(order_id: int, *, reason: str | None = None, actor_user_id: int | None = None) -> Order:
    """
    User-initiated cancellation. Releases every reservation the order held.

    Raises:
        NotFoundError: order missing
        StateError: already cancelled
        ConsistencyError: order still has net paid > 0 (refund first)
    """
    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.status == OrderStatus.CANCELLED.value:
            raise StateError(
                "Order is already cancelled",
                current_status=order.status,
                code="ALREADY_CANCELLED",
            )

        recompute_invoice_totals(order)
        if order.net_paid_cents > 0:
            raise ConsistencyError(
                "Cannot cancel an order with outstanding payments; refund them first",
                code="HAS_NET_PAYMENTS",
                details={"net_paid_cents": order.net_paid_cents},
            )

        cancel_order(order, reason=reason, actor_user_id=actor_user_id)

        # The order no longer reserves its lines; refresh what the items display.
        for line in order.live_lines:
            if line.stock_item is None:
                continue
            refresh_display_status(line.stock_item)
            log_stock_item_event(
                stock_item_id=line.stock_item_id,
                event_type=EVENT_ORDER_CANCELLED,
                order_id=order.id,
                actor_user_id=actor_user_id,
                details={"reason": reason, "status": line.stock_item.status},
            )

    current_app.logger.info("Cancelled order %s", order.id)
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order_transactions(order_id: int, include_voided: bool = True) -> list[LedgerTransaction]:
    """Ledger rows for an order, oldest first."""
    query = db.session.query(LedgerTransaction).filter_by(order_id=order_id)
    if not include_voided:
        query = query.filter(LedgerTransaction.voided_at.is_(None))
    return query.order_by(LedgerTransaction.occurred_at, LedgerTransaction.id).all()


def get_ledger_summary(order_id: int) -> dict:
    """Order totals plus its transactions and credit applications."""
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")

    return {
        "order": order.to_dict(),
        "transactions": [t.to_dict() for t in get_order_transactions(order_id)],
        "credit_applications": [a.to_dict() for a in order.credit_applications],
    }
