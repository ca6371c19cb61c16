# Overview: Service-layer operations for returns; drives stock release, refunds and exchange credit.

"""
Return Processing Service

WHY: A return touches every ledger in the back office at once: the order
lines it reverses, the stock it puts back on the shelf, the money or store
credit it pays out, and the invoice whose totals must reflect all of that.
Finalizing is therefore one unit of work; a return is never half-finalized.

DESIGN PRINCIPLES:
- Returns reference order lines for traceability
- Refund amounts use the unit price at sale, never the item's current price
- A refund can never exceed what was actually collected on the order
- DRAFT commits nothing against stock or money, so cancelling it has no side effects
- Every check runs before the first write

LIFECYCLE:
1. create_return_draft (DRAFT)
2. finalize_return (DRAFT -> FINALIZED): release stock, refund or credit, recompute
3. cancel_return (DRAFT -> CANCELLED)
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderStatus, Return, ReturnLine
from backoffice.time_utils import utcnow, normalize_datetime
from .audit_service import (
    append_audit_event,
    log_stock_item_event,
    ACTION_RETURN_CREATED,
    ACTION_RETURN_FINALIZED,
    ACTION_RETURN_CANCELLED,
    EVENT_RETURN_INITIATED,
    EVENT_RETURN_FINALIZED,
    EVENT_INVENTORY_RELEASED,
    EVENT_REFUND_ISSUED,
    EVENT_EXCHANGE_CREDIT_CREATED,
)
from .availability_service import refresh_display_status
from .concurrency import unit_of_work
from .credit_service import issue_store_credit, restore_credit_applications
from .errors import ValidationError, NotFoundError, StateError, ConsistencyError
from .invoice_ledger_service import (
    KIND_REFUND,
    apply_settlement_transition,
    cancel_order,
    create_ledger_transaction,
    recompute_invoice_totals,
    validate_payment_details,
)


# =============================================================================
# RETURN CONSTANTS
# =============================================================================

RETURN_TYPE_REFUND = "REFUND"
RETURN_TYPE_EXCHANGE = "EXCHANGE"
VALID_RETURN_TYPES = [RETURN_TYPE_REFUND, RETURN_TYPE_EXCHANGE]

RETURN_STATUS_DRAFT = "DRAFT"
RETURN_STATUS_FINALIZED = "FINALIZED"
RETURN_STATUS_CANCELLED = "CANCELLED"

VALID_REASON_CODES = ["BUYER_REMORSE", "DEFECT", "EXCHANGE", "OTHER"]

AUTO_CANCEL_REASON = "All items returned and fully refunded"
CREDIT_RESTORE_REASON = "All items returned, credit restored"


# =============================================================================
# DRAFT
# =============================================================================

def create_return_draft(
    order_id: int,
    return_type: str,
    reason_code: str,
    lines: list[dict],
    reason: str | None = None,
    reason_details: str | None = None,
    actor_user_id: int | None = None,
) -> Return:
    """
    Create a DRAFT return for selected order lines.

    Each entry in `lines` is {"order_line_id", "quantity" (default 1),
    "restock_condition" (default "AS_IS")}.

    Raises:
        ValidationError: bad type/reason code, no lines, unknown or duplicate
            line, quantity < 1 or above the returnable quantity, order missing
            or without a customer
        StateError: order is cancelled
        ConsistencyError: refund total exceeds the order's net paid
    """
    if return_type not in VALID_RETURN_TYPES:
        raise ValidationError(
            f"Return type must be one of {VALID_RETURN_TYPES}",
            code="INVALID_RETURN_TYPE",
        )
    if not reason_code or reason_code not in VALID_REASON_CODES:
        raise ValidationError(
            f"Return reason is required. Must be one of: {', '.join(VALID_REASON_CODES)}",
            code="INVALID_REASON_CODE",
        )
    if not lines:
        raise ValidationError("At least one line must be selected for return", code="NO_ITEMS")

    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.status == OrderStatus.CANCELLED.value:
            raise StateError(
                "Cannot create a return for a cancelled order",
                current_status=order.status,
                code="INVOICE_CANCELLED",
            )
        if order.customer_id is None:
            raise ValidationError("Cannot create a return for an order without a customer", code="NO_CUSTOMER")

        order_lines = {line.id: line for line in order.lines}
        seen: set[int] = set()
        prepared = []
        total_cents = 0

        for entry in lines:
            order_line_id = entry.get("order_line_id")
            quantity = entry.get("quantity", 1)
            restock_condition = entry.get("restock_condition") or "AS_IS"

            order_line = order_lines.get(order_line_id)
            if order_line is None:
                raise ValidationError(
                    f"Order line {order_line_id} not found on this order",
                    code="INVALID_ITEM",
                )
            if order_line_id in seen:
                raise ValidationError(
                    f"Order line {order_line_id} listed more than once",
                    code="DUPLICATE_ITEM",
                )
            seen.add(order_line_id)

            if order_line.voided_at is not None:
                raise ValidationError(
                    f"Order line {order_line_id} is voided and cannot be returned",
                    code="LINE_VOIDED",
                )
            if not isinstance(quantity, int) or quantity < 1:
                raise ValidationError("Quantity must be at least 1", code="INVALID_QUANTITY")

            returnable = order_line.returnable_quantity
            if quantity > returnable:
                raise ValidationError(
                    f'Cannot return {quantity} of "{order_line.description}". Maximum returnable: {returnable}',
                    code="EXCEEDS_RETURNABLE",
                    details={"order_line_id": order_line_id, "returnable": returnable},
                )

            line_total = order_line.unit_price_cents * quantity
            total_cents += line_total
            prepared.append((order_line, quantity, line_total, restock_condition))

        if return_type == RETURN_TYPE_REFUND and total_cents > order.net_paid_cents:
            raise ConsistencyError(
                f"Return amount ({order.currency} {total_cents}) exceeds amount paid ({order.currency} {order.net_paid_cents})",
                code="EXCEEDS_PAID",
                details={"total_cents": total_cents, "net_paid_cents": order.net_paid_cents},
            )

        return_doc = Return(
            order_id=order.id,
            customer_id=order.customer_id,
            return_type=return_type,
            status=RETURN_STATUS_DRAFT,
            currency=order.currency,
            total_cents=total_cents,
            reason_code=reason_code,
            reason=(reason or "").strip() or None,
            reason_details=(reason_details or "").strip() or None,
            created_by_user_id=actor_user_id,
        )
        db.session.add(return_doc)
        db.session.flush()
        return_doc.document_number = f"R-{return_doc.id:06d}"

        for order_line, quantity, line_total, restock_condition in prepared:
            db.session.add(ReturnLine(
                return_id=return_doc.id,
                order_line_id=order_line.id,
                stock_item_id=order_line.stock_item_id,
                quantity=quantity,
                unit_price_cents=order_line.unit_price_cents,
                line_total_cents=line_total,
                restock_condition=restock_condition,
            ))
        db.session.flush()

        append_audit_event(
            action=ACTION_RETURN_CREATED,
            entity_type="return",
            entity_id=return_doc.id,
            order_id=order.id,
            actor_user_id=actor_user_id,
            summary=f"Return {return_doc.document_number} drafted for order {order.order_number or order.id}",
            payload={"return_type": return_type, "total_cents": total_cents, "reason_code": reason_code},
        )

        for item_id in sorted({ol.stock_item_id for ol, *_ in prepared if ol.stock_item_id is not None}):
            log_stock_item_event(
                stock_item_id=item_id,
                event_type=EVENT_RETURN_INITIATED,
                order_id=order.id,
                return_id=return_doc.id,
                actor_user_id=actor_user_id,
                details={"document_number": return_doc.document_number},
            )

    current_app.logger.info(
        "Drafted return %s (%s, %s cents) for order %s",
        return_doc.document_number, return_type, total_cents, order.id,
    )
    return return_doc


# =============================================================================
# FINALIZE
# =============================================================================

def _validate_refund_details(refund: dict | None) -> dict:
    if not refund:
        raise ValidationError("Payment method and comment are required for refund", code="REFUND_REQUIRED")

    method, comment, other_text = validate_payment_details(
        refund.get("payment_method"),
        refund.get("comment"),
        refund.get("payment_method_other_text"),
    )
    try:
        occurred_at = normalize_datetime(refund.get("transaction_date"))
    except ValueError:
        raise ValidationError("Invalid transaction date", code="INVALID_DATE")

    return {
        "payment_method": method,
        "comment": comment,
        "payment_method_other_text": other_text,
        "occurred_at": occurred_at,
    }


def finalize_return(
    return_id: int,
    refund: dict | None = None,
    actor_user_id: int | None = None,
) -> tuple[Return, Order]:
    """
    Finalize a DRAFT return in one unit of work.

    1. Add each line's quantity to its order line's returned total
    2. Put the stock back on hand and refresh its display status
    3. REFUND: record a refund transaction for the return total
       EXCHANGE: issue store credit for the return total
    4. Mark the return FINALIZED
    5. If every live line is now fully returned, void the order's credit
       applications and restore their credits
    6. Recompute the order from its ledger
    7. If fully returned and net paid <= 0, cancel the order

    `refund` is required for REFUND returns:
    {"payment_method", "comment", "payment_method_other_text"?, "transaction_date"?}

    Raises:
        NotFoundError: return missing
        StateError: return not DRAFT, or its order is cancelled
        ValidationError: refund details missing or invalid
        ConsistencyError: refund exceeds current net paid, or a line no longer
            has enough returnable quantity
    """
    with unit_of_work():
        return_doc = db.session.query(Return).filter_by(id=return_id).first()
        if not return_doc:
            raise NotFoundError(f"Return {return_id} not found")

        if return_doc.status != RETURN_STATUS_DRAFT:
            raise StateError(
                f"Cannot finalize return with status {return_doc.status}",
                current_status=return_doc.status,
            )

        order = return_doc.order
        if order.status == OrderStatus.CANCELLED.value:
            raise StateError(
                "Cannot finalize a return against a cancelled order",
                current_status=order.status,
                code="INVOICE_CANCELLED",
            )

        # Pre-pass: nothing below this block may fail on input.
        refund_details = None
        if return_doc.return_type == RETURN_TYPE_REFUND:
            refund_details = _validate_refund_details(refund)
            if return_doc.total_cents > order.net_paid_cents:
                raise ConsistencyError(
                    f"Return amount ({order.currency} {return_doc.total_cents}) exceeds amount paid ({order.currency} {order.net_paid_cents})",
                    code="EXCEEDS_PAID",
                    details={"total_cents": return_doc.total_cents, "net_paid_cents": order.net_paid_cents},
                )

        for line in return_doc.lines:
            order_line = line.order_line
            if order_line.voided_at is not None or line.quantity > order_line.returnable_quantity:
                raise ConsistencyError(
                    f"Order line {order_line.id} no longer has {line.quantity} returnable",
                    code="EXCEEDS_RETURNABLE",
                    details={"order_line_id": order_line.id, "returnable": order_line.returnable_quantity},
                )

        previous_status = order.status

        # 1. Returned totals
        for line in return_doc.lines:
            line.order_line.quantity_returned_total = (line.order_line.quantity_returned_total or 0) + line.quantity
        db.session.flush()

        # 2. Stock back on hand
        for line in return_doc.lines:
            item = line.stock_item
            if item is None:
                continue
            item.on_hand = (item.on_hand or 0) + line.quantity
            db.session.flush()
            refresh_display_status(item)

            log_stock_item_event(
                stock_item_id=item.id,
                event_type=EVENT_RETURN_FINALIZED,
                order_id=order.id,
                return_id=return_doc.id,
                actor_user_id=actor_user_id,
                details={"quantity": line.quantity, "restock_condition": line.restock_condition},
            )
            log_stock_item_event(
                stock_item_id=item.id,
                event_type=EVENT_INVENTORY_RELEASED,
                order_id=order.id,
                return_id=return_doc.id,
                actor_user_id=actor_user_id,
                details={"on_hand": item.on_hand, "status": item.status},
            )

        # 3. Money back
        if refund_details is not None:
            txn = create_ledger_transaction(
                order,
                kind=KIND_REFUND,
                amount_cents=return_doc.total_cents,
                actor_user_id=actor_user_id,
                linked_return_id=return_doc.id,
                **refund_details,
            )
            event_type, event_details = EVENT_REFUND_ISSUED, {"transaction_id": txn.id, "amount_cents": txn.amount_cents}
        else:
            credit = issue_store_credit(return_doc, actor_user_id=actor_user_id)
            event_type, event_details = EVENT_EXCHANGE_CREDIT_CREATED, {"credit_id": credit.id, "amount_cents": credit.original_cents}

        for item_id in sorted({line.stock_item_id for line in return_doc.lines if line.stock_item_id is not None}):
            log_stock_item_event(
                stock_item_id=item_id,
                event_type=event_type,
                order_id=order.id,
                return_id=return_doc.id,
                actor_user_id=actor_user_id,
                details=event_details,
            )

        # 4. Return header
        return_doc.status = RETURN_STATUS_FINALIZED
        return_doc.finalized_at = utcnow()
        return_doc.finalized_by_user_id = actor_user_id

        # 5. Fully returned orders give their applied credit back
        fully_returned = order.is_fully_returned()
        if fully_returned:
            restore_credit_applications(order, reason=CREDIT_RESTORE_REASON, actor_user_id=actor_user_id)

        # 6. Recompute
        recompute_invoice_totals(order)

        # 7. Auto-cancel
        if fully_returned and order.net_paid_cents <= 0 and order.status != OrderStatus.CANCELLED.value:
            cancel_order(order, reason=AUTO_CANCEL_REASON, actor_user_id=actor_user_id)

        apply_settlement_transition(order, previous_status, actor_user_id=actor_user_id)

        # Order status may have changed what the returned items' lines reserve.
        for line in return_doc.lines:
            if line.stock_item is not None:
                refresh_display_status(line.stock_item)

        append_audit_event(
            action=ACTION_RETURN_FINALIZED,
            entity_type="return",
            entity_id=return_doc.id,
            order_id=order.id,
            actor_user_id=actor_user_id,
            summary=f"Return {return_doc.document_number} finalized",
            payload={
                "return_type": return_doc.return_type,
                "total_cents": return_doc.total_cents,
                "order_status": order.status,
                "fully_returned": fully_returned,
            },
        )

    current_app.logger.info(
        "Finalized return %s (%s) on order %s; order status %s -> %s",
        return_doc.document_number, return_doc.return_type, order.id, previous_status, order.status,
    )
    return return_doc, order


# =============================================================================
# CANCEL
# =============================================================================

def cancel_return(return_id: int, actor_user_id: int | None = None) -> Return:
    """Abandon a DRAFT return. Nothing was committed against stock or money."""
    with unit_of_work():
        return_doc = db.session.query(Return).filter_by(id=return_id).first()
        if not return_doc:
            raise NotFoundError(f"Return {return_id} not found")

        if return_doc.status != RETURN_STATUS_DRAFT:
            raise StateError(
                "Only draft returns can be cancelled",
                current_status=return_doc.status,
            )

        return_doc.status = RETURN_STATUS_CANCELLED
        return_doc.cancelled_at = utcnow()
        return_doc.cancelled_by_user_id = actor_user_id

        append_audit_event(
            action=ACTION_RETURN_CANCELLED,
            entity_type="return",
            entity_id=return_doc.id,
            order_id=return_doc.order_id,
            actor_user_id=actor_user_id,
            summary=f"Return {return_doc.document_number} cancelled",
        )

    current_app.logger.info("Cancelled return %s", return_doc.document_number)
    return return_doc


# =============================================================================
# QUERIES
# =============================================================================

def get_returnable_lines(order_id: int) -> dict:
    """Live order lines that still have something left to return."""
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")

    returnable = [
        {
            "order_line_id": line.id,
            "description": line.description,
            "stock_item_id": line.stock_item_id,
            "quantity": line.quantity,
            "quantity_returned_total": line.quantity_returned_total,
            "returnable_quantity": line.returnable_quantity,
            "unit_price_cents": line.unit_price_cents,
        }
        for line in order.live_lines
        if line.returnable_quantity > 0
    ]
    return {
        "order": order.to_dict(),
        "returnable_lines": returnable,
        "has_returnable_lines": bool(returnable),
    }


def list_order_returns(order_id: int) -> list[Return]:
    """Returns for an order, newest first."""
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")

    return db.session.query(Return).filter_by(
        order_id=order_id
    ).order_by(Return.created_at.desc(), Return.id.desc()).all()


def get_return_summary(return_id: int) -> dict:
    """Return header with its lines and whatever it paid out."""
    return_doc = db.session.query(Return).filter_by(id=return_id).first()
    if not return_doc:
        raise NotFoundError(f"Return {return_id} not found")

    return {
        "return": return_doc.to_dict(),
        "lines": [line.to_dict() for line in return_doc.lines],
        "credit": return_doc.credit.to_dict() if return_doc.credit is not None else None,
        "transactions": [t.to_dict() for t in return_doc.transactions],
    }
