# Overview: Service-layer operations for order entry; writing a line is what reserves stock.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Customer, Order, OrderLine, OrderStatus, StockItem
from backoffice.time_utils import utcnow
from .audit_service import append_audit_event, log_stock_item_event, ACTION_ORDER_LINE_VOIDED, EVENT_LINE_VOIDED
from .availability_service import check_availability, refresh_display_status
from .concurrency import unit_of_work
from .errors import ValidationError, NotFoundError, StateError, ConsistencyError
from .invoice_ledger_service import recompute_invoice_totals, apply_settlement_transition


EDITABLE_STATUSES = (OrderStatus.UNPAID.value, OrderStatus.PARTIALLY_SETTLED.value)


def _recompute_order_total(order: Order) -> None:
    order.total_cents = sum(line.line_total_cents for line in order.live_lines)


def create_order(customer_id: int | None, currency: str, actor_user_id: int | None = None) -> Order:
    """Open an empty UNPAID order. Lines are added with add_order_line."""
    currency = (currency or "").strip().upper()
    if len(currency) != 3:
        raise ValidationError("Currency must be a 3-letter ISO code", code="INVALID_CURRENCY")

    with unit_of_work():
        if customer_id is not None:
            customer = db.session.query(Customer).filter_by(id=customer_id).first()
            if not customer:
                raise NotFoundError(f"Customer {customer_id} not found", code="CUSTOMER_NOT_FOUND")

        order = Order(
            customer_id=customer_id,
            currency=currency,
            total_cents=0,
            net_paid_cents=0,
            balance_due_cents=0,
            status=OrderStatus.UNPAID.value,
            created_by_user_id=actor_user_id,
        )
        db.session.add(order)
        db.session.flush()
        order.order_number = f"INV-{order.id:06d}"
        recompute_invoice_totals(order)

    current_app.logger.info("Created order %s (%s)", order.order_number, currency)
    return order


def add_order_line(
    order_id: int,
    *,
    stock_item_id: int | None,
    quantity: int,
    unit_price_cents: int | None = None,
    description: str | None = None,
) -> OrderLine:
    """
    Add a line to an open order.

    For stock lines the item's row is locked and availability checked in the
    same transaction that inserts the line, so two concurrent orders cannot
    both take the last unit. Price defaults to the item's current price.

    Raises:
        ValidationError: bad quantity/price, item or order missing
        StateError: order is SETTLED or CANCELLED
        ConsistencyError: not enough available stock, or currency mismatch
    """
    if not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer", code="INVALID_QUANTITY")

    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status not in EDITABLE_STATUSES:
            raise StateError(
                f"Cannot add lines to an order in status {order.status}",
                current_status=order.status,
                code="ORDER_NOT_EDITABLE",
            )

        item = None
        if stock_item_id is not None:
            check = check_availability(stock_item_id, quantity)
            item = check["item"]
            if item is None:
                raise NotFoundError(f"Stock item {stock_item_id} not found", code="ITEM_NOT_FOUND")
            if not check["ok"]:
                raise ConsistencyError(
                    f"Only {check['available']} of {item.sku} available",
                    code="INSUFFICIENT_AVAILABILITY",
                    details={"available": check["available"], "requested": quantity},
                )
            if unit_price_cents is None:
                if item.price_cents is None:
                    raise ValidationError(f"Stock item {item.sku} has no price", code="PRICE_REQUIRED")
                if item.price_currency != order.currency:
                    raise ConsistencyError(
                        f"Item is priced in {item.price_currency}, order is in {order.currency}",
                        code="CURRENCY_MISMATCH",
                    )
                unit_price_cents = item.price_cents

        if unit_price_cents is None or unit_price_cents < 0:
            raise ValidationError("Unit price must be zero or more cents", code="INVALID_PRICE")

        line = OrderLine(
            order_id=order.id,
            stock_item_id=stock_item_id,
            description=description or (item.name if item is not None else None),
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            line_total_cents=unit_price_cents * quantity,
            quantity_returned_total=0,
        )
        db.session.add(line)
        db.session.flush()

        _recompute_order_total(order)
        recompute_invoice_totals(order)
        if item is not None:
            refresh_display_status(item)

    current_app.logger.info(
        "Added line %s to order %s (item %s x%s)", line.id, order.id, stock_item_id, quantity,
    )
    return line


def void_order_line(order_id: int, line_id: int, actor_user_id: int | None = None) -> Order:
    """
    Void an unreturned line on an open order, releasing its reservation.

    Raises:
        NotFoundError: order or line missing
        StateError: order not editable, or line already voided
        ConsistencyError: line has returns against it
    """
    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status not in EDITABLE_STATUSES:
            raise StateError(
                f"Cannot void lines on an order in status {order.status}",
                current_status=order.status,
                code="ORDER_NOT_EDITABLE",
            )

        line = db.session.query(OrderLine).filter_by(id=line_id, order_id=order_id).first()
        if not line:
            raise NotFoundError(f"Order line {line_id} not found", code="LINE_NOT_FOUND")
        if line.voided_at is not None:
            raise StateError("Order line is already voided", current_status="VOIDED", code="ALREADY_VOIDED")
        if (line.quantity_returned_total or 0) > 0:
            raise ConsistencyError("Cannot void a line that has returns", code="LINE_HAS_RETURNS")

        previous_status = order.status
        line.voided_at = utcnow()
        line.voided_by_user_id = actor_user_id
        db.session.flush()

        _recompute_order_total(order)
        recompute_invoice_totals(order)
        # A smaller total can settle a partially paid order.
        apply_settlement_transition(order, previous_status, actor_user_id=actor_user_id)
        if line.stock_item is not None:
            refresh_display_status(line.stock_item)

    current_app.logger.info("Voided line %s on order %s", line_id, order_id)
    return order


def void_paid_line(
    order_id: int,
    line_id: int,
    *,
    reason: str,
    quantity: int | None = None,
    actor_user_id: int | None = None,
) -> Order:
    """
    Void all or part of a line on a SETTLED order.

    Settlement already took the line's stock off hand, so the voided
    quantity goes back on hand here. A partial void shrinks the line and
    records the voided part as its own voided line. The last live line
    cannot be voided in full; void the payments and cancel instead.

    Raises:
        ValidationError: reason missing or quantity out of range
        NotFoundError: order or line missing
        StateError: order not SETTLED, or line already voided
        ConsistencyError: line has returns, or it is the last live line
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required when voiding a line", code="REASON_REQUIRED")

    with unit_of_work():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status != OrderStatus.SETTLED.value:
            raise StateError(
                "Lines can only be voided this way on settled orders",
                current_status=order.status,
                code="NOT_SETTLED",
            )

        line = db.session.query(OrderLine).filter_by(id=line_id, order_id=order_id).first()
        if not line:
            raise NotFoundError(f"Order line {line_id} not found", code="LINE_NOT_FOUND")
        if line.voided_at is not None:
            raise StateError("Order line is already voided", current_status="VOIDED", code="ALREADY_VOIDED")
        if (line.quantity_returned_total or 0) > 0:
            raise ConsistencyError("Cannot void a line that has returns", code="LINE_HAS_RETURNS")

        void_qty = line.quantity if quantity is None else quantity
        if not isinstance(void_qty, int) or void_qty < 1 or void_qty > line.quantity:
            raise ValidationError(
                f"Void quantity must be between 1 and {line.quantity}",
                code="INVALID_QUANTITY",
            )

        full_void = void_qty == line.quantity
        if full_void and len(order.live_lines) <= 1:
            raise ConsistencyError(
                "Cannot void the last line on a settled order",
                code="LAST_LINE",
            )

        now = utcnow()
        if full_void:
            voided = line
        else:
            line.quantity -= void_qty
            line.line_total_cents = line.unit_price_cents * line.quantity
            voided = OrderLine(
                stock_item_id=line.stock_item_id,
                description=line.description,
                quantity=void_qty,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.unit_price_cents * void_qty,
                quantity_returned_total=0,
            )
            order.lines.append(voided)

        voided.voided_at = now
        voided.voided_by_user_id = actor_user_id
        voided.void_reason = reason
        db.session.flush()

        item = None
        if line.stock_item_id is not None:
            item = db.session.query(StockItem).filter_by(id=line.stock_item_id).first()
        if item is not None:
            item.on_hand = (item.on_hand or 0) + void_qty
            db.session.flush()
            refresh_display_status(item)
            log_stock_item_event(
                stock_item_id=item.id,
                event_type=EVENT_LINE_VOIDED,
                order_id=order.id,
                actor_user_id=actor_user_id,
                details={"quantity": void_qty, "on_hand": item.on_hand, "status": item.status, "reason": reason},
            )

        previous_status = order.status
        _recompute_order_total(order)
        recompute_invoice_totals(order)
        apply_settlement_transition(order, previous_status, actor_user_id=actor_user_id)

        append_audit_event(
            action=ACTION_ORDER_LINE_VOIDED,
            entity_type="order_line",
            entity_id=voided.id,
            order_id=order.id,
            actor_user_id=actor_user_id,
            summary=f"Voided {void_qty} of line {line.id}",
            payload={"quantity": void_qty, "reason": reason, "total_cents": order.total_cents},
        )

    current_app.logger.info(
        "Voided %s of line %s on settled order %s (%s)", void_qty, line_id, order_id, reason,
    )
    return order
