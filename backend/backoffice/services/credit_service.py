# Overview: Service-layer operations for store credit issued by exchange returns.

"""
Store Credit Service

WHY: An exchange-type return pays the customer back in credit rather than
cash. The credit is spent by applying it to another invoice. Every change
to a credit's remaining balance is anchored to a specific return or a
specific application, so the balance can always be explained.

DESIGN PRINCIPLES:
- Credit is created only by finalizing an exchange-type return
- remaining_cents decreases only through apply_credit
- remaining_cents increases only when a return voids the applications on a
  fully returned invoice (restore_credit_applications); there is no general
  "add credit back" operation
- An application row is immutable apart from its void marker
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Customer, CustomerCredit, CreditApplication, Order, OrderStatus
from backoffice.time_utils import utcnow
from .audit_service import (
    append_audit_event,
    ACTION_CREDIT_CREATED,
    ACTION_CREDIT_APPLIED,
    ACTION_CREDIT_RESTORED,
)
from .concurrency import unit_of_work
from .errors import ValidationError, NotFoundError, StateError, ConsistencyError
from .invoice_ledger_service import recompute_invoice_totals, apply_settlement_transition


CREDIT_STATUS_ACTIVE = "ACTIVE"
CREDIT_STATUS_CONSUMED = "CONSUMED"

CREDITABLE_ORDER_STATUSES = (OrderStatus.UNPAID.value, OrderStatus.PARTIALLY_SETTLED.value)


def issue_store_credit(return_doc, actor_user_id: int | None = None) -> CustomerCredit:
    """
    Create the credit for a finalized exchange return (flushes, does not commit).

    Called only from return finalize, inside its unit of work.
    """
    credit = CustomerCredit(
        customer_id=return_doc.customer_id,
        currency=return_doc.currency,
        original_cents=return_doc.total_cents,
        remaining_cents=return_doc.total_cents,
        status=CREDIT_STATUS_ACTIVE if return_doc.total_cents > 0 else CREDIT_STATUS_CONSUMED,
        source_return_id=return_doc.id,
        created_by_user_id=actor_user_id,
    )
    db.session.add(credit)
    db.session.flush()

    append_audit_event(
        action=ACTION_CREDIT_CREATED,
        entity_type="customer_credit",
        entity_id=credit.id,
        order_id=return_doc.order_id,
        actor_user_id=actor_user_id,
        summary=f"Store credit of {credit.currency} {credit.original_cents} issued from return {return_doc.document_number}",
        payload={"return_id": return_doc.id, "amount_cents": credit.original_cents},
    )
    return credit


def apply_credit(
    customer_id: int,
    credit_id: int,
    order_id: int,
    amount_cents: int,
    actor_user_id: int | None = None,
) -> tuple[Order, CustomerCredit]:
    """
    Spend part or all of a store credit against an open invoice.

    Raises:
        ValidationError: amount not positive, credit or order missing
        StateError: credit not usable, or order not UNPAID/PARTIALLY_SETTLED
        ConsistencyError: customer or currency mismatch, amount above
            min(credit remaining, order balance due)
    """
    if not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Amount to apply must be greater than 0", code="INVALID_AMOUNT")

    with unit_of_work():
        credit = db.session.query(CustomerCredit).filter_by(id=credit_id, customer_id=customer_id).first()
        if not credit:
            raise NotFoundError("Store credit not found", code="CREDIT_NOT_FOUND")

        if not credit.is_usable():
            raise StateError(
                "This store credit is not available for use",
                current_status=credit.status,
                code="CREDIT_NOT_USABLE",
            )

        order = db.session.query(Order).filter_by(id=order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND")

        if order.customer_id != credit.customer_id:
            raise ConsistencyError("Store credit belongs to a different customer", code="CUSTOMER_MISMATCH")

        if credit.currency != order.currency:
            raise ConsistencyError(
                f"Credit currency ({credit.currency}) does not match order currency ({order.currency})",
                code="CURRENCY_MISMATCH",
            )

        if order.status not in CREDITABLE_ORDER_STATUSES:
            raise StateError(
                "Credit can only be applied to unpaid or partially settled orders",
                current_status=order.status,
                code="ORDER_STATUS",
            )

        max_applicable = min(credit.remaining_cents, order.balance_due_cents)
        if amount_cents > max_applicable:
            raise ConsistencyError(
                f"Maximum applicable amount is {order.currency} {max_applicable}",
                code="EXCEEDS_MAX",
                details={"max_applicable_cents": max_applicable},
            )

        previous_status = order.status

        credit.remaining_cents -= amount_cents
        if credit.remaining_cents == 0:
            credit.status = CREDIT_STATUS_CONSUMED

        application = CreditApplication(
            credit_id=credit.id,
            order_id=order.id,
            amount_cents=amount_cents,
            applied_at=utcnow(),
            applied_by_user_id=actor_user_id,
        )
        db.session.add(application)
        db.session.flush()

        recompute_invoice_totals(order)
        apply_settlement_transition(order, previous_status, actor_user_id=actor_user_id)

        append_audit_event(
            action=ACTION_CREDIT_APPLIED,
            entity_type="customer_credit",
            entity_id=credit.id,
            order_id=order.id,
            actor_user_id=actor_user_id,
            summary=f"Store credit of {order.currency} {amount_cents} applied to order {order.order_number or order.id}",
            payload={
                "application_id": application.id,
                "amount_cents": amount_cents,
                "credit_remaining_cents": credit.remaining_cents,
            },
        )

    current_app.logger.info(
        "Applied %s of credit %s to order %s (remaining %s, order %s)",
        amount_cents, credit.id, order.id, credit.remaining_cents, order.status,
    )
    return order, credit


def restore_credit_applications(order: Order, *, reason: str, actor_user_id: int | None = None) -> list[CreditApplication]:
    """
    Void every active credit application on an order and give the money back
    to the originating credits. Flushes; the caller's unit of work commits.

    The only path that increases a credit's remaining balance.
    """
    active = db.session.query(CreditApplication).filter(
        CreditApplication.order_id == order.id,
        CreditApplication.voided_at.is_(None),
    ).order_by(CreditApplication.id).all()

    now = utcnow()
    for application in active:
        application.voided_at = now
        application.voided_by_user_id = actor_user_id
        application.void_reason = reason

        credit = application.credit
        credit.remaining_cents = credit.remaining_cents + application.amount_cents
        if credit.status == CREDIT_STATUS_CONSUMED and credit.remaining_cents > 0:
            credit.status = CREDIT_STATUS_ACTIVE

        append_audit_event(
            action=ACTION_CREDIT_RESTORED,
            entity_type="customer_credit",
            entity_id=credit.id,
            order_id=order.id,
            actor_user_id=actor_user_id,
            summary=f"Store credit of {credit.currency} {application.amount_cents} restored from order {order.order_number or order.id}",
            payload={
                "application_id": application.id,
                "amount_cents": application.amount_cents,
                "credit_remaining_cents": credit.remaining_cents,
                "reason": reason,
            },
        )

    db.session.flush()
    return active


def get_customer_credits(customer_id: int, currency: str | None = None, include_consumed: bool = False) -> dict:
    """Credits for a customer, newest first, plus usable totals per currency."""
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found", code="CUSTOMER_NOT_FOUND")

    query = db.session.query(CustomerCredit).filter(CustomerCredit.customer_id == customer_id)
    if currency:
        query = query.filter(CustomerCredit.currency == currency.upper())
    if not include_consumed:
        query = query.filter(
            CustomerCredit.status == CREDIT_STATUS_ACTIVE,
            CustomerCredit.remaining_cents > 0,
        )
    credits = query.order_by(CustomerCredit.created_at.desc(), CustomerCredit.id.desc()).all()

    totals_by_currency: dict[str, int] = {}
    for credit in credits:
        if credit.is_usable():
            totals_by_currency[credit.currency] = totals_by_currency.get(credit.currency, 0) + credit.remaining_cents

    return {
        "customer": customer.to_dict(),
        "credits": [c.to_dict() for c in credits],
        "totals_by_currency": totals_by_currency,
    }
