# Overview: Pytest coverage for the return lifecycle (draft, finalize, cancel).

"""
Return Lifecycle Tests

Covers:
- Draft validation aborts with nothing written
- Refund totals use the price at sale and never exceed net paid
- Finalize releases stock, pays out, recomputes, and auto-cancels fully
  returned orders with nothing left paid
- A return is finalized at most once
- A failure mid-finalize leaves every row as it was
"""

import pytest
from sqlalchemy.exc import OperationalError

from backoffice.models import (
    AuditEvent,
    CustomerCredit,
    LedgerTransaction,
    Order,
    OrderLine,
    Return,
    StockItem,
    StockItemEvent,
)
from backoffice.services import return_service
from backoffice.services.errors import (
    ConsistencyError,
    InfrastructureError,
    NotFoundError,
    StateError,
    ValidationError,
)
from backoffice.services.invoice_ledger_service import cancel_invoice
from backoffice.services.return_service import (
    cancel_return,
    create_return_draft,
    finalize_return,
    get_return_summary,
    get_returnable_lines,
    list_order_returns,
)


def _whole_order(order):
    return [{"order_line_id": line.id, "quantity": line.quantity} for line in order.lines]


@pytest.fixture
def paid_order(db_session, customer, make_item, make_order, pay):
    """Order total 1000, one line, fully paid (SETTLED)."""
    item = make_item(on_hand=1, price_cents=1000)
    order = make_order(customer, [(item, 1)])
    return pay(order, 1000), item


class TestDraftValidation:
    def test_invalid_type(self, db_session, paid_order):
        order, _ = paid_order
        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "STORE_CREDIT", "DEFECT", _whole_order(order))
        assert exc.value.code == "INVALID_RETURN_TYPE"

    def test_reason_code_required(self, db_session, paid_order):
        order, _ = paid_order
        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "REFUND", None, _whole_order(order))
        assert exc.value.code == "INVALID_REASON_CODE"

    def test_lines_required(self, db_session, paid_order):
        order, _ = paid_order
        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "REFUND", "DEFECT", [])
        assert exc.value.code == "NO_ITEMS"

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            create_return_draft(424242, "REFUND", "DEFECT", [{"order_line_id": 1, "quantity": 1}])

    def test_quantity_above_returnable(self, db_session, paid_order):
        order, _ = paid_order
        line_id = order.lines[0].id
        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "REFUND", "DEFECT", [{"order_line_id": line_id, "quantity": 2}])
        assert exc.value.code == "EXCEEDS_RETURNABLE"
        assert exc.value.details["returnable"] == 1

    def test_line_from_another_order(self, db_session, customer, make_item, make_order, paid_order):
        order, _ = paid_order
        other = make_order(customer, [(make_item(), 1)])
        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "REFUND", "DEFECT", [{"order_line_id": other.lines[0].id, "quantity": 1}])
        assert exc.value.code == "INVALID_ITEM"

    def test_duplicate_line(self, db_session, paid_order):
        order, _ = paid_order
        entry = {"order_line_id": order.lines[0].id, "quantity": 1}
        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "EXCHANGE", "EXCHANGE", [entry, dict(entry)])
        assert exc.value.code == "DUPLICATE_ITEM"

    def test_refund_cannot_exceed_net_paid(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=2, price_cents=1000)
        order = make_order(customer, [(item, 1)])
        order = pay(order, 400)

        with pytest.raises(ConsistencyError) as exc:
            create_return_draft(order.id, "REFUND", "BUYER_REMORSE", _whole_order(order))
        assert exc.value.code == "EXCEEDS_PAID"
        assert db_session.query(Return).count() == 0

    def test_exchange_not_limited_by_net_paid(self, db_session, customer, make_item, make_order):
        item = make_item(on_hand=2, price_cents=1000)
        order = make_order(customer, [(item, 1)])

        return_doc = create_return_draft(order.id, "EXCHANGE", "EXCHANGE", _whole_order(order))
        assert return_doc.total_cents == 1000

    def test_cancelled_order(self, db_session, customer, make_item, make_order):
        item = make_item(on_hand=2, price_cents=1000)
        order = make_order(customer, [(item, 1)])
        cancel_invoice(order.id)

        with pytest.raises(StateError) as exc:
            create_return_draft(order.id, "EXCHANGE", "EXCHANGE", _whole_order(order))
        assert exc.value.current_status == "CANCELLED"

    def test_order_without_customer(self, db_session, make_item, make_order):
        item = make_item(on_hand=2, price_cents=1000)
        order = make_order(None, [(item, 1)])

        with pytest.raises(ValidationError) as exc:
            create_return_draft(order.id, "EXCHANGE", "EXCHANGE", _whole_order(order))
        assert exc.value.code == "NO_CUSTOMER"


class TestDraft:
    def test_uses_price_at_sale(self, db_session, paid_order):
        order, item = paid_order
        stock = db_session.get(StockItem, item.id)
        stock.price_cents = 5000
        db_session.commit()

        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order), reason="Screen flicker")

        assert return_doc.total_cents == 1000
        assert return_doc.status == "DRAFT"
        assert return_doc.document_number == f"R-{return_doc.id:06d}"
        assert return_doc.lines[0].unit_price_cents == 1000
        assert return_doc.reason == "Screen flicker"

    def test_draft_has_no_side_effects_on_stock_or_money(self, db_session, paid_order):
        order, item = paid_order
        create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))

        assert db_session.get(StockItem, item.id).on_hand == 0
        assert db_session.get(OrderLine, order.lines[0].id).quantity_returned_total == 0
        assert db_session.get(Order, order.id).net_paid_cents == 1000

    def test_draft_logs_audit_and_item_event(self, db_session, paid_order):
        order, item = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))

        assert db_session.query(AuditEvent).filter_by(action="return.created", entity_id=return_doc.id).count() == 1
        events = db_session.query(StockItemEvent).filter_by(stock_item_id=item.id, event_type="RETURN_INITIATED")
        assert events.count() == 1


class TestFinalize:
    def test_full_refund_auto_cancels(self, db_session, paid_order, refund_details):
        """Order 1000 paid 1000, whole line returned for refund: order cancels, balance 0."""
        order, item = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "BUYER_REMORSE", _whole_order(order))

        return_doc, order = finalize_return(return_doc.id, refund_details, actor_user_id=5)

        assert return_doc.status == "FINALIZED"
        assert return_doc.finalized_by_user_id == 5

        refunds = db_session.query(LedgerTransaction).filter_by(order_id=order.id, kind="REFUND").all()
        assert [r.amount_cents for r in refunds] == [1000]
        assert refunds[0].linked_return_id == return_doc.id
        assert refunds[0].payment_method == "MOMO"

        assert order.net_paid_cents == 0
        assert order.status == "CANCELLED"
        assert order.balance_due_cents == 0
        assert order.cancellation_reason == return_service.AUTO_CANCEL_REASON

        stock = db_session.get(StockItem, item.id)
        assert stock.on_hand == 1
        assert stock.status == "IN_STOCK"
        assert db_session.get(OrderLine, order.lines[0].id).quantity_returned_total == 1

    def test_full_exchange_with_money_paid_does_not_cancel(self, db_session, paid_order):
        order, _ = paid_order
        return_doc = create_return_draft(order.id, "EXCHANGE", "EXCHANGE", _whole_order(order))

        return_doc, order = finalize_return(return_doc.id)

        assert order.net_paid_cents == 1000
        assert order.status == "SETTLED"
        credit = db_session.query(CustomerCredit).filter_by(source_return_id=return_doc.id).one()
        assert credit.original_cents == 1000
        assert credit.remaining_cents == 1000
        assert credit.status == "ACTIVE"
        assert credit.customer_id == order.customer_id

    def test_partial_refund_then_settle_again(self, db_session, customer, make_item, make_order, pay, refund_details):
        item = make_item(on_hand=5, price_cents=500)
        order = make_order(customer, [(item, 2)])
        order = pay(order, 1000)
        assert db_session.get(StockItem, item.id).on_hand == 3

        return_doc = create_return_draft(
            order.id, "REFUND", "DEFECT", [{"order_line_id": order.lines[0].id, "quantity": 1}]
        )
        _, order = finalize_return(return_doc.id, refund_details)

        assert order.net_paid_cents == 500
        assert order.balance_due_cents == 500
        assert order.status == "PARTIALLY_SETTLED"
        assert order.is_fully_returned() is False

        order = pay(order, 500)
        assert order.status == "SETTLED"
        # One unit went home with the customer, one came back
        assert db_session.get(StockItem, item.id).on_hand == 4

    def test_refund_requires_details(self, db_session, paid_order):
        order, _ = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))

        with pytest.raises(ValidationError) as exc:
            finalize_return(return_doc.id, None)
        assert exc.value.code == "REFUND_REQUIRED"

        with pytest.raises(ValidationError) as exc:
            finalize_return(return_doc.id, {"payment_method": "OTHER", "comment": "Voucher"})
        assert exc.value.code == "OTHER_TEXT_REQUIRED"

        assert db_session.get(Return, return_doc.id).status == "DRAFT"

    def test_second_refund_blocked_after_auto_cancel(self, db_session, paid_order, refund_details):
        order, _ = paid_order
        first = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        second = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        finalize_return(first.id, refund_details)

        # the first return emptied and auto-cancelled the order
        with pytest.raises(StateError) as exc:
            finalize_return(second.id, refund_details)
        assert exc.value.code == "INVOICE_CANCELLED"
        assert db_session.get(Return, second.id).status == "DRAFT"

    def test_cannot_finalize_twice(self, db_session, paid_order, refund_details):
        order, item = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        finalize_return(return_doc.id, refund_details)
        txn_count = db_session.query(LedgerTransaction).count()

        with pytest.raises(StateError) as exc:
            finalize_return(return_doc.id, refund_details)

        assert exc.value.current_status == "FINALIZED"
        assert db_session.query(LedgerTransaction).count() == txn_count
        assert db_session.get(StockItem, item.id).on_hand == 1

    def test_cannot_finalize_cancelled(self, db_session, paid_order, refund_details):
        order, _ = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        cancel_return(return_doc.id)

        with pytest.raises(StateError) as exc:
            finalize_return(return_doc.id, refund_details)
        assert exc.value.current_status == "CANCELLED"
        assert db_session.get(Order, order.id).status == "SETTLED"

    def test_missing_return(self, db_session):
        with pytest.raises(NotFoundError):
            finalize_return(424242)

    def test_failure_rolls_back_everything(self, db_session, paid_order, refund_details, monkeypatch):
        order, item = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))

        def store_gone(order):
            raise OperationalError("UPDATE orders", {}, Exception("database is locked"))

        monkeypatch.setattr(return_service, "recompute_invoice_totals", store_gone)

        with pytest.raises(InfrastructureError) as exc:
            finalize_return(return_doc.id, refund_details)
        assert exc.value.retryable is False

        assert db_session.get(Return, return_doc.id).status == "DRAFT"
        assert db_session.get(StockItem, item.id).on_hand == 0
        assert db_session.get(OrderLine, order.lines[0].id).quantity_returned_total == 0
        assert db_session.query(LedgerTransaction).filter_by(kind="REFUND").count() == 0
        reloaded = db_session.get(Order, order.id)
        assert (reloaded.net_paid_cents, reloaded.status) == (1000, "SETTLED")

    def test_finalize_logs_events(self, db_session, paid_order, refund_details):
        order, item = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        finalize_return(return_doc.id, refund_details)

        event_types = {
            e.event_type for e in db_session.query(StockItemEvent).filter_by(return_id=return_doc.id)
        }
        assert {"RETURN_FINALIZED", "INVENTORY_RELEASED", "REFUND_ISSUED"} <= event_types

        actions = {e.action for e in db_session.query(AuditEvent).filter_by(order_id=order.id)}
        assert {"return.finalized", "transaction.refund_recorded", "order.cancelled"} <= actions


class TestCancelReturn:
    def test_cancel_draft(self, db_session, paid_order):
        order, item = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))

        return_doc = cancel_return(return_doc.id, actor_user_id=9)

        assert return_doc.status == "CANCELLED"
        assert return_doc.cancelled_by_user_id == 9
        assert db_session.get(StockItem, item.id).on_hand == 0
        assert db_session.get(Order, order.id).net_paid_cents == 1000

    def test_cancel_twice_rejected(self, db_session, paid_order):
        order, _ = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        cancel_return(return_doc.id)

        with pytest.raises(StateError):
            cancel_return(return_doc.id)

    def test_cancel_finalized_rejected(self, db_session, paid_order, refund_details):
        order, _ = paid_order
        return_doc = create_return_draft(order.id, "REFUND", "DEFECT", _whole_order(order))
        finalize_return(return_doc.id, refund_details)

        with pytest.raises(StateError) as exc:
            cancel_return(return_doc.id)
        assert exc.value.current_status == "FINALIZED"


class TestQueries:
    def test_returnable_lines_shrink(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=5, price_cents=500)
        order = make_order(customer, [(item, 2)])
        pay(order, 1000)
        return_doc = create_return_draft(
            order.id, "EXCHANGE", "EXCHANGE", [{"order_line_id": order.lines[0].id, "quantity": 1}]
        )
        finalize_return(return_doc.id)

        result = get_returnable_lines(order.id)
        assert [line["returnable_quantity"] for line in result["returnable_lines"]] == [1]

        summary = get_return_summary(return_doc.id)
        assert summary["credit"]["original_cents"] == 500
        assert summary["transactions"] == []
        assert [r.id for r in list_order_returns(order.id)] == [return_doc.id]
