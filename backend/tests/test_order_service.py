# Overview: Pytest coverage for order entry (the writes that create reservations).

import pytest

from backoffice.models import Order, OrderLine, StockItem
from backoffice.services.errors import ConsistencyError, NotFoundError, StateError, ValidationError
from backoffice.services.order_service import add_order_line, create_order, void_order_line, void_paid_line


class TestCreateOrder:
    def test_creates_unpaid_order_with_number(self, db_session, customer):
        order = create_order(customer.id, "ghs", actor_user_id=3)

        assert order.status == "UNPAID"
        assert order.currency == "GHS"
        assert order.total_cents == 0
        assert order.order_number == f"INV-{order.id:06d}"

    def test_invalid_currency(self, db_session, customer):
        with pytest.raises(ValidationError):
            create_order(customer.id, "CEDI")

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            create_order(424242, "GHS")
        assert db_session.query(Order).count() == 0


class TestAddOrderLine:
    def test_price_defaults_to_item_price(self, db_session, customer, make_item):
        item = make_item(on_hand=5, price_cents=1250)
        order = create_order(customer.id, "GHS")

        line = add_order_line(order.id, stock_item_id=item.id, quantity=2)

        assert line.unit_price_cents == 1250
        assert line.line_total_cents == 2500
        order = db_session.get(Order, order.id)
        assert order.total_cents == 2500
        assert order.balance_due_cents == 2500

    def test_explicit_price_and_service_line(self, db_session, customer, make_item):
        item = make_item(on_hand=5, price_cents=1250)
        order = create_order(customer.id, "GHS")

        add_order_line(order.id, stock_item_id=item.id, quantity=1, unit_price_cents=1000)
        add_order_line(order.id, stock_item_id=None, quantity=1, unit_price_cents=300, description="Setup fee")

        assert db_session.get(Order, order.id).total_cents == 1300

    def test_currency_mismatch(self, db_session, customer, make_item):
        item = make_item(on_hand=5, price_cents=100, price_currency="USD")
        order = create_order(customer.id, "GHS")

        with pytest.raises(ConsistencyError) as exc:
            add_order_line(order.id, stock_item_id=item.id, quantity=1)
        assert exc.value.code == "CURRENCY_MISMATCH"

    def test_unknown_item(self, db_session, customer):
        order = create_order(customer.id, "GHS")
        with pytest.raises(NotFoundError):
            add_order_line(order.id, stock_item_id=424242, quantity=1)

    def test_invalid_quantity(self, db_session, customer, make_item):
        item = make_item()
        order = create_order(customer.id, "GHS")
        with pytest.raises(ValidationError):
            add_order_line(order.id, stock_item_id=item.id, quantity=0)

    def test_settled_order_not_editable(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(item, 1)])
        pay(order, 1000)

        with pytest.raises(StateError) as exc:
            add_order_line(order.id, stock_item_id=item.id, quantity=1)
        assert exc.value.current_status == "SETTLED"

    def test_line_added_to_partially_settled_order(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(item, 1)])
        pay(order, 500)

        add_order_line(order.id, stock_item_id=item.id, quantity=1)

        order = db_session.get(Order, order.id)
        assert order.total_cents == 2000
        assert order.balance_due_cents == 1500
        assert order.status == "PARTIALLY_SETTLED"


class TestVoidOrderLine:
    def test_void_updates_total(self, db_session, customer, make_item, make_order):
        a = make_item(on_hand=5, price_cents=1000)
        b = make_item(on_hand=5, price_cents=400)
        order = make_order(customer, [(a, 1), (b, 1)])
        line_b = [line for line in order.lines if line.stock_item_id == b.id][0]

        order = void_order_line(order.id, line_b.id, actor_user_id=2)

        assert order.total_cents == 1000
        assert db_session.get(OrderLine, line_b.id).voided_by_user_id == 2

        with pytest.raises(StateError):
            void_order_line(order.id, line_b.id)


class TestVoidPaidLine:
    def test_full_void_puts_stock_back(self, db_session, customer, make_item, make_order, pay):
        a = make_item(on_hand=5, price_cents=1000)
        b = make_item(on_hand=5, price_cents=400)
        order = make_order(customer, [(a, 1), (b, 2)])
        pay(order, 1800)
        assert db_session.get(StockItem, b.id).on_hand == 3
        line_b = [line for line in order.lines if line.stock_item_id == b.id][0]

        order = void_paid_line(order.id, line_b.id, reason="Never left the store", actor_user_id=4)

        assert order.total_cents == 1000
        assert order.status == "SETTLED"
        assert order.balance_due_cents == 0
        assert db_session.get(StockItem, b.id).on_hand == 5
        assert db_session.get(StockItem, a.id).on_hand == 4
        voided = db_session.get(OrderLine, line_b.id)
        assert voided.voided_at is not None
        assert voided.void_reason == "Never left the store"
        assert voided.voided_by_user_id == 4

        with pytest.raises(StateError) as exc:
            void_paid_line(order.id, line_b.id, reason="Again")
        assert exc.value.code == "ALREADY_VOIDED"

    def test_partial_void_splits_line(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(item, 3)])
        pay(order, 3000)
        assert db_session.get(StockItem, item.id).on_hand == 2
        line_id = order.lines[0].id

        order = void_paid_line(order.id, line_id, reason="One unit was a display model", quantity=1)

        assert order.total_cents == 2000
        assert order.status == "SETTLED"
        assert db_session.get(StockItem, item.id).on_hand == 3

        lines = db_session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.id).all()
        assert [(line.quantity, line.line_total_cents, line.voided_at is None) for line in lines] == [
            (2, 2000, True),
            (1, 1000, False),
        ]
        assert lines[1].void_reason == "One unit was a display model"

    def test_last_line_cannot_be_voided(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(item, 1)])
        pay(order, 1000)

        with pytest.raises(ConsistencyError) as exc:
            void_paid_line(order.id, order.lines[0].id, reason="Customer changed mind")

        assert exc.value.code == "LAST_LINE"
        assert db_session.get(StockItem, item.id).on_hand == 4
        assert db_session.get(OrderLine, order.lines[0].id).voided_at is None

    def test_partial_void_of_last_line_allowed(self, db_session, customer, make_item, make_order, pay):
        item = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(item, 2)])
        pay(order, 2000)

        order = void_paid_line(order.id, order.lines[0].id, reason="Short shipped", quantity=1)

        assert order.total_cents == 1000
        assert db_session.get(StockItem, item.id).on_hand == 4

    @pytest.mark.parametrize("kwargs,error,code", [
        ({"reason": "  "}, ValidationError, "REASON_REQUIRED"),
        ({"reason": "Miscount", "quantity": 3}, ValidationError, "INVALID_QUANTITY"),
        ({"reason": "Miscount", "quantity": 0}, ValidationError, "INVALID_QUANTITY"),
    ])
    def test_input_validation(self, db_session, customer, make_item, make_order, pay, kwargs, error, code):
        a = make_item(on_hand=5, price_cents=1000)
        b = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(a, 2), (b, 1)])
        pay(order, 3000)

        with pytest.raises(error) as exc:
            void_paid_line(order.id, order.lines[0].id, **kwargs)
        assert exc.value.code == code

    def test_only_settled_orders(self, db_session, customer, make_item, make_order, pay):
        a = make_item(on_hand=5, price_cents=1000)
        b = make_item(on_hand=5, price_cents=1000)
        order = make_order(customer, [(a, 1), (b, 1)])
        pay(order, 500)

        with pytest.raises(StateError) as exc:
            void_paid_line(order.id, order.lines[0].id, reason="Wrong item")
        assert exc.value.code == "NOT_SETTLED"
