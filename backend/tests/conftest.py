"""
Pytest fixtures for back office tests.

Provides an in-memory database, per-test cleanup, and small factories for
customers, stock, orders, payments and store credit.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Customer, CustomerCredit, StockItem
from backoffice.services.invoice_ledger_service import record_transaction
from backoffice.services.order_service import create_order, add_order_line


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name="Ama Mensah"):
        customer = Customer(name=name)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def customer(make_customer):
    return make_customer()


@pytest.fixture(scope='function')
def make_item(db_session):
    counter = {"n": 0}

    def _make(
        on_hand=5,
        price_cents=1000,
        price_currency="GHS",
        cost_cents=None,
        cost_currency="USD",
        category=None,
        sub_type=None,
        sku=None,
    ):
        counter["n"] += 1
        item = StockItem(
            sku=sku or f"SKU-{counter['n']:04d}",
            name=f"Item {counter['n']}",
            on_hand=on_hand,
            price_cents=price_cents,
            price_currency=price_currency,
            cost_cents=cost_cents,
            cost_currency=cost_currency,
            category=category,
            sub_type=sub_type,
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """
    Build an order through the order service.

    lines: list of (stock_item, quantity) or (stock_item, quantity, unit_price_cents)
    """
    def _make(customer, lines, currency="GHS"):
        order = create_order(customer.id if customer is not None else None, currency)
        for entry in lines:
            item, quantity = entry[0], entry[1]
            unit_price = entry[2] if len(entry) > 2 else None
            add_order_line(order.id, stock_item_id=item.id, quantity=quantity, unit_price_cents=unit_price)
        return db_session.get(type(order), order.id)
    return _make


@pytest.fixture(scope='function')
def pay(db_session):
    def _pay(order, amount_cents, method="CASH"):
        _, order = record_transaction(
            order.id,
            kind="PAYMENT",
            amount_cents=amount_cents,
            payment_method=method,
            comment="Payment at counter",
        )
        return order
    return _pay


@pytest.fixture(scope='function')
def make_credit(db_session):
    """Insert a store credit directly (exchange returns create them in production)."""
    def _make(customer, amount_cents, currency="GHS"):
        credit = CustomerCredit(
            customer_id=customer.id,
            currency=currency,
            original_cents=amount_cents,
            remaining_cents=amount_cents,
            status="ACTIVE",
        )
        db_session.add(credit)
        db_session.commit()
        return credit
    return _make


@pytest.fixture(scope='function')
def refund_details():
    return {"payment_method": "MOMO", "comment": "Refund to customer wallet"}
