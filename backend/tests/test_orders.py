import itertools
import re
from datetime import datetime

import pytest

from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.extensions import db
from storefront.models import Order, Payment, WalletTransaction
from storefront.models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_FAILED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUS_SHIPPED,
)
from storefront.models.payments import PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_REFUNDED
from storefront.services import order_service
from storefront.services.cart_service import get_cart
from storefront.services.reservation_service import create_reservation
from storefront.services.settings_service import load_settlement_settings
from storefront.services.settlement_service import OUTCOME_DUPLICATE, process_callback
from storefront.validation import CustomerInfo

from conftest import callback, start_checkout


CUSTOMER = CustomerInfo(name="Aysel Mammadova", email="aysel@example.com", phone="+994501112233")


@pytest.fixture
def paid_order(fake_gateway, user, products, cart, bonus_percentage):
    started = start_checkout(user.id)
    process_callback(callback(started.reservation_id))
    return db.session.query(Order).filter_by(public_id=started.reservation_id).one()


# =============================================================================
# ORDER NUMBERS
# =============================================================================


def test_order_number_format(db_session):
    assert re.fullmatch(r"ORD-\d{8}-\d{4}", order_service.generate_order_number())


def test_order_number_falls_back_after_collisions(monkeypatch, paid_order):
    taken = int(paid_order.order_number.rsplit("-", 1)[1])
    monkeypatch.setattr(order_service.random, "randint", lambda a, b: taken)

    number = order_service.generate_order_number(paid_order.created_at)

    assert number != paid_order.order_number
    assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{8}", number)


def test_order_numbers_on_one_date_are_distinct(monkeypatch, user, products, cart):
    fixed = datetime(2026, 3, 14, 12, 0, 0)
    monkeypatch.setattr(order_service, "utcnow", lambda: fixed)
    # Two fresh draws, then every draw collides with the second number
    draws = itertools.chain([4821, 4822], itertools.repeat(4822))
    monkeypatch.setattr(order_service.random, "randint", lambda a, b: next(draws))

    numbers = []
    for _ in range(5):
        reservation = create_reservation(user.id, get_cart(user.id), CUSTOMER, 14500)
        numbers.append(order_service.materialize(reservation).order_number)
    db.session.commit()

    assert len(set(numbers)) == 5
    assert numbers[:2] == ["ORD-20260314-4821", "ORD-20260314-4822"]
    assert all(re.fullmatch(r"ORD-20260314-[0-9A-F]{8}", n) for n in numbers[2:])
    assert db.session.query(Order).filter(Order.order_number.like("ORD-20260314-%")).count() == 5


# =============================================================================
# PAID TRIGGERS
# =============================================================================


def test_mark_paid_runs_once(paid_order):
    assert paid_order.status == ORDER_STATUS_PAID
    earned_before = db.session.query(WalletTransaction).count()

    assert order_service.mark_paid(paid_order, load_settlement_settings()) is False
    db.session.commit()

    assert db.session.query(WalletTransaction).count() == earned_before


# =============================================================================
# READS
# =============================================================================


def test_order_reads(paid_order, user):
    assert order_service.get_order(paid_order.public_id).id == paid_order.id
    assert order_service.get_order_by_number(paid_order.order_number).id == paid_order.id
    assert [o.id for o in order_service.list_user_orders(user.id)] == [paid_order.id]
    assert [o.id for o in order_service.list_paid_orders()] == [paid_order.id]

    with pytest.raises(NotFoundError):
        order_service.get_order("missing")
    with pytest.raises(NotFoundError):
        order_service.get_order_by_number("ORD-00000000-0000")


def test_list_orders_status_filters(user, products, cart):
    paid, unpaid, failed = (
        order_service.materialize(create_reservation(user.id, get_cart(user.id), CUSTOMER, 14500))
        for _ in range(3)
    )
    paid.status = ORDER_STATUS_PAID
    failed.status = ORDER_STATUS_FAILED
    db.session.commit()

    def ids(status=None):
        return {o.id for o in order_service.list_orders(status)}

    assert ids() == {paid.id, unpaid.id, failed.id}
    assert ids("Paid") == {paid.id}
    assert ids("unpaid") == {unpaid.id}
    assert ids("Error") == ids("FAILED") == {failed.id}
    assert ids("pending") == {unpaid.id}
    assert ids("nonsense") == set()
def test_order_to_dict_includes_payment_and_items(paid_order):
    data = paid_order.to_dict()
    assert data["status"] == ORDER_STATUS_PAID
    assert data["payment"]["status"] == PAYMENT_STATUS_COMPLETED
    assert len(data["items"]) == 2
    assert data["items"][0]["product_sku"] == "CRM-001"


# =============================================================================
# ADMINISTRATIVE STATUS CHANGES
# =============================================================================


class TestStatusTransitions:
    def test_fulfilment_path(self, paid_order):
        for status in (ORDER_STATUS_PROCESSING, ORDER_STATUS_SHIPPED, ORDER_STATUS_DELIVERED):
            order = order_service.update_order_status(paid_order.public_id, status.lower())
            assert order.status == status

    def test_same_status_is_noop(self, paid_order):
        version = paid_order.version_id
        order = order_service.update_order_status(paid_order.public_id, ORDER_STATUS_PAID)
        assert order.status == ORDER_STATUS_PAID
        assert order.version_id == version

    def test_illegal_transition(self, paid_order):
        with pytest.raises(ConflictError) as exc_info:
            order_service.update_order_status(paid_order.public_id, ORDER_STATUS_DELIVERED)
        assert exc_info.value.details == {"current_status": ORDER_STATUS_PAID}
        assert exc_info.value.status_code == 409

    def test_cancelled_is_final(self, paid_order):
        order_service.update_order_status(paid_order.public_id, ORDER_STATUS_CANCELLED)
        with pytest.raises(ConflictError):
            order_service.update_order_status(paid_order.public_id, ORDER_STATUS_PROCESSING)

    def test_invalid_status(self, paid_order):
        with pytest.raises(ValidationError):
            order_service.update_order_status(paid_order.public_id, "SOMEWHERE")

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.update_order_status("missing", ORDER_STATUS_PROCESSING)

    def test_refund_moves_payment(self, paid_order):
        order = order_service.update_order_status(paid_order.public_id, ORDER_STATUS_REFUNDED)

        assert order.status == ORDER_STATUS_REFUNDED
        assert db.session.get(Payment, order.payment_id).status == PAYMENT_STATUS_REFUNDED

        # A replayed success for a refunded payment is a duplicate, not a conflict
        result = process_callback(callback(order.public_id))
        assert result.outcome == OUTCOME_DUPLICATE
        assert db.session.get(Payment, order.payment_id).status == PAYMENT_STATUS_REFUNDED
