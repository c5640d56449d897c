"""
Settlement tests.

Verifies:
- A confirmed payment materializes exactly one PAID order from the reservation
- Stock and loyalty bonus fire once, however many times the gateway repeats itself
- Failed / cancelled / expired purchases leave no order behind
- Terminal payments never change status again
- Browser redirects never settle without the gateway's word
"""

import re
from datetime import timedelta

import httpx
import pytest

from storefront.extensions import db
from storefront.models import Cart, InventoryTransaction, Order, Payment, PaymentTarget, Reservation, WalletTransaction
from storefront.models.orders import ORDER_STATUS_PAID, ORDER_STATUS_PENDING
from storefront.models.payments import (
    PAYMENT_STATUS_CANCELLED,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_INITIATED,
    TARGET_ORDER,
)
from storefront.services.cart_service import get_cart
from storefront.services.inventory_service import get_quantity_on_hand
from storefront.services.order_service import materialize
from storefront.services.reservation_service import create_reservation, sweep_expired
from storefront.services import settlement_service
from storefront.services.settlement_service import (
    ERROR_AUTHENTICATION,
    ERROR_CONFLICT,
    ERROR_NOT_FOUND,
    ERROR_VALIDATION,
    OUTCOME_ALREADY_SETTLED,
    OUTCOME_CANCELLED,
    OUTCOME_COMPLETED,
    OUTCOME_CONFLICT,
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_IGNORED,
    REDIRECT_ERROR,
    REDIRECT_SUCCESS,
    RedirectResult,
    classify_status,
    process_callback,
    process_callback_envelope,
    process_redirect,
)
from storefront.services.signature_service import SignatureCodec
from storefront.time_utils import utcnow
from storefront.validation import CustomerInfo

from conftest import PRIVATE_KEY, callback, start_checkout


def _payment(payment_id):
    return db.session.get(Payment, payment_id)


def _order(public_id):
    return db.session.query(Order).filter_by(public_id=public_id).first()


def _earned_count():
    return db.session.query(WalletTransaction).filter_by(transaction_type="EARNED").count()


# =============================================================================
# CALLBACK: SUCCESS
# =============================================================================


class TestSuccessfulSettlement:
    """A signed success callback turns the reservation into a PAID order."""

    def test_success_materializes_paid_order(self, fake_gateway, user, products, cart, bonus_percentage):
        cream, serum = products
        started = start_checkout(user.id)
        assert started.ok
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED
        assert db.session.query(Order).count() == 0

        result = process_callback(callback(started.reservation_id))

        assert result.ok
        assert result.outcome == OUTCOME_COMPLETED
        assert result.http_status == 200

        order = _order(started.reservation_id)
        assert order is not None
        assert order.status == ORDER_STATUS_PAID
        assert order.total_cents == 14500
        assert order.user_id == user.id
        assert re.fullmatch(r"ORD-\d{8}-\d{4}", order.order_number)
        assert result.order_number == order.order_number
        assert len(order.items) == 2

        payment = _payment(started.payment_id)
        assert payment.status == PAYMENT_STATUS_COMPLETED
        assert payment.target_kind == TARGET_ORDER
        assert payment.target_reference == order.public_id
        assert payment.gateway_transaction_id == "TX1"
        assert payment.completed_at is not None
        assert payment.callback_data is not None
        assert order.payment_id == payment.id

        assert db.session.get(Reservation, started.reservation_id) is None
        assert get_quantity_on_hand(cream.id) == 8
        assert get_quantity_on_hand(serum.id) == 9

        earned = db.session.query(WalletTransaction).filter_by(order_id=order.id).all()
        assert len(earned) == 1
        assert earned[0].amount_cents == 290
        assert earned[0].balance_before_cents == 0
        assert earned[0].balance_after_cents == 290
        assert earned[0].wallet.balance_cents == 290

        assert db.session.get(Cart, cart.id).items == []

    def test_duplicate_callback_is_noop(self, fake_gateway, user, products, cart, bonus_percentage):
        cream, _ = products
        started = start_checkout(user.id)
        payload = callback(started.reservation_id)

        first = process_callback(payload)
        second = process_callback(payload)

        assert first.outcome == OUTCOME_COMPLETED
        assert second.ok
        assert second.outcome == OUTCOME_DUPLICATE
        assert db.session.query(Order).count() == 1
        assert _earned_count() == 1
        assert get_quantity_on_hand(cream.id) == 8

    def test_order_snapshot_ignores_later_cart_edits(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        live = db.session.get(Cart, cart.id)
        live.items[0].quantity = 7
        db.session.commit()

        process_callback(callback(started.reservation_id))

        order = _order(started.reservation_id)
        assert order.total_cents == 14500
        assert sorted(item.quantity for item in order.items) == [1, 2]

    def test_guest_checkout_earns_no_bonus(self, fake_gateway, products, guest_cart, bonus_percentage):
        started = start_checkout(None, "guest-abc")

        result = process_callback(callback(started.reservation_id, amount="50.00"))

        assert result.outcome == OUTCOME_COMPLETED
        order = _order(started.reservation_id)
        assert order.user_id is None
        assert order.status == ORDER_STATUS_PAID
        assert _earned_count() == 0
        assert db.session.get(Cart, guest_cart.id).items == []

    def test_zero_bonus_percentage_awards_nothing(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        process_callback(callback(started.reservation_id))

        assert _order(started.reservation_id).status == ORDER_STATUS_PAID
        assert _earned_count() == 0

    def test_amount_mismatch_is_recorded_not_blocking(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        result = process_callback(callback(started.reservation_id, amount="100.00"))

        assert result.outcome == OUTCOME_COMPLETED
        payment = _payment(started.payment_id)
        assert payment.status == PAYMENT_STATUS_COMPLETED
        assert payment.error_message.startswith("Amount mismatch")

    def test_placeholder_transaction_replaced_by_callback(self, fake_gateway, user, products, cart):
        fake_gateway.request_response = (200, {"status": "success", "redirect_url": "https://gateway.test/pay"})
        started = start_checkout(user.id)
        assert _payment(started.payment_id).gateway_transaction_id.startswith("TEMP_")

        process_callback(callback(started.reservation_id, transaction_id="TX77"))

        assert _payment(started.payment_id).gateway_transaction_id == "TX77"

    def test_missing_payment_is_recreated(self, fake_gateway, user, products, cart):
        customer = CustomerInfo(name="Aysel", email="aysel@example.com", phone="+994501112233")
        reservation = create_reservation(user.id, get_cart(user.id), customer, total_cents=14500)
        db.session.commit()
        reservation_id = reservation.id

        result = process_callback(callback(reservation_id, transaction_id="TX9"))

        assert result.outcome == OUTCOME_COMPLETED
        payment = db.session.query(Payment).filter_by(gateway_transaction_id="TX9").one()
        assert payment.status == PAYMENT_STATUS_COMPLETED
        assert payment.amount_cents == 14500
        assert _order(reservation_id).payment_id == payment.id


# =============================================================================
# CALLBACK: FAILURE AND CANCELLATION
# =============================================================================


class TestUnsuccessfulSettlement:
    """Failed, cancelled and expired purchases leave no order behind."""

    def test_failed_payment_creates_no_order(self, fake_gateway, user, products, cart):
        cream, _ = products
        started = start_checkout(user.id)

        result = process_callback(
            callback(started.reservation_id, status="failed", message="insufficient_funds")
        )

        assert result.ok
        assert result.outcome == OUTCOME_FAILED
        assert db.session.query(Order).count() == 0
        payment = _payment(started.payment_id)
        assert payment.status == PAYMENT_STATUS_FAILED
        assert payment.error_message == "insufficient_funds"
        assert db.session.get(Reservation, started.reservation_id) is None
        assert get_quantity_on_hand(cream.id) == 10
        assert len(db.session.get(Cart, cart.id).items) == 2

    def test_cancelled_payment(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        result = process_callback(callback(started.reservation_id, status="cancelled"))

        assert result.outcome == OUTCOME_CANCELLED
        payment = _payment(started.payment_id)
        assert payment.status == PAYMENT_STATUS_CANCELLED
        assert payment.error_message == "Payment cancelled"
        assert db.session.query(Order).count() == 0

    def test_success_after_failure_is_already_settled(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        process_callback(callback(started.reservation_id, status="failed"))

        result = process_callback(callback(started.reservation_id))

        assert result.ok
        assert result.outcome == OUTCOME_ALREADY_SETTLED
        assert db.session.query(Order).count() == 0
        assert _payment(started.payment_id).status == PAYMENT_STATUS_FAILED

    def test_success_after_expiry_is_already_settled(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        swept = sweep_expired(utcnow() + timedelta(hours=1))
        assert swept.reservation_ids == [started.reservation_id]
        assert _payment(started.payment_id).status == PAYMENT_STATUS_CANCELLED

        result = process_callback(callback(started.reservation_id))

        assert result.ok
        assert result.outcome == OUTCOME_ALREADY_SETTLED
        assert db.session.query(Order).count() == 0

    def test_unrecognized_status_changes_nothing(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        result = process_callback(callback(started.reservation_id, status="processing"))

        assert result.ok
        assert result.outcome == OUTCOME_IGNORED
        payment = _payment(started.payment_id)
        assert payment.status == PAYMENT_STATUS_INITIATED
        assert payment.error_message == "Unrecognized gateway status: processing"
        assert db.session.get(Reservation, started.reservation_id) is not None

    def test_conflicting_status_after_success_is_not_applied(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        process_callback(callback(started.reservation_id))

        result = process_callback(callback(started.reservation_id, status="failed"))

        assert result.ok
        assert result.outcome == OUTCOME_CONFLICT
        payment = _payment(started.payment_id)
        assert payment.status == PAYMENT_STATUS_COMPLETED
        assert "Conflicting" in payment.error_message
        assert _order(started.reservation_id).status == ORDER_STATUS_PAID


# =============================================================================
# CALLBACK: REJECTIONS
# =============================================================================


class TestRejectedCallbacks:
    """Invalid callbacks are refused without touching any state."""

    def test_bad_signature(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)

        result = process_callback(callback(started.reservation_id, key="not-the-key"))

        assert not result.ok
        assert result.error_kind == ERROR_AUTHENTICATION
        assert result.identifier == started.reservation_id
        assert result.http_status == 400
        assert result.to_dict() == {"error": "Invalid signature", "kind": ERROR_AUTHENTICATION}
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED
        assert db.session.query(Order).count() == 0

    def test_tampered_status(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        payload = callback(started.reservation_id)
        payload["status"] = "cancelled"

        result = process_callback(payload)

        assert result.error_kind == ERROR_AUTHENTICATION
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED

    @pytest.mark.parametrize("missing", ["order_id", "status", "signature"])
    def test_missing_required_field(self, db_session, missing):
        payload = callback("abc")
        payload.pop(missing)

        result = process_callback(payload)

        assert result.error_kind == ERROR_VALIDATION
        assert missing in result.detail

    def test_non_object_body(self, db_session):
        result = process_callback(["not", "an", "object"])
        assert result.error_kind == ERROR_VALIDATION

    def test_transaction_id_of_another_payment(self, fake_gateway, user, products, cart):
        first = start_checkout(user.id)
        fake_gateway.request_response = (200, {"status": "success", "redirect_url": "https://gateway.test/pay"})
        second = start_checkout(user.id)
        assert _payment(second.payment_id).gateway_transaction_id.startswith("TEMP_")

        result = process_callback(callback(second.reservation_id, transaction_id="TX1"))

        assert not result.ok
        assert result.error_kind == ERROR_CONFLICT
        assert result.http_status == 400
        assert _payment(first.payment_id).gateway_transaction_id == "TX1"
        payment = _payment(second.payment_id)
        assert payment.status == PAYMENT_STATUS_INITIATED
        assert payment.gateway_transaction_id.startswith("TEMP_")
        assert db.session.query(Order).count() == 0
        assert db.session.get(Reservation, second.reservation_id) is not None

    def test_unknown_identifier(self, db_session):
        result = process_callback(callback("00000000-0000-0000-0000-000000000000"))

        assert not result.ok
        assert result.error_kind == ERROR_NOT_FOUND
        assert result.http_status == 400


# =============================================================================
# CALLBACK: FORM ENVELOPE
# =============================================================================


class TestCallbackEnvelope:
    """The gateway may post {data, signature} instead of a JSON body."""

    def _envelope(self, payload, key=PRIVATE_KEY):
        codec = SignatureCodec(key)
        data = codec.encode_payload(payload)
        return data, codec.sign_data(data)

    def test_envelope_settles(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        data, signature = self._envelope({
            "order_id": started.reservation_id,
            "status": "success",
            "transaction": "TX1",
            "amount": "145.00",
        })

        result = process_callback_envelope(data, signature)

        assert result.outcome == OUTCOME_COMPLETED
        assert _order(started.reservation_id).status == ORDER_STATUS_PAID

    def test_envelope_bad_signature(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        data, _ = self._envelope({"order_id": started.reservation_id, "status": "success"})
        _, other_signature = self._envelope({"order_id": started.reservation_id, "status": "success"}, key="x")

        result = process_callback_envelope(data, other_signature)

        assert result.error_kind == ERROR_AUTHENTICATION
        assert db.session.query(Order).count() == 0

    def test_envelope_missing_parts(self, db_session):
        assert process_callback_envelope("", "sig").error_kind == ERROR_VALIDATION


# =============================================================================
# BROWSER REDIRECTS
# =============================================================================


class TestRedirectReconciliation:
    """Redirects only settle what the gateway confirms."""

    def test_pending_gateway_status_settles_nothing(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        fake_gateway.status_response = {"status": "new"}

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": started.reservation_id})

        assert result.action == "pending"
        assert db.session.query(Order).count() == 0
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED
        assert fake_gateway.requests[-1]["path"] == "/api/1/get-status"
        assert fake_gateway.last_payload["transaction"] == "TX1"

    def test_confirmed_status_settles_like_callback(self, fake_gateway, user, products, cart, bonus_percentage):
        started = start_checkout(user.id)
        fake_gateway.status_response = {"status": "success", "transaction": "TX1", "amount": "145.00"}

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": started.reservation_id})

        assert result.action == "reconciled"
        assert result.settlement.outcome == OUTCOME_COMPLETED
        order = _order(started.reservation_id)
        assert order.status == ORDER_STATUS_PAID
        assert _earned_count() == 1

        # The late callback is then a duplicate
        assert process_callback(callback(started.reservation_id)).outcome == OUTCOME_DUPLICATE
        assert _earned_count() == 1

    def test_redirect_transaction_id_is_never_queried(self, fake_gateway, user, products, cart):
        fake_gateway.request_response = (200, {"status": "success", "redirect_url": "https://gateway.test/pay"})
        started = start_checkout(user.id)
        fake_gateway.status_response = {
            "status": "success", "transaction": "CHEAP_TX", "order_id": "some-other-reservation", "amount": "1.00",
        }
        requests_before = len(fake_gateway.requests)

        result = process_redirect(
            REDIRECT_SUCCESS, {"order_id": started.reservation_id, "transaction_id": "CHEAP_TX"},
        )

        assert result.action == "no_transaction"
        assert len(fake_gateway.requests) == requests_before
        assert db.session.query(Order).count() == 0
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED

    @pytest.mark.parametrize("status_response", [
        {"status": "success", "transaction": "TX1", "order_id": "some-other-reservation", "amount": "145.00"},
        {"status": "success", "transaction": "TX1", "amount": "1.00"},
        {"status": "success", "transaction": "TX1"},
    ])
    def test_status_not_matching_purchase_settles_nothing(self, fake_gateway, user, products, cart, status_response):
        started = start_checkout(user.id)
        fake_gateway.status_response = status_response

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": started.reservation_id})

        assert result.action == "mismatch"
        assert result.settlement is None
        assert db.session.query(Order).count() == 0
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED
        assert db.session.get(Reservation, started.reservation_id) is not None

    def test_matching_order_id_and_amount_settles(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        fake_gateway.status_response = {
            "status": "success", "transaction": "TX1", "order_id": started.reservation_id, "amount": "145.00",
        }

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": started.reservation_id})

        assert result.action == "reconciled"
        assert _order(started.reservation_id).status == ORDER_STATUS_PAID

    def test_error_redirect_with_failed_status(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        fake_gateway.status_response = {"status": "failed", "message": "Card declined"}

        result = process_redirect(REDIRECT_ERROR, {"orderId": started.reservation_id})

        assert result.action == "reconciled"
        assert _payment(started.payment_id).status == PAYMENT_STATUS_FAILED
        assert db.session.query(Order).count() == 0

    def test_gateway_unavailable(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        fake_gateway.raise_error = httpx.ConnectError("connection refused")

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": started.reservation_id})

        assert result.action == "gateway_unavailable"
        assert _payment(started.payment_id).status == PAYMENT_STATUS_INITIATED
        assert db.session.get(Reservation, started.reservation_id) is not None

    def test_reconcile_disabled(self, app, monkeypatch, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        monkeypatch.setitem(app.config, "PAYMENT_REDIRECT_RECONCILE", False)
        requests_before = len(fake_gateway.requests)

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": started.reservation_id})

        assert result.action == "disabled"
        assert len(fake_gateway.requests) == requests_before

    def test_paid_order_redirect_does_nothing(self, fake_gateway, user, products, cart):
        started = start_checkout(user.id)
        process_callback(callback(started.reservation_id))
        order = _order(started.reservation_id)

        result = process_redirect(REDIRECT_SUCCESS, {"order_number": order.order_number})

        assert result.action == "none"

    def test_unknown_reference(self, db_session):
        result = process_redirect(REDIRECT_SUCCESS, {"order_id": "nope"})
        assert result.action == "unknown"

    def test_missing_reference(self, db_session):
        result = process_redirect(REDIRECT_SUCCESS, {})
        assert result.order_id is None
        assert result.action == "none"

    def test_existing_unpaid_order_is_corroborated(self, fake_gateway, user, products, cart):
        customer = CustomerInfo(name="Aysel", email="aysel@example.com", phone="+994501112233")
        reservation = create_reservation(user.id, get_cart(user.id), customer, total_cents=14500)
        payment = Payment(
            target=PaymentTarget.reservation(reservation.id),
            gateway_transaction_id="TEMP_abc",
            amount_cents=14500,
            status=PAYMENT_STATUS_INITIATED,
        )
        db.session.add(payment)
        db.session.flush()
        order = materialize(reservation, payment)
        payment.target = PaymentTarget.order(order.public_id)
        db.session.delete(reservation)
        db.session.commit()
        assert order.status == ORDER_STATUS_PENDING

        result = process_redirect(REDIRECT_SUCCESS, {"order_id": order.public_id, "transaction_id": "TX5"})

        assert result.action == "corroborated"
        assert _order(order.public_id).status == ORDER_STATUS_PAID
        assert _payment(payment.id).gateway_transaction_id == "TX5"


class TestRedirectUrls:
    def test_success_url(self):
        result = RedirectResult(kind=REDIRECT_SUCCESS, order_id="abc", transaction_id="TX1")
        assert result.frontend_url("http://front.test/") == (
            "http://front.test/payment/success?orderId=abc&transactionId=TX1&status=paid"
        )

    def test_error_url_is_encoded(self):
        result = RedirectResult(kind=REDIRECT_ERROR, order_id="a b", message="Card declined & more")
        assert result.frontend_url("http://front.test") == (
            "http://front.test/payment/error?orderId=a%20b&transactionId="
            "&message=Card%20declined%20%26%20more&status=failed"
        )


def test_classify_status():
    assert classify_status("SUCCESS") == PAYMENT_STATUS_COMPLETED
    assert classify_status(" completed ") == PAYMENT_STATUS_COMPLETED
    assert classify_status("error") == PAYMENT_STATUS_FAILED
    assert classify_status("failed") == PAYMENT_STATUS_FAILED
    assert classify_status("cancelled") == PAYMENT_STATUS_CANCELLED
    assert classify_status("new") is None
    assert classify_status(None) is None


class TestConcurrentSettlement:
    def test_losing_a_race_retries_into_duplicate(self, monkeypatch, fake_gateway, user, products, cart, bonus_percentage):
        started = start_checkout(user.id)
        rid = started.reservation_id
        live_reservation = db.session.get(Reservation, rid)
        live_payment = _payment(started.payment_id)

        # What a second worker read before the first one committed
        stale = {
            "find_order": [None],
            "get_reservation": [Reservation(
                id=rid,
                user_id=live_reservation.user_id,
                cart_snapshot=live_reservation.cart_snapshot,
                customer_info=live_reservation.customer_info,
                total_cents=live_reservation.total_cents,
                created_at=live_reservation.created_at,
                expires_at=live_reservation.expires_at,
            )],
            "_find_payment": [Payment(
                id=live_payment.id,
                target=PaymentTarget.reservation(rid),
                gateway_transaction_id=live_payment.gateway_transaction_id,
                amount_cents=live_payment.amount_cents,
                status=PAYMENT_STATUS_INITIATED,
            )],
        }

        assert process_callback(callback(rid)).outcome == OUTCOME_COMPLETED

        def first_attempt_sees_stale(name):
            real = getattr(settlement_service, name)

            def read(*args, **kwargs):
                return stale[name].pop() if stale[name] else real(*args, **kwargs)
            return read

        for name in stale:
            monkeypatch.setattr(settlement_service, name, first_attempt_sees_stale(name))

        result = process_callback(callback(rid))

        assert result.outcome == OUTCOME_DUPLICATE
        assert all(not views for views in stale.values())
        assert db.session.query(Order).count() == 1
        assert _earned_count() == 1
        order = _order(rid)
        sales = db.session.query(InventoryTransaction).filter_by(type="SALE").all()
        assert sorted(s.order_item_id for s in sales) == sorted(item.id for item in order.items)
        assert _payment(started.payment_id).status == PAYMENT_STATUS_COMPLETED
