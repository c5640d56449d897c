# Overview: Service-layer payment initiation; reserves the cart and asks the gateway for a payment page.

"""
Payment Initiation

FLOW:
1. Snapshot the cart (empty cart is a validation error)
2. Optionally price an installment plan on top of the cart total
3. Commit Reservation + Payment(PENDING, placeholder transaction id)
4. Call the gateway (outside any open DB transaction)
5. Record the exchange: INITIATED with the gateway transaction id, or
   FAILED with the gateway message and the reservation removed

No Order is created here. The order is materialized only when the gateway
confirms payment (settlement_service).
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass

from flask import current_app

from ..extensions import db, gateway
from ..errors import ValidationError
from ..models import Payment, PaymentTarget
from ..models.payments import (
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_INITIATED,
    PAYMENT_STATUS_PENDING,
)
from ..validation import CustomerInfo
from .cart_service import get_cart
from .concurrency import lock_for_update, run_with_retry
from .gateway_client import GatewayClient, GatewayResponse
from .installment_service import calculate, validate_selection
from .reservation_service import create_reservation, get_reservation


PLACEHOLDER_PREFIX = "TEMP_"


@dataclass
class InitiationResult:
    ok: bool
    reservation_id: str | None = None
    payment_id: int | None = None
    amount_cents: int | None = None
    gateway: GatewayResponse | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        body = self.gateway.to_dict() if self.gateway is not None else {}
        body.update({
            "reservation_id": self.reservation_id,
            "payment_id": self.payment_id,
            "amount_cents": self.amount_cents,
        })
        if self.error:
            body["error"] = self.error
        return body


def get_gateway_client() -> GatewayClient:
    return gateway.client


def initiate_payment(
    user_id: int | None,
    guest_token: str | None,
    customer: CustomerInfo,
    installment_option_id=None,
) -> InitiationResult:
    """
    Reserve the shopper's cart and open a gateway payment.

    Raises ValidationError for input problems (nothing persisted). Gateway
    failures come back as InitiationResult(ok=False) with the payment FAILED.
    """
    cart = get_cart(user_id, guest_token)
    if cart.is_empty:
        raise ValidationError("Cart is empty")

    cart_total = cart.final_total_cents
    if cart_total <= 0:
        raise ValidationError("Cart total must be positive")

    charge_cents = cart_total
    quote = None
    if installment_option_id not in (None, ""):
        if not validate_selection(cart_total, installment_option_id):
            raise ValidationError("Selected installment option is not available for this amount")
        quote = calculate(cart_total, int(installment_option_id))
        charge_cents = quote.total_amount_cents

    currency = current_app.config.get("EPOINT_CURRENCY", "AZN")

    def _reserve():
        reservation = create_reservation(user_id, cart, customer, total_cents=charge_cents)
        payment = Payment(
            target=PaymentTarget.reservation(reservation.id),
            gateway_transaction_id=f"{PLACEHOLDER_PREFIX}{uuid.uuid4()}",
            amount_cents=charge_cents,
            currency=currency,
            status=PAYMENT_STATUS_PENDING,
        )
        if quote is not None:
            payment.installment_period = quote.installment_period
            payment.installment_interest_cents = quote.interest_amount_cents
            payment.original_amount_cents = quote.original_amount_cents
        db.session.add(payment)
        db.session.commit()
        return reservation.id, payment.id

    reservation_id, payment_id = run_with_retry(_reserve)

    response = get_gateway_client().initiate(reservation_id, charge_cents)

    def _record():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).one()
        payment.request_data = response.raw_request
        payment.response_data = response.raw_response or json.dumps(response.to_dict())
        if response.ok and response.transaction_id and payment.has_placeholder_transaction:
            payment.gateway_transaction_id = response.transaction_id

        if payment.status != PAYMENT_STATUS_PENDING:
            # A callback or the expiry sweep closed it while the gateway call was in flight
            current_app.logger.warning(
                "Payment %s for %s is already %s; keeping it (gateway answered %s)",
                payment_id, reservation_id, payment.status, response.status,
            )
        elif response.ok:
            payment.status = PAYMENT_STATUS_INITIATED
        else:
            payment.status = PAYMENT_STATUS_FAILED
            payment.error_message = (response.message or "Gateway request failed")[:1000]
            reservation = get_reservation(reservation_id)
            if reservation is not None:
                db.session.delete(reservation)
        db.session.commit()

    run_with_retry(_record)

    if not response.ok:
        current_app.logger.warning(
            "Gateway initiation failed for reservation %s: %s", reservation_id, response.message,
        )
        return InitiationResult(
            ok=False,
            reservation_id=reservation_id,
            payment_id=payment_id,
            amount_cents=charge_cents,
            gateway=response,
            error=response.message or "Payment gateway error",
        )

    current_app.logger.info(
        "Payment %s initiated for reservation %s (%s cents)", payment_id, reservation_id, charge_cents,
    )
    return InitiationResult(
        ok=True,
        reservation_id=reservation_id,
        payment_id=payment_id,
        amount_cents=charge_cents,
        gateway=response,
    )
