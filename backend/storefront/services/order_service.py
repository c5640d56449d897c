# Overview: Service-layer operations for orders; materialization, PAID triggers and admin status changes.

"""
Order Materializer

================================================================================
PURPOSE: Turn a paid reservation into an Order, and move orders through
fulfilment afterwards.
================================================================================

WHY THIS EXISTS:
- Orders exist only for purchases the gateway confirmed. Abandoned or
  failed checkouts leave no order rows behind.
- The order is built from the reservation's frozen snapshot, never from
  the live cart.
- Becoming PAID fires stock reduction and loyalty bonus exactly once.

STATE MACHINE (administrative, after payment):
    PAID -> PROCESSING -> SHIPPED -> DELIVERED
    PAID | PROCESSING            -> CANCELLED
    PAID | PROCESSING | SHIPPED | DELIVERED -> REFUNDED

    PENDING / FAILED are settlement-owned and never set by hand.

RULES:
1. materialize() and mark_paid() never commit; the settlement unit does
2. The PAID triggers run only when the prior status was not PAID
3. REFUNDED also moves a COMPLETED payment to REFUNDED

================================================================================
"""

from __future__ import annotations

import random
import uuid

from flask import current_app

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Order, OrderItem, Payment, Reservation
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUSES,
    ORDER_STATUS_FILTERS,
)
from ..models.payments import PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_REFUNDED
from ..time_utils import date_stamp, utcnow
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import reduce_stock
from .loyalty_service import award_bonus
from .reservation_service import load_customer, load_snapshot
from .settings_service import SettlementSettings


ORDER_NUMBER_ATTEMPTS = 10

ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PAID: {ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED},
    ORDER_STATUS_PROCESSING: {ORDER_STATUS_SHIPPED, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED},
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED, ORDER_STATUS_REFUNDED},
    ORDER_STATUS_DELIVERED: {ORDER_STATUS_REFUNDED},
}


def generate_order_number(now=None) -> str:
    """ORD-YYYYMMDD-NNNN (UTC date), collision-checked; hex fallback."""
    date = date_stamp(now)
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = f"ORD-{date}-{random.randint(1000, 9999)}"
        exists = db.session.query(Order.id).filter_by(order_number=candidate).first()
        if exists is None:
            return candidate
    return f"ORD-{date}-{uuid.uuid4().hex[:8].upper()}"


def materialize(reservation: Reservation, payment: Payment | None = None) -> Order:
    """
    Build the Order and its items from a reservation. Caller owns the transaction.

    The order takes the reservation id as public_id so gateway messages keyed
    by that identifier keep resolving after the reservation is deleted.
    """
    snapshot = load_snapshot(reservation)
    customer = load_customer(reservation)
    now = utcnow()

    order = Order(
        public_id=reservation.id,
        order_number=generate_order_number(now),
        user_id=reservation.user_id,
        subtotal_cents=snapshot.subtotal_cents,
        discount_cents=snapshot.discount_cents,
        total_cents=snapshot.final_total_cents,
        promo_code=snapshot.promo_code,
        promo_discount_percentage=snapshot.promo_discount_percentage,
        status=ORDER_STATUS_PENDING,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        shipping_address=customer.shipping_address,
        notes=customer.notes,
        payment_id=payment.id if payment is not None else None,
        created_at=now,
    )
    for line in snapshot.items:
        order.items.append(OrderItem(
            product_id=line.product_id,
            product_name=line.product_name,
            product_sku=line.product_sku,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            total_price_cents=line.total_price_cents,
            created_at=now,
        ))

    db.session.add(order)
    db.session.flush()
    return order


def mark_paid(order: Order, settings: SettlementSettings) -> bool:
    """
    Move an order to PAID and fire stock + bonus. Caller owns the transaction.

    Returns False (and does nothing) when the order already was PAID.
    """
    if order.status == ORDER_STATUS_PAID:
        return False

    for item in order.items:
        reduce_stock(order, item)

    award_bonus(
        order.user_id,
        order.id,
        order.total_cents,
        settings.bonus_percentage,
        order_number=order.order_number,
    )

    order.status = ORDER_STATUS_PAID
    order.updated_at = utcnow()
    db.session.flush()
    return True


# =============================================================================
# READS
# =============================================================================

def get_order(public_id: str) -> Order:
    order = db.session.query(Order).filter_by(public_id=str(public_id)).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def find_order(public_id: str, *, lock: bool = False) -> Order | None:
    if not public_id:
        return None
    query = db.session.query(Order).filter_by(public_id=str(public_id))
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def list_user_orders(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_paid_orders() -> list[Order]:
    """Orders whose payment completed, newest first."""
    return (
        db.session.query(Order)
        .join(Payment, Order.payment_id == Payment.id)
        .filter(Payment.status == PAYMENT_STATUS_COMPLETED)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_orders(status: str | None = None) -> list[Order]:
    """
    All orders, newest first, optionally filtered.

    status accepts Paid, Unpaid (PENDING or PAYMENT_INITIATED), Error/Failed,
    or any single order status, case-insensitively. An unknown status
    matches nothing.
    """
    query = db.session.query(Order)
    key = (status or "").strip().upper()
    if key:
        query = query.filter(Order.status.in_(ORDER_STATUS_FILTERS.get(key, [key])))
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


# =============================================================================
# ADMINISTRATIVE STATUS CHANGES
# =============================================================================

def update_order_status(public_id: str, new_status: str) -> Order:
    """Apply an administrative transition (see ALLOWED_TRANSITIONS)."""
    new_status = (new_status or "").strip().upper()
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status '{new_status}'")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(public_id=str(public_id))).first()
        if order is None:
            raise NotFoundError("Order not found")

        if order.status == new_status:
            return order

        allowed = ALLOWED_TRANSITIONS.get(order.status, set())
        if new_status not in allowed:
            raise ConflictError(
                f"Cannot change order status from {order.status} to {new_status}",
                details={"current_status": order.status},
            )

        if new_status == ORDER_STATUS_REFUNDED and order.payment_id is not None:
            payment = lock_for_update(db.session.query(Payment).filter_by(id=order.payment_id)).first()
            if payment is not None and payment.status == PAYMENT_STATUS_COMPLETED:
                payment.status = PAYMENT_STATUS_REFUNDED

        previous = order.status
        order.status = new_status
        order.updated_at = utcnow()
        db.session.commit()

        current_app.logger.info(
            "Order %s status %s -> %s", order.order_number, previous, new_status,
        )
        return order

    return run_with_retry(_op)
