# Overview: Service-layer operations for reservations (pending purchases awaiting the gateway).

"""
Reservation Store

A reservation freezes what the shopper is buying (cart snapshot + contact
info) at the moment payment is initiated. The order is later built from
this snapshot, never from the live cart, so cart edits made while the
gateway page is open cannot change what gets charged or shipped.

LAYOUT (JSON text columns):
    cart_snapshot = {
        "cart_id": 12,
        "items": [{"product_id", "product_name", "product_sku",
                   "quantity", "unit_price_cents", "total_price_cents"}],
        "subtotal_cents", "discount_cents", "final_total_cents",
        "promo_code", "promo_discount_percentage"
    }
    customer_info = {"name", "email", "phone", "shipping_address", "notes"}

LIFECYCLE: created at initiation, deleted on the first terminal outcome or
by the expiry sweep.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import Payment, Reservation
from ..models.payments import (
    PAYMENT_STATUS_CANCELLED,
    PAYMENT_TERMINAL_STATUSES,
    TARGET_RESERVATION,
)
from ..time_utils import expiry_from, utcnow
from ..validation import CustomerInfo
from .cart_service import CartLine, CartSnapshot
from .concurrency import lock_for_update


EXPIRED_MESSAGE = "Reservation expired"


def create_reservation(
    user_id: int | None,
    cart: CartSnapshot,
    customer: CustomerInfo,
    total_cents: int,
    ttl_minutes: int | None = None,
) -> Reservation:
    """Persist a reservation in the caller's transaction (no commit)."""
    if cart.is_empty:
        raise ValidationError("Cart is empty")

    if ttl_minutes is None:
        ttl_minutes = int(current_app.config.get("RESERVATION_TTL_MINUTES", 30))

    now = utcnow()
    reservation = Reservation(
        id=str(uuid.uuid4()),
        user_id=user_id,
        cart_snapshot=json.dumps(cart.to_dict()),
        customer_info=json.dumps(customer.to_dict()),
        total_cents=total_cents,
        promo_code=cart.promo_code,
        created_at=now,
        expires_at=expiry_from(now, ttl_minutes),
    )
    db.session.add(reservation)
    db.session.flush()
    return reservation


def get_reservation(reservation_id: str, *, lock: bool = False) -> Reservation | None:
    if not reservation_id:
        return None
    query = db.session.query(Reservation).filter_by(id=str(reservation_id))
    if lock:
        query = lock_for_update(query)
    return query.first()


def load_snapshot(reservation: Reservation) -> CartSnapshot:
    """Rebuild the frozen cart; ValidationError if missing, unparsable or empty."""
    try:
        data = json.loads(reservation.cart_snapshot or "")
    except ValueError:
        raise ValidationError(f"Reservation {reservation.id} has an unreadable cart snapshot")
    if not isinstance(data, dict):
        raise ValidationError(f"Reservation {reservation.id} has an unreadable cart snapshot")

    lines = []
    for raw in data.get("items") or []:
        try:
            lines.append(CartLine(
                product_id=int(raw["product_id"]),
                product_name=str(raw["product_name"]),
                product_sku=str(raw["product_sku"]),
                quantity=int(raw["quantity"]),
                unit_price_cents=int(raw["unit_price_cents"]),
            ))
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Reservation {reservation.id} has a malformed cart line")

    if not lines:
        raise ValidationError(f"Reservation {reservation.id} has an empty cart snapshot")

    pct = data.get("promo_discount_percentage")
    try:
        pct = Decimal(pct) if pct is not None else None
    except (InvalidOperation, TypeError):
        raise ValidationError(f"Reservation {reservation.id} has an invalid promo percentage")

    return CartSnapshot(
        cart_id=data.get("cart_id"),
        items=lines,
        promo_code=data.get("promo_code"),
        promo_discount_percentage=pct,
    )


def load_customer(reservation: Reservation) -> CustomerInfo:
    try:
        data = json.loads(reservation.customer_info or "")
    except ValueError:
        raise ValidationError(f"Reservation {reservation.id} has unreadable customer info")
    if not isinstance(data, dict):
        raise ValidationError(f"Reservation {reservation.id} has unreadable customer info")
    return CustomerInfo.from_dict(data)


def delete_reservation(reservation: Reservation | None) -> None:
    """Remove a reservation in the caller's transaction (no commit)."""
    if reservation is not None:
        db.session.delete(reservation)


# =============================================================================
# EXPIRY SWEEP
# =============================================================================

@dataclass
class SweepResult:
    reservation_ids: list[str] = field(default_factory=list)
    cancelled_payment_ids: list[int] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "reservations": len(self.reservation_ids),
            "cancelled_payments": len(self.cancelled_payment_ids),
            "dry_run": self.dry_run,
        }


def sweep_expired(now: datetime | None = None, *, dry_run: bool = False) -> SweepResult:
    """
    Delete reservations past expires_at and cancel their open payments.

    A success callback arriving after the sweep finds no reservation and is
    answered as already settled (see settlement_service); the money has to
    be refunded by hand in that case.
    """
    now = now or utcnow()
    result = SweepResult(dry_run=dry_run)

    expired = lock_for_update(
        db.session.query(Reservation).filter(Reservation.expires_at < now)
    ).order_by(Reservation.expires_at).all()

    for reservation in expired:
        result.reservation_ids.append(reservation.id)
        payments = lock_for_update(
            db.session.query(Payment).filter(
                Payment.target_kind == TARGET_RESERVATION,
                Payment.target_reference == reservation.id,
            )
        ).all()
        for payment in payments:
            if payment.status in PAYMENT_TERMINAL_STATUSES:
                continue
            result.cancelled_payment_ids.append(payment.id)
            if not dry_run:
                payment.status = PAYMENT_STATUS_CANCELLED
                payment.error_message = EXPIRED_MESSAGE
        if not dry_run:
            db.session.delete(reservation)

    if dry_run:
        db.session.rollback()
    else:
        db.session.commit()
        if result.reservation_ids:
            current_app.logger.info(
                "Expired %d reservation(s), cancelled %d payment(s)",
                len(result.reservation_ids), len(result.cancelled_payment_ids),
            )
    return result
