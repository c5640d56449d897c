from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import composite

from ..extensions import db
from ..time_utils import is_expired, to_utc_z


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_INITIATED = "INITIATED"
PAYMENT_STATUS_COMPLETED = "COMPLETED"
PAYMENT_STATUS_FAILED = "FAILED"
PAYMENT_STATUS_CANCELLED = "CANCELLED"
PAYMENT_STATUS_REFUNDED = "REFUNDED"

PAYMENT_TERMINAL_STATUSES = {
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_CANCELLED,
    PAYMENT_STATUS_REFUNDED,
}

# Placeholder transaction ids until the gateway assigns a real one
PLACEHOLDER_TRANSACTION_PREFIXES = ("TEMP_", "UNKNOWN_")

TARGET_RESERVATION = "RESERVATION"
TARGET_ORDER = "ORDER"


@dataclass(frozen=True)
class PaymentTarget:
    """
    What a payment pays for: a reservation (before settlement) or an order.

    Both kinds share the purchase identifier, so settling only flips `kind`.
    """
    kind: str
    reference: str

    def __post_init__(self):
        if self.kind not in (TARGET_RESERVATION, TARGET_ORDER):
            raise ValueError(f"Invalid payment target kind: {self.kind}")
        if not self.reference:
            raise ValueError("Payment target reference is required")

    def __composite_values__(self):
        return self.kind, self.reference

    @classmethod
    def reservation(cls, reservation_id: str) -> "PaymentTarget":
        return cls(TARGET_RESERVATION, reservation_id)

    @classmethod
    def order(cls, public_id: str) -> "PaymentTarget":
        return cls(TARGET_ORDER, public_id)

    @property
    def is_reservation(self) -> bool:
        return self.kind == TARGET_RESERVATION

    @property
    def is_order(self) -> bool:
        return self.kind == TARGET_ORDER


class Reservation(db.Model):
    """
    Pending purchase: cart snapshot + customer info held while the gateway works.

    Lives from payment initiation until the first terminal outcome (completed,
    failed, cancelled) or the expiry sweep, then is deleted. The snapshot is
    what the order is built from; the live cart is never re-read.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.Index("ix_reservations_expires_at", "expires_at"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # JSON documents (see reservation_service for the layout)
    cart_snapshot = db.Column(db.Text, nullable=False)
    customer_info = db.Column(db.Text, nullable=False)

    total_cents = db.Column(db.Integer, nullable=False)
    promo_code = db.Column(db.String(50), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "promo_code": self.promo_code,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "expired": is_expired(self.expires_at),
        }


class Payment(db.Model):
    """
    Gateway payment for one purchase.

    TARGET: exactly one of reservation / order, mapped as the PaymentTarget
    composite over two non-null columns.

    STATUS: PENDING -> INITIATED -> {COMPLETED | FAILED | CANCELLED}.
    Terminal statuses never change again, except COMPLETED -> REFUNDED by
    an administrator.

    AUDIT: raw gateway request, initiation response and the latest callback
    are kept verbatim for replay diagnosis.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("gateway_transaction_id", name="uq_payments_gateway_transaction"),
        db.Index("ix_payments_target", "target_kind", "target_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    target_kind = db.Column(db.String(16), nullable=False)
    target_reference = db.Column(db.String(36), nullable=False, index=True)
    target = composite(PaymentTarget, target_kind, target_reference)

    gateway_transaction_id = db.Column(db.String(100), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="AZN")
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(50), nullable=False, default="Epoint")

    request_data = db.Column(db.Text, nullable=True)
    response_data = db.Column(db.Text, nullable=True)
    callback_data = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.String(1000), nullable=True)

    # Installment plan (amount_cents already includes the interest)
    installment_period = db.Column(db.Integer, nullable=True)
    installment_interest_cents = db.Column(db.Integer, nullable=True)
    original_amount_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in PAYMENT_TERMINAL_STATUSES

    @property
    def has_placeholder_transaction(self) -> bool:
        return not self.gateway_transaction_id or self.gateway_transaction_id.startswith(
            PLACEHOLDER_TRANSACTION_PREFIXES
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target_kind": self.target_kind,
            "target_reference": self.target_reference,
            "gateway_transaction_id": self.gateway_transaction_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "error_message": self.error_message,
            "installment_period": self.installment_period,
            "installment_interest_cents": self.installment_interest_cents,
            "original_amount_cents": self.original_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }
