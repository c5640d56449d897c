from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_PAYMENT_INITIATED = "PAYMENT_INITIATED"  # Only reachable in the superseded create-then-pay flow
ORDER_STATUS_PAID = "PAID"
ORDER_STATUS_PROCESSING = "PROCESSING"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_CANCELLED = "CANCELLED"
ORDER_STATUS_REFUNDED = "REFUNDED"
ORDER_STATUS_FAILED = "FAILED"

ORDER_STATUSES = [
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PAYMENT_INITIATED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUS_FAILED,
]

# Statuses at or beyond PAID on the happy path
ORDER_PAID_OR_LATER = {
    ORDER_STATUS_PAID,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
}

# Admin list filters: grouped names first, any other value matches one status
ORDER_STATUS_FILTERS = {
    "PAID": [ORDER_STATUS_PAID],
    "UNPAID": [ORDER_STATUS_PENDING, ORDER_STATUS_PAYMENT_INITIATED],
    "ERROR": [ORDER_STATUS_FAILED],
    "FAILED": [ORDER_STATUS_FAILED],
}


class Order(db.Model):
    """
    Customer order, materialized only once the gateway confirms payment.

    public_id is the purchase identifier the gateway knows: the id of the
    reservation the order was materialized from. A callback replayed after
    the reservation is gone therefore still resolves to this order.

    Customer contact fields are a snapshot taken at checkout and are never
    updated from the user profile afterwards.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("public_id", name="uq_orders_public_id"),
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(36), nullable=False)

    # Human-readable order number (e.g., "ORD-20260131-4821")
    order_number = db.Column(db.String(32), nullable=False)

    # Null for guest checkout
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Money breakdown (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    promo_code = db.Column(db.String(50), nullable=True)
    promo_discount_percentage = db.Column(db.Numeric(5, 2), nullable=True)

    status = db.Column(db.String(24), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    # Customer snapshot
    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)
    shipping_address = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payment = db.relationship("Payment", foreign_keys=[payment_id])
    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "public_id": self.public_id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "promo_code": self.promo_code,
            "promo_discount_percentage": (
                str(self.promo_discount_percentage) if self.promo_discount_percentage is not None else None
            ),
            "status": self.status,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "payment": self.payment.to_dict() if self.payment else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line, denormalized at purchase time (name/sku/price survive catalog edits).

    IMMUTABLE: created together with the order and never updated.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "created_at": to_utc_z(self.created_at),
        }
