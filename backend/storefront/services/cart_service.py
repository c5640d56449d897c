# Overview: Read-only cart snapshot provider used by checkout.

"""
Cart Snapshot Provider

Cart mutation (add/remove/promo application) belongs to the cart
collaborator. Checkout only needs a priced, immutable snapshot of what
the shopper is buying, and a way to empty the cart once the order exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..extensions import db
from ..models import Cart
from ..validation import percent_of_cents


@dataclass(frozen=True)
class CartLine:
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price_cents: int

    @property
    def total_price_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


@dataclass(frozen=True)
class CartSnapshot:
    cart_id: int | None
    items: list[CartLine] = field(default_factory=list)
    promo_code: str | None = None
    promo_discount_percentage: Decimal | None = None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.total_price_cents for line in self.items)

    @property
    def discount_cents(self) -> int:
        if not self.promo_discount_percentage:
            return 0
        return percent_of_cents(self.subtotal_cents, self.promo_discount_percentage)

    @property
    def final_total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict:
        return {
            "cart_id": self.cart_id,
            "items": [line.to_dict() for line in self.items],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "final_total_cents": self.final_total_cents,
            "promo_code": self.promo_code,
            "promo_discount_percentage": (
                str(self.promo_discount_percentage) if self.promo_discount_percentage is not None else None
            ),
        }


def _find_cart(user_id: int | None, guest_token: str | None) -> Cart | None:
    if user_id is not None:
        return db.session.query(Cart).filter_by(user_id=user_id).first()
    if guest_token:
        return db.session.query(Cart).filter_by(guest_token=guest_token).first()
    return None


def get_cart(user_id: int | None, guest_token: str | None = None) -> CartSnapshot:
    """
    Snapshot the shopper's cart.

    A missing cart is an empty snapshot; inactive products are dropped.
    """
    cart = _find_cart(user_id, guest_token)
    if cart is None:
        return CartSnapshot(cart_id=None)

    lines = []
    for item in cart.items:
        product = item.product
        if product is None or not product.is_active or item.quantity <= 0:
            continue
        lines.append(CartLine(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        ))

    return CartSnapshot(
        cart_id=cart.id,
        items=lines,
        promo_code=cart.promo_code,
        promo_discount_percentage=cart.promo_discount_percentage,
    )


def clear_cart(cart_id: int | None) -> None:
    """Empty a cart inside the caller's transaction (no commit)."""
    if cart_id is None:
        return
    cart = db.session.get(Cart, cart_id)
    if cart is not None:
        cart.items.clear()
        cart.promo_code = None
        cart.promo_discount_percentage = None
