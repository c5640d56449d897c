# Overview: Service-layer operations for inventory; encapsulates stock ledger writes.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Product, InventoryTransaction, Order, OrderItem
from ..models.catalog import INVENTORY_RECEIVE, INVENTORY_SALE
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
"""
Storefront Inventory Invariants (authoritative)

Inventory model:
- Inventory is ledger-derived from InventoryTransaction rows; never stored as a mutable quantity field.
- Quantity on hand is SUM(quantity_delta) over transactions.

Sale posting:
- A paid order posts exactly one SALE transaction per order item.
- The SALE row is written in the same DB transaction that moves the order to PAID.
- Uniqueness on order_item_id (type='SALE') makes a second posting impossible.
- Overselling is recorded, not blocked: the customer has already paid.
"""


def get_quantity_on_hand(product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0)
    ).filter(
        InventoryTransaction.product_id == product_id,
    )
    return int(q.scalar() or 0)


def _get_product(product_id: int, *, lock: bool = False) -> Product | None:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def receive_stock(product_id: int, quantity: int, note: str | None = None) -> InventoryTransaction:
    """Record incoming stock (catalog/warehouse side)."""
    def _op():
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        product = _get_product(product_id, lock=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        tx = InventoryTransaction(
            product_id=product_id,
            type=INVENTORY_RECEIVE,
            quantity_delta=quantity,
            note=note,
            occurred_at=utcnow(),
        )
        db.session.add(tx)
        db.session.commit()
        return tx

    return run_with_retry(_op)


def reduce_stock(order: Order, item: OrderItem) -> InventoryTransaction | None:
    """
    Post the SALE for one paid order item. Caller owns the transaction.

    Returns None when nothing was posted (already posted, or the product was
    removed from the catalog).
    """
    existing = db.session.query(InventoryTransaction).filter_by(
        order_item_id=item.id,
        type=INVENTORY_SALE,
    ).first()
    if existing is not None:
        return None

    product = _get_product(item.product_id, lock=True)
    if product is None:
        current_app.logger.warning(
            "Product %s for order %s no longer exists; stock not reduced",
            item.product_id, order.order_number,
        )
        return None

    on_hand = get_quantity_on_hand(product.id)
    if on_hand < item.quantity:
        current_app.logger.warning(
            "Oversold product %s (%s): on hand %s, sold %s on order %s",
            product.id, product.sku, on_hand, item.quantity, order.order_number,
        )

    tx = InventoryTransaction(
        product_id=product.id,
        type=INVENTORY_SALE,
        quantity_delta=-item.quantity,
        order_id=order.id,
        order_item_id=item.id,
        note=f"Order {order.order_number}",
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


