# Overview: Service-layer operations for loyalty wallets and bonus accrual.

"""
Loyalty Bonus Service

WHY: Paid orders earn a configurable percentage back into the customer's
wallet. Gateways redeliver callbacks, so awarding must be idempotent per
order.

DESIGN PRINCIPLES:
- Wallet balance and the EARNED transaction are written in the caller's
  transaction; there is no commit here, so they land together or not at all
- Idempotency is checked inside the same transaction (after locking the
  wallet) and backed by a partial unique index on EARNED per order
- balance_before/balance_after are captured at write time
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Wallet, WalletTransaction
from ..models.loyalty import WALLET_TXN_EARNED
from ..time_utils import utcnow
from ..validation import percent_of_cents
from .concurrency import lock_for_update


def _get_or_create_wallet(user_id: int) -> Wallet:
    wallet = lock_for_update(db.session.query(Wallet).filter_by(user_id=user_id)).first()
    if wallet is None:
        wallet = Wallet(user_id=user_id, balance_cents=0)
        db.session.add(wallet)
        db.session.flush()
    return wallet


def has_earned_for_order(order_id: int) -> bool:
    return db.session.query(WalletTransaction.id).filter_by(
        order_id=order_id,
        transaction_type=WALLET_TXN_EARNED,
    ).first() is not None


def calculate_bonus_cents(order_total_cents: int, percentage: Decimal) -> int:
    return percent_of_cents(order_total_cents, percentage)


def award_bonus(
    user_id: int | None,
    order_id: int,
    order_total_cents: int,
    percentage: Decimal,
    order_number: str | None = None,
) -> WalletTransaction | None:
    """
    Credit the order bonus to the user's wallet. Caller owns the transaction.

    Returns the EARNED transaction, or None when nothing was awarded:
    guest order, percentage <= 0, already awarded, or bonus rounds to 0.
    """
    if user_id is None:
        return None
    if percentage is None or percentage <= 0:
        return None

    bonus_cents = calculate_bonus_cents(order_total_cents, percentage)
    if bonus_cents <= 0:
        return None

    wallet = _get_or_create_wallet(user_id)

    # Re-checked after the wallet lock so concurrent awards serialize here
    if has_earned_for_order(order_id):
        return None

    balance_before = wallet.balance_cents
    balance_after = balance_before + bonus_cents

    wallet.balance_cents = balance_after
    wallet.updated_at = utcnow()

    txn = WalletTransaction(
        wallet_id=wallet.id,
        order_id=order_id,
        transaction_type=WALLET_TXN_EARNED,
        amount_cents=bonus_cents,
        balance_before_cents=balance_before,
        balance_after_cents=balance_after,
        description=f"Bonus ({percentage}%) for order {order_number or order_id}",
        created_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


# =============================================================================
# WALLET READS
# =============================================================================

def get_wallet(user_id: int) -> dict:
    """Wallet summary; users without a wallet see a zero balance."""
    wallet = db.session.query(Wallet).filter_by(user_id=user_id).first()
    if wallet is None:
        return {"id": None, "user_id": user_id, "balance_cents": 0}
    return wallet.to_dict()


def list_wallet_transactions(user_id: int) -> list[WalletTransaction]:
    """Newest first."""
    wallet = db.session.query(Wallet).filter_by(user_id=user_id).first()
    if wallet is None:
        return []
    return (
        db.session.query(WalletTransaction)
        .filter_by(wallet_id=wallet.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .all()
    )
