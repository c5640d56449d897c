from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


WALLET_TXN_EARNED = "EARNED"
WALLET_TXN_SPENT = "SPENT"
WALLET_TXN_ADJUSTMENT = "ADJUSTMENT"

WALLET_TRANSACTION_TYPES = [WALLET_TXN_EARNED, WALLET_TXN_SPENT, WALLET_TXN_ADJUSTMENT]


class Wallet(db.Model):
    """
    Loyalty wallet, one per user, created lazily on the first award.

    INVARIANT: balance_cents equals balance_after_cents of the newest
    transaction. Both are written in the same DB transaction.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_wallets_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("wallet", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance_cents": self.balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class WalletTransaction(db.Model):
    """
    Append-only ledger of wallet movements.

    TRANSACTION TYPES:
    - EARNED: Bonus accrued from a paid order
    - SPENT: Balance used towards a purchase
    - ADJUSTMENT: Manual correction

    balance_before/balance_after are captured at write time, never recomputed.
    At most one EARNED row may reference a given order (partial unique index).
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_txns_wallet_created", "wallet_id", "created_at"),
        db.Index(
            "uq_wallet_txns_earned_per_order",
            "order_id",
            unique=True,
            sqlite_where=db.text("transaction_type = 'EARNED'"),
            postgresql_where=db.text("transaction_type = 'EARNED'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # EARNED, SPENT, ADJUSTMENT
    amount_cents = db.Column(db.Integer, nullable=False)  # Signed: positive for earn, negative for spend
    balance_before_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(500), nullable=False, default="")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
