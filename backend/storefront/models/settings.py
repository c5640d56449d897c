from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AppSetting(db.Model):
    """
    Global key-value settings edited by shop administrators.

    Values are stored as text; settings_service owns parsing and defaults.
    """
    __tablename__ = "app_settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_app_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "category": self.category,
            "updated_at": to_utc_z(self.updated_at),
        }


class InstallmentConfiguration(db.Model):
    """Global installment switch and minimum order amount (single row)."""
    __tablename__ = "installment_configurations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    is_enabled = db.Column(db.Boolean, nullable=False, default=False)
    minimum_amount_cents = db.Column(db.Integer, nullable=False, default=10000)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "is_enabled": self.is_enabled,
            "minimum_amount_cents": self.minimum_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class InstallmentOption(db.Model):
    """
    Bank/card specific installment plan.

    minimum_amount_cents, when set, overrides the global minimum upwards
    for this option only.
    """
    __tablename__ = "installment_options"
    __table_args__ = (
        db.Index("ix_installment_options_active_order", "is_active", "display_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bank_name = db.Column(db.String(100), nullable=False)
    installment_period = db.Column(db.Integer, nullable=False)  # months
    interest_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    minimum_amount_cents = db.Column(db.Integer, nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "bank_name": self.bank_name,
            "installment_period": self.installment_period,
            "interest_percentage": str(self.interest_percentage),
            "is_active": self.is_active,
            "minimum_amount_cents": self.minimum_amount_cents,
            "display_order": self.display_order,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
