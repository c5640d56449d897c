# Overview: Service-layer access to global settings and the per-settlement settings snapshot.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import db
from ..models import AppSetting
from ..validation import parse_percentage


BONUS_PERCENTAGE_KEY = "loyalty.bonus_percentage"
CATEGORY_LOYALTY = "loyalty"


@dataclass(frozen=True)
class SettlementSettings:
    """
    Configuration read once at the start of a settlement unit of work.

    Passing this snapshot down (instead of re-reading settings mid-way)
    keeps one settlement consistent even if an admin edits settings
    concurrently.
    """
    bonus_percentage: Decimal
    currency: str
    reconcile_redirects: bool


def get_setting(key: str) -> str | None:
    setting = db.session.query(AppSetting).filter_by(key=key).first()
    return setting.value if setting else None


def upsert_setting(key: str, value: str | None, category: str | None = None) -> AppSetting:
    """Create or update a setting. Caller commits."""
    setting = db.session.query(AppSetting).filter_by(key=key).first()
    if setting is None:
        setting = AppSetting(key=key, category=category)
        db.session.add(setting)
    setting.value = value
    db.session.flush()
    return setting


def get_bonus_percentage() -> Decimal:
    """Loyalty bonus percentage; missing or unparsable values count as 0."""
    raw = get_setting(BONUS_PERCENTAGE_KEY)
    if raw is None:
        return Decimal("0")
    try:
        return Decimal(raw)
    except InvalidOperation:
        return Decimal("0")


def set_bonus_percentage(percentage) -> Decimal:
    pct = parse_percentage(percentage, field="bonus_percentage")
    upsert_setting(BONUS_PERCENTAGE_KEY, str(pct), category=CATEGORY_LOYALTY)
    db.session.commit()
    return pct


def load_settlement_settings() -> SettlementSettings:
    config = current_app.config
    return SettlementSettings(
        bonus_percentage=get_bonus_percentage(),
        currency=config.get("EPOINT_CURRENCY", "AZN"),
        reconcile_redirects=bool(config.get("PAYMENT_REDIRECT_RECONCILE", True)),
    )


def ensure_default_settings() -> int:
    """Insert missing default settings rows. Returns number created."""
    created = 0
    if db.session.query(AppSetting).filter_by(key=BONUS_PERCENTAGE_KEY).first() is None:
        db.session.add(AppSetting(key=BONUS_PERCENTAGE_KEY, value="0.00", category=CATEGORY_LOYALTY))
        created += 1
    db.session.commit()
    return created
