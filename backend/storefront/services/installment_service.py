# Overview: Service-layer operations for installment plans (configuration, options, pricing).

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import InstallmentConfiguration, InstallmentOption
from ..time_utils import utcnow
from ..validation import format_cents, parse_percentage, percent_of_cents


DEFAULT_MINIMUM_AMOUNT_CENTS = 10000


@dataclass(frozen=True)
class InstallmentQuote:
    option_id: int
    bank_name: str
    installment_period: int
    interest_percentage: Decimal
    original_amount_cents: int
    interest_amount_cents: int
    total_amount_cents: int
    monthly_payment_cents: int

    def to_dict(self) -> dict:
        return {
            "installment_option_id": self.option_id,
            "bank_name": self.bank_name,
            "installment_period": self.installment_period,
            "interest_percentage": str(self.interest_percentage),
            "original_amount": format_cents(self.original_amount_cents),
            "interest_amount": format_cents(self.interest_amount_cents),
            "total_amount": format_cents(self.total_amount_cents),
            "monthly_payment": format_cents(self.monthly_payment_cents),
            "original_amount_cents": self.original_amount_cents,
            "interest_amount_cents": self.interest_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "monthly_payment_cents": self.monthly_payment_cents,
        }


def get_configuration() -> InstallmentConfiguration:
    """The single configuration row; created disabled on first access."""
    config = db.session.query(InstallmentConfiguration).order_by(InstallmentConfiguration.id).first()
    if config is None:
        config = InstallmentConfiguration(
            is_enabled=False,
            minimum_amount_cents=DEFAULT_MINIMUM_AMOUNT_CENTS,
        )
        db.session.add(config)
        db.session.commit()
    return config


def update_configuration(is_enabled: bool, minimum_amount_cents: int) -> InstallmentConfiguration:
    if minimum_amount_cents is None or minimum_amount_cents < 0:
        raise ValidationError("minimum_amount must be zero or positive")
    config = get_configuration()
    config.is_enabled = bool(is_enabled)
    config.minimum_amount_cents = minimum_amount_cents
    config.updated_at = utcnow()
    db.session.commit()
    return config


def _option_allows(option: InstallmentOption, amount_cents: int) -> bool:
    if not option.is_active:
        return False
    if option.minimum_amount_cents is not None and amount_cents < option.minimum_amount_cents:
        return False
    return True


def list_active_options(amount_cents: int) -> list[InstallmentOption]:
    """Options a purchase of amount_cents may use; empty when disabled or below minimum."""
    config = get_configuration()
    if not config.is_enabled or amount_cents < config.minimum_amount_cents:
        return []

    options = (
        db.session.query(InstallmentOption)
        .filter_by(is_active=True)
        .order_by(InstallmentOption.display_order, InstallmentOption.installment_period)
        .all()
    )
    return [o for o in options if _option_allows(o, amount_cents)]


def list_all_options() -> list[InstallmentOption]:
    return (
        db.session.query(InstallmentOption)
        .order_by(InstallmentOption.display_order, InstallmentOption.installment_period)
        .all()
    )


def get_option(option_id: int) -> InstallmentOption:
    option = db.session.get(InstallmentOption, option_id)
    if option is None:
        raise NotFoundError("Installment option not found")
    return option


def calculate(amount_cents: int, option_id: int) -> InstallmentQuote:
    """Interest, total and monthly payment, each rounded to the cent."""
    option = get_option(option_id)
    pct = Decimal(option.interest_percentage or 0)

    interest_cents = percent_of_cents(amount_cents, pct)
    total_cents = amount_cents + interest_cents
    monthly = (Decimal(total_cents) / Decimal(option.installment_period)).quantize(
        Decimal("1"), rounding=ROUND_HALF_EVEN
    )

    return InstallmentQuote(
        option_id=option.id,
        bank_name=option.bank_name,
        installment_period=option.installment_period,
        interest_percentage=pct,
        original_amount_cents=amount_cents,
        interest_amount_cents=interest_cents,
        total_amount_cents=total_cents,
        monthly_payment_cents=int(monthly),
    )


def validate_selection(amount_cents: int, option_id) -> bool:
    config = get_configuration()
    if not config.is_enabled or amount_cents < config.minimum_amount_cents:
        return False
    try:
        option = db.session.get(InstallmentOption, int(option_id))
    except (TypeError, ValueError):
        return False
    if option is None:
        return False
    return _option_allows(option, amount_cents)


def _validate_option_fields(bank_name, installment_period, interest_percentage):
    bank_name = (bank_name or "").strip()
    if not bank_name:
        raise ValidationError("bank_name is required")
    try:
        period = int(installment_period)
    except (TypeError, ValueError):
        raise ValidationError("installment_period must be an integer")
    if period < 1:
        raise ValidationError("installment_period must be at least 1")
    pct = parse_percentage(interest_percentage, field="interest_percentage")
    return bank_name, period, pct


def create_option(
    bank_name: str,
    installment_period: int,
    interest_percentage,
    *,
    is_active: bool = True,
    minimum_amount_cents: int | None = None,
    display_order: int = 0,
) -> InstallmentOption:
    bank_name, period, pct = _validate_option_fields(bank_name, installment_period, interest_percentage)
    option = InstallmentOption(
        bank_name=bank_name,
        installment_period=period,
        interest_percentage=pct,
        is_active=bool(is_active),
        minimum_amount_cents=minimum_amount_cents,
        display_order=int(display_order or 0),
    )
    db.session.add(option)
    db.session.commit()
    return option


def update_option(
    option_id: int,
    bank_name: str,
    installment_period: int,
    interest_percentage,
    *,
    is_active: bool = True,
    minimum_amount_cents: int | None = None,
    display_order: int = 0,
) -> InstallmentOption:
    option = get_option(option_id)
    bank_name, period, pct = _validate_option_fields(bank_name, installment_period, interest_percentage)
    option.bank_name = bank_name
    option.installment_period = period
    option.interest_percentage = pct
    option.is_active = bool(is_active)
    option.minimum_amount_cents = minimum_amount_cents
    option.display_order = int(display_order or 0)
    option.updated_at = utcnow()
    db.session.commit()
    return option


def delete_option(option_id: int) -> None:
    option = get_option(option_id)
    db.session.delete(option)
    db.session.commit()
