from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any

from .errors import ValidationError


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical totals
MAX_AMOUNT_CENTS = 999_999_999

CENT = Decimal("0.01")


def parse_amount_to_cents(value: Any, *, field: str = "amount") -> int:
    """
    Parse a major-unit amount ("145.00", 145, Decimal("145.5")) into integer cents.

    - Floats are accepted only through their repr, so 0.1 stays 0.10
    - Scientific notation and more than 2 decimal places are rejected
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")

    if isinstance(value, float):
        value = repr(value)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)")
        value = stripped

    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a decimal number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal number")

    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} must have at most 2 decimal places")

    cents = int((amount * 100).to_integral_value())
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int) -> str:
    """Fixed 2-decimal string ("145.00"); never goes through float."""
    return str(cents_to_decimal(cents))


def percent_of_cents(cents: int, percentage: Decimal) -> int:
    """
    cents * percentage / 100, rounded to the nearest cent (half-even, matching
    the banker's rounding the rest of the money pipeline uses).
    """
    raw = Decimal(cents) * Decimal(percentage) / Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def parse_percentage(value: Any, *, field: str = "percentage") -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        pct = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal number")
    if not pct.is_finite():
        raise ValidationError(f"{field} must be a decimal number")
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct.quantize(CENT)


@dataclass(frozen=True)
class CustomerInfo:
    """Contact snapshot captured at checkout; copied verbatim onto the order."""
    name: str
    email: str
    phone: str
    shipping_address: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CustomerInfo":
        return cls(
            name=data.get("name") or "",
            email=data.get("email") or "",
            phone=data.get("phone") or "",
            shipping_address=data.get("shipping_address"),
            notes=data.get("notes"),
        )


def validate_customer_info(data: dict | None) -> CustomerInfo:
    """Validate the checkout contact block (request body keys are customer_*)."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    def _text(key: str, max_len: int, required: bool) -> str | None:
        raw = data.get(key)
        if raw is None:
            if required:
                raise ValidationError(f"{key} is required")
            return None
        if not isinstance(raw, str):
            raise ValidationError(f"{key} must be a string")
        value = raw.strip()
        if required and not value:
            raise ValidationError(f"{key} is required")
        if len(value) > max_len:
            raise ValidationError(f"{key} must be at most {max_len} characters")
        return value or None

    name = _text("customer_name", 200, True)
    email = _text("customer_email", 255, True)
    phone = _text("customer_phone", 32, True)
    if "@" not in email:
        raise ValidationError("customer_email must be a valid email address")

    return CustomerInfo(
        name=name,
        email=email,
        phone=phone,
        shipping_address=_text("shipping_address", 500, False),
        notes=_text("notes", 1000, False),
    )
