# Overview: Flask API routes for installment plans; shopper quotes and admin configuration.

# backend/storefront/routes/installments.py
"""
Installment API Routes

Shoppers see the plans available for their order amount and a quote for a
chosen plan. Administrators switch installments on/off, set the global
minimum and manage the bank options.

Amounts in query strings and bodies are major units ("1000.00"); responses
carry both formatted strings and *_cents integers.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import StorefrontError, ValidationError
from ..services import installment_service
from ..validation import parse_amount_to_cents
from ..decorators import require_admin


installments_bp = Blueprint("installments", __name__, url_prefix="/api/v1/installments")


def _amount_arg() -> int:
    return parse_amount_to_cents(request.args.get("amount"), field="amount")


def _option_fields(data: dict) -> dict:
    minimum = data.get("minimum_amount")
    return {
        "bank_name": data.get("bank_name"),
        "installment_period": data.get("installment_period"),
        "interest_percentage": data.get("interest_percentage", 0),
        "is_active": bool(data.get("is_active", True)),
        "minimum_amount_cents": (
            parse_amount_to_cents(minimum, field="minimum_amount") if minimum not in (None, "") else None
        ),
        "display_order": data.get("display_order", 0),
    }


# =============================================================================
# SHOPPER
# =============================================================================

@installments_bp.get("/options")
def list_options_route():
    """Plans available for ?amount=; empty when installments are off or the amount is too small."""
    try:
        amount_cents = _amount_arg()
        options = installment_service.list_active_options(amount_cents)
        return jsonify({"options": [o.to_dict() for o in options]}), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list installment options")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.get("/calculate")
def calculate_route():
    """Quote for ?amount=&option_id=."""
    try:
        amount_cents = _amount_arg()
        try:
            option_id = int(request.args.get("option_id", ""))
        except ValueError:
            raise ValidationError("option_id must be an integer")

        quote = installment_service.calculate(amount_cents, option_id)
        return jsonify(quote.to_dict()), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to calculate installment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@installments_bp.get("/configuration")
@require_admin
def get_configuration_route():
    try:
        return jsonify({"configuration": installment_service.get_configuration().to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to read installment configuration")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.put("/configuration")
@require_admin
def update_configuration_route():
    """
    Request body:
    {
        "is_enabled": true,
        "minimum_amount": "100.00"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if "is_enabled" not in data or "minimum_amount" not in data:
            return jsonify({"error": "is_enabled and minimum_amount required"}), 400

        config = installment_service.update_configuration(
            bool(data.get("is_enabled")),
            parse_amount_to_cents(data.get("minimum_amount"), field="minimum_amount"),
        )
        return jsonify({"configuration": config.to_dict()}), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to update installment configuration")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.get("/admin/options")
@require_admin
def list_all_options_route():
    try:
        options = installment_service.list_all_options()
        return jsonify({"options": [o.to_dict() for o in options]}), 200
    except Exception:
        current_app.logger.exception("Failed to list installment options")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.post("/admin/options")
@require_admin
def create_option_route():
    """
    Request body:
    {
        "bank_name": "Kapital Bank",
        "installment_period": 6,
        "interest_percentage": "5.00",
        "is_active": true,             (optional)
        "minimum_amount": "200.00",    (optional)
        "display_order": 1             (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        fields = _option_fields(data)
        option = installment_service.create_option(
            fields.pop("bank_name"),
            fields.pop("installment_period"),
            fields.pop("interest_percentage"),
            **fields,
        )
        return jsonify({"option": option.to_dict()}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create installment option")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.put("/admin/options/<int:option_id>")
@require_admin
def update_option_route(option_id: int):
    try:
        data = request.get_json(silent=True) or {}
        fields = _option_fields(data)
        option = installment_service.update_option(
            option_id,
            fields.pop("bank_name"),
            fields.pop("installment_period"),
            fields.pop("interest_percentage"),
            **fields,
        )
        return jsonify({"option": option.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update installment option %s", option_id)
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.delete("/admin/options/<int:option_id>")
@require_admin
def delete_option_route(option_id: int):
    try:
        installment_service.delete_option(option_id)
        return jsonify({"deleted": option_id}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete installment option %s", option_id)
        return jsonify({"error": "Internal server error"}), 500
