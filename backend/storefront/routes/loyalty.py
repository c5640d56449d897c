# Overview: Flask API routes for loyalty bonus settings (admin).

from flask import Blueprint, request, jsonify, current_app

from ..errors import ValidationError
from ..services import settings_service
from ..decorators import require_admin


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/v1/loyalty")


@loyalty_bp.get("/settings")
@require_admin
def get_loyalty_settings_route():
    try:
        pct = settings_service.get_bonus_percentage()
        return jsonify({"bonus_percentage": str(pct)}), 200
    except Exception:
        current_app.logger.exception("Failed to read loyalty settings")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.put("/settings")
@require_admin
def update_loyalty_settings_route():
    """
    Set the bonus percentage credited on paid orders.

    Request body:
    {
        "bonus_percentage": "2.50"   (0-100)
    }

    Only orders paid after the change use the new value.
    """
    try:
        data = request.get_json(silent=True) or {}
        pct = settings_service.set_bonus_percentage(data.get("bonus_percentage"))
        current_app.logger.info("Loyalty bonus percentage set to %s", pct)
        return jsonify({"bonus_percentage": str(pct)}), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to update loyalty settings")
        return jsonify({"error": "Internal server error"}), 500
