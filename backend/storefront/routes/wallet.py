# Overview: Flask API routes for the shopper's loyalty wallet.

from flask import Blueprint, jsonify, g, current_app

from ..services import loyalty_service
from ..decorators import require_user


wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/v1/wallet")


@wallet_bp.get("")
@require_user
def get_wallet_route():
    try:
        return jsonify({"wallet": loyalty_service.get_wallet(g.current_user.id)}), 200
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/transactions")
@require_user
def list_wallet_transactions_route():
    """Wallet ledger, newest first."""
    try:
        txns = loyalty_service.list_wallet_transactions(g.current_user.id)
        return jsonify({"transactions": [t.to_dict() for t in txns]}), 200
    except Exception:
        current_app.logger.exception("Failed to list wallet transactions")
        return jsonify({"error": "Internal server error"}), 500
