# Overview: Flask API routes for orders; lookup, history and administrative status changes.

# backend/storefront/routes/orders.py
"""
Order API Routes

Orders appear here only after the gateway confirmed payment. Shoppers look
up their own orders; administrators list paid orders and move them through
fulfilment (PROCESSING, SHIPPED, DELIVERED, or CANCELLED / REFUNDED).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..services import order_service
from ..decorators import require_user, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


@orders_bp.get("/mine")
@require_user
def list_my_orders_route():
    """Current user's orders, newest first."""
    try:
        orders = order_service.list_user_orders(g.current_user.id)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except Exception:
        current_app.logger.exception("Failed to list user orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/paid")
@require_admin
def list_paid_orders_route():
    """
    Orders with a completed payment.

    Requires: admin token
    """
    try:
        orders = order_service.list_paid_orders()
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200
    except Exception:
        current_app.logger.exception("Failed to list paid orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/admin/all")
@require_admin
def list_all_orders_route():
    """
    Every order, newest first.

    Query params:
        status: Paid | Unpaid | Error | Failed | any order status (optional)

    Requires: admin token
    """
    try:
        orders = order_service.list_orders(request.args.get("status"))
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/number/<order_number>")
def get_order_by_number_route(order_number: str):
    try:
        order = order_service.get_order_by_number(order_number)
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order %s", order_number)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<public_id>")
def get_order_route(public_id: str):
    """
    Order by its public id (the id the shopper got back at checkout).

    Returns:
        200: Order with items and payment
        404: Unknown order (also while payment is still pending)
    """
    try:
        order = order_service.get_order(public_id)
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order %s", public_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<public_id>/status")
@require_admin
def update_order_status_route(public_id: str):
    """
    Administrative status change.

    Request body:
    {
        "status": "PROCESSING" | "SHIPPED" | "DELIVERED" | "CANCELLED" | "REFUNDED"
    }

    Returns:
        200: Updated order
        400: Invalid status
        404: Unknown order
        409: Transition not allowed from the current status
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status is required"}), 400

        order = order_service.update_order_status(public_id, status)
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status for %s", public_id)
        return jsonify({"error": "Internal server error"}), 500
