# Overview: Flask API routes for gateway payments; initiation, callback and browser redirects.

# backend/storefront/routes/payments.py
"""
Payment Gateway API Routes

WHY: The shop hands the shopper to the payment gateway and learns the
outcome through two channels: a signed server-to-server callback and the
browser coming back from the gateway page.

DESIGN:
- initiate: reserve the cart and return the gateway's payment page URL
- result: authoritative callback; 200 when accepted (including duplicates),
  400 on bad signature / unknown purchase
- success / error: always redirect the browser to the shop frontend; any
  reconciliation they trigger is best effort and never blocks the redirect

SECURITY:
- Callbacks are accepted only with a valid gateway signature
- Redirect parameters are untrusted and never settle a payment on their own
"""

import json
from decimal import Decimal

from flask import Blueprint, request, jsonify, g, current_app, redirect

from ..errors import ValidationError
from ..services import payment_service, settlement_service
from ..validation import validate_customer_info
from ..decorators import load_current_user


payments_bp = Blueprint("payments", __name__, url_prefix="/api/v1/payment")


# =============================================================================
# INITIATION
# =============================================================================

@payments_bp.post("/initiate")
@load_current_user
def initiate_payment_route():
    """
    Start checkout for the current cart.

    Headers:
        X-User-Id: authenticated shopper (optional)
        X-Cart-Token: guest cart token (guest checkout)

    Request body:
    {
        "customer_name": "Aysel Mammadova",
        "customer_email": "aysel@example.com",
        "customer_phone": "+994501234567",
        "shipping_address": "Baku, Nizami 10",   (optional)
        "notes": "Call before delivery",         (optional)
        "installment_option_id": 3                (optional)
    }

    Returns:
        200: {status, transaction_id, redirect_url, reservation_id, ...}
        400: Invalid input or empty cart
        502: Gateway refused or was unreachable (payment recorded as FAILED)
        500: Server error
    """
    try:
        data = request.get_json(silent=True)
        customer = validate_customer_info(data)

        user = g.current_user
        result = payment_service.initiate_payment(
            user_id=user.id if user else None,
            guest_token=g.cart_token,
            customer=customer,
            installment_option_id=data.get("installment_option_id"),
        )

        if not result.ok:
            return jsonify(result.to_dict()), 502
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SERVER-TO-SERVER CALLBACK
# =============================================================================

def _parse_callback_body():
    """
    JSON body with Decimal amounts, or the form envelope {data, signature}.

    Returns (payload, envelope); exactly one is not None.
    """
    if request.mimetype in ("application/x-www-form-urlencoded", "multipart/form-data"):
        return None, (request.form.get("data"), request.form.get("signature"))

    raw = request.get_data(as_text=True)
    if not raw:
        return {}, None
    try:
        return json.loads(raw, parse_float=Decimal), None
    except ValueError:
        raise ValidationError("Callback body must be valid JSON")


@payments_bp.post("/result")
def payment_result_route():
    """
    Gateway result callback.

    Request body (JSON):
    {
        "transaction_id": "te001234",
        "order_id": "<reservation id>",
        "status": "success" | "failed" | "error" | "cancelled",
        "amount": 145.00,
        "currency": "AZN",
        "message": "...",          (optional)
        "signature": "<base64>"
    }

    Returns:
        200: Processed (also for duplicates and already settled purchases)
        400: Invalid signature, malformed body or unknown purchase
        500: Server error
    """
    try:
        payload, envelope = _parse_callback_body()
        current_app.logger.info(
            "Received gateway callback for %s",
            payload.get("order_id") if isinstance(payload, dict) else "<envelope>",
        )

        if envelope is not None:
            result = settlement_service.process_callback_envelope(*envelope)
        else:
            result = settlement_service.process_callback(payload)

        return jsonify(result.to_dict()), result.http_status

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Error processing gateway callback")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BROWSER REDIRECTS
# =============================================================================

def _frontend_redirect(result):
    url = result.frontend_url(current_app.config.get("FRONTEND_BASE_URL", ""))
    current_app.logger.info("Redirecting to: %s", url)
    return redirect(url, code=302)


@payments_bp.get("/success")
def payment_success_route():
    """Gateway sends the browser here after a successful payment page."""
    result = settlement_service.process_redirect(settlement_service.REDIRECT_SUCCESS, request.args)
    return _frontend_redirect(result)


@payments_bp.get("/error")
def payment_error_route():
    """Gateway sends the browser here after a failed or abandoned payment page."""
    result = settlement_service.process_redirect(settlement_service.REDIRECT_ERROR, request.args)
    return _frontend_redirect(result)
