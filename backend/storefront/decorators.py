# Overview: Request identity and admin decorators for API routes.

import hmac
from functools import wraps

from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User


def _load_user():
    """
    Resolve the shopper from the X-User-Id header.

    Authentication happens upstream (gateway/proxy); this service trusts the
    asserted id but still requires the user to exist and be active.
    """
    raw = (request.headers.get("X-User-Id") or "").strip()
    if not raw:
        return None
    try:
        user_id = int(raw)
    except ValueError:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def load_current_user(f):
    """
    Optional identity: sets g.current_user (None for guests) and g.cart_token.

    A header naming an unknown or inactive user is rejected rather than
    silently downgraded to guest checkout.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = _load_user()
        if g.current_user is None and request.headers.get("X-User-Id"):
            return jsonify({"error": "Unknown or inactive user"}), 401
        g.cart_token = (request.headers.get("X-Cart-Token") or "").strip() or None
        return f(*args, **kwargs)

    return decorated_function


def require_user(f):
    """Require a known, active user (X-User-Id)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _load_user()
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the admin bearer token (ADMIN_API_TOKEN).

    SECURITY: An unset token disables admin endpoints entirely.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_TOKEN") or ""
        auth_header = request.headers.get("Authorization") or ""

        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        if not expected or not hmac.compare_digest(token, expected):
            current_app.logger.warning("Rejected admin request to %s from %s", request.path, request.remote_addr)
            return jsonify({"error": "Permission denied"}), 403

        return f(*args, **kwargs)

    return decorated_function
