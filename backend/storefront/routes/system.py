# backend/storefront/routes/system.py
"""
System health and version endpoints.

Health covers the database, the settlement backlog (open reservations and
reservations past expiry waiting for the sweep) and gateway credentials.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Reservation, Payment
from ..models.payments import PAYMENT_STATUS_INITIATED, PAYMENT_STATUS_PENDING
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def _timed(label: str, probe) -> dict:
    """
    Run one probe and wrap its result with status and latency.

    A probe returns its details dict, or (details, warning) when the
    component works but needs attention.
    """
    start_time = time.time()
    try:
        outcome = probe()
    except Exception:
        current_app.logger.exception("%s health check failed", label)
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": f"{label} error",
        }

    details, warning = outcome if isinstance(outcome, tuple) else (outcome, None)
    result = {
        "status": "degraded" if warning else "healthy",
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "details": details,
    }
    if warning:
        result["warning"] = warning
    return result


def _payment_counts() -> dict:
    return {
        "payments": db.session.query(Payment).count(),
        "open_payments": db.session.query(Payment).filter(
            Payment.status.in_([PAYMENT_STATUS_PENDING, PAYMENT_STATUS_INITIATED])
        ).count(),
    }


def _reservation_backlog():
    # `flask reservations sweep` should keep expired_pending_sweep at zero.
    expired = db.session.query(Reservation).filter(Reservation.expires_at < utcnow()).count()
    details = {
        "open_reservations": db.session.query(Reservation).count(),
        "expired_pending_sweep": expired,
    }
    if expired:
        return details, f"{expired} expired reservation(s) awaiting sweep"
    return details


def _gateway_settings():
    config = current_app.config
    details = {"base_url": config.get("EPOINT_BASE_URL")}
    missing = [k for k in ("EPOINT_PUBLIC_KEY", "EPOINT_PRIVATE_KEY") if not config.get(k)]
    if missing:
        return details, f"Missing gateway settings: {', '.join(missing)}"
    return details


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: any check unhealthy
    """
    start_time = time.time()

    checks = {
        "database": _timed("Database", _payment_counts),
        "reservations": _timed("Reservation store", _reservation_backlog),
        "gateway": _timed("Gateway config", _gateway_settings),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info (no keys, credentials or paths)."""
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
