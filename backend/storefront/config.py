# backend/storefront/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Epoint gateway credentials and endpoint
    EPOINT_PUBLIC_KEY = os.environ.get("EPOINT_PUBLIC_KEY", "")
    EPOINT_PRIVATE_KEY = os.environ.get("EPOINT_PRIVATE_KEY", "")
    EPOINT_BASE_URL = os.environ.get("EPOINT_BASE_URL", "https://epoint.az")
    EPOINT_CURRENCY = os.environ.get("EPOINT_CURRENCY", "AZN")
    EPOINT_LANGUAGE = os.environ.get("EPOINT_LANGUAGE", "az")
    EPOINT_TIMEOUT_SECONDS = float(os.environ.get("EPOINT_TIMEOUT_SECONDS", "15"))

    # Where the gateway sends the browser back to (this service),
    # and where this service finally sends the browser (the shop frontend)
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000")
    FRONTEND_BASE_URL = os.environ.get("FRONTEND_BASE_URL", "http://localhost:5173")

    RESERVATION_TTL_MINUTES = int(os.environ.get("RESERVATION_TTL_MINUTES", "30"))

    # Redirect endpoints ask the gateway for the real outcome when the callback is late
    PAYMENT_REDIRECT_RECONCILE = os.environ.get("PAYMENT_REDIRECT_RECONCILE", "true").lower() == "true"

    # Bearer token for admin endpoints (empty disables them)
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN", "")
