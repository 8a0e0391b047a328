# backend/tvanamm/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs the cart cookie)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tvanamm.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    CORS_ALLOWED_ORIGINS = (
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
    )

    # Pricing
    DEFAULT_GST_RATE_BPS = 1800  # 18%

    # Loyalty: 1 point = 1 rupee of discount
    LOYALTY_REDEMPTION_CAP_PERCENT = 30
    LOYALTY_EARN_POINTS = 20
    LOYALTY_EARN_THRESHOLD_RUPEES = 5000
    # (tier, minimum lifetime points earned), highest first
    LOYALTY_TIERS = (
        ("gold", 2000),
        ("silver", 500),
        ("bronze", 0),
    )

    CART_TTL_HOURS = 24
    STALE_ORDER_HOURS = int(os.environ.get("STALE_ORDER_HOURS", "72"))

    INVOICE_DUE_DAYS = 7
    INVOICE_EXPIRY_DAYS = 30

    COMPANY_NAME = "T VANAMM"
    COMPANY_TAGLINE = "PURITY OF TASTE"
    COMPANY_SUBTITLE = "A UNIT OF JKSH PVT LTD"
    COMPANY_GSTIN = os.environ.get("COMPANY_GSTIN", "36AGXXXXXXXXXZR")
    COMPANY_EMAIL = "tvanamm@gmail.com"
    COMPANY_PHONES = ("+91 93906 58544", "+91 90000 08479")
