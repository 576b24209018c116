# gympos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in instance/gympos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///gympos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sales tax in basis points (800 = 8%), applied to inventory lines only
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "800"))

    # Allowed deviation between client and catalog unit prices, in cents
    PRICE_TOLERANCE_CENTS = int(os.environ.get("PRICE_TOLERANCE_CENTS", "1"))

    # Used when a checkout body omits payment_method
    DEFAULT_PAYMENT_METHOD = os.environ.get("DEFAULT_PAYMENT_METHOD", "Cash")
    GUEST_MEMBER_REF = "GUEST"
    GUEST_MEMBER_NAME = "Guest Customer"
