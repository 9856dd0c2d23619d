# backend/settlement/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///settlement.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Operating calendar
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Seoul")
    BUSINESS_CUTOFF_HOUR = int(os.environ.get("BUSINESS_CUTOFF_HOUR", "15"))
    # {year: ["YYYY-MM-DD", ...]} merged into the lunar holiday table at startup
    EXTRA_HOLIDAYS: dict = {}

    # Stock status: 1..LOW_STOCK_THRESHOLD is "low"
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    # None -> SystemClock. Tests install a FixedClock.
    CLOCK = None

    # Total attempts for ledger writes; 2 means one transparent retry.
    TRANSIENT_RETRY_ATTEMPTS = 2
