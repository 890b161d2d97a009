# backend/tillpoint/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in the working directory unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tillpoint.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    STORE_NAME = os.environ.get("STORE_NAME", "Tillpoint Retail")

    # Invoice numbers look like INV-1000, INV-1001, ...
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    INVOICE_START_NUMBER = int(os.environ.get("INVOICE_START_NUMBER", "1000"))

    # Prices are VAT-inclusive; 500 bps == 5%
    VAT_RATE_BPS = int(os.environ.get("VAT_RATE_BPS", "500"))
    CURRENCY_CODE = os.environ.get("CURRENCY_CODE", "AED")
    CURRENCY_WORD = os.environ.get("CURRENCY_WORD", "Dirhams")
    CURRENCY_SUBUNIT_WORD = os.environ.get("CURRENCY_SUBUNIT_WORD", "Fils")

    UNDO_WINDOW_DAYS = int(os.environ.get("UNDO_WINDOW_DAYS", "30"))
    LEGACY_GROUP_WINDOW_SECONDS = 300

    # Reports without start/end/month cover this many trailing days
    REPORT_DEFAULT_DAYS = int(os.environ.get("REPORT_DEFAULT_DAYS", "30"))

    # None -> <instance_path>/undo_log_fallback.jsonl
    UNDO_LOG_FALLBACK_PATH = os.environ.get("UNDO_LOG_FALLBACK_PATH")

    DEFAULT_ACTOR = os.environ.get("DEFAULT_ACTOR", "System Admin")

    # Printed in the seller block of the invoice
    STORE_ADDRESS = os.environ.get("STORE_ADDRESS", "")
    STORE_TRN = os.environ.get("STORE_TRN", "")
