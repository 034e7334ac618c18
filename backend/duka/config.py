# backend/duka/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local embedded store by default; point DATABASE_URL at a remote
    # relational backend (e.g. postgresql://...) to share data between tills.
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///duka.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # 16% VAT expressed in basis points
    VAT_RATE_BPS = int(os.environ.get("VAT_RATE_BPS", "1600"))
    CURRENCY = os.environ.get("CURRENCY", "KES")

    BUSINESS_NAME = os.environ.get("BUSINESS_NAME", "Kajiado Cosmetics")
    BUSINESS_ADDRESS = os.environ.get("BUSINESS_ADDRESS", "Kajiado Town, Kenya")
    BUSINESS_PHONE = os.environ.get("BUSINESS_PHONE", "+254 700 000 000")
    BUSINESS_EMAIL = os.environ.get("BUSINESS_EMAIL", "info@kajiadocosmetics.com")

    # Payment instructions printed on invoices
    MPESA_PAYBILL = os.environ.get("MPESA_PAYBILL", "000000")
    BANK_NAME = os.environ.get("BANK_NAME", "")
    BANK_ACCOUNT = os.environ.get("BANK_ACCOUNT", "")

    # Product CSV import policy
    IMPORT_NUMERIC_MODE = os.environ.get("IMPORT_NUMERIC_MODE", "integer")  # integer | decimal
    IMPORT_UNKNOWN_CATEGORY = os.environ.get("IMPORT_UNKNOWN_CATEGORY", "create")  # create | reject
    IMPORT_REQUIRE_UNIT_SIZE = _env_bool("IMPORT_REQUIRE_UNIT_SIZE", False)
    DEFAULT_REORDER_LEVEL = int(os.environ.get("DEFAULT_REORDER_LEVEL", "10"))

    INVOICE_DEFAULT_TERMS_DAYS = int(os.environ.get("INVOICE_DEFAULT_TERMS_DAYS", "30"))

    # Seeding is never implicit; create_app only runs it when asked to.
    SEED_ON_STARTUP = _env_bool("SEED_ON_STARTUP", False)
    DEFAULT_ADMIN_EMAIL = os.environ.get("DEFAULT_ADMIN_EMAIL", "admin@duka.local")
    DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "Admin123!")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SEED_ON_STARTUP = False
    BCRYPT_ROUNDS = 4
