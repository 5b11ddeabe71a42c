"""
Configuration classes for the workflow engine's Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Workflow constants can be overridden per environment variable, or per
orchestrator through its ``settings`` argument (tests use the latter).
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'scm_workflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(default=None):
    # Heroku-style postgres:// URLs are rejected by SQLAlchemy 2.0
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


def _env_number(name, default, cast=int):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return cast(raw)


class Config:
    """Shared defaults."""

    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Job Orders above this amount must carry insurance (JO-V001)
    JO_INSURANCE_THRESHOLD = _env_number("JO_INSURANCE_THRESHOLD", 7_000_000, float)
    # Stock-verification clock started when an MR is approved
    MR_STOCK_VERIFICATION_HOURS = _env_number("MR_STOCK_VERIFICATION_HOURS", 4)
    # Buyer pickup window after scrap is sold
    SCRAP_PICKUP_DAYS = _env_number("SCRAP_PICKUP_DAYS", 10)
    # Delivery clock started at in_transit; None disables it
    SHIPMENT_DELIVERY_SLA_HOURS = _env_number("SHIPMENT_DELIVERY_SLA_HOURS", None)
    DOCUMENT_NUMBER_PADDING = _env_number("DOCUMENT_NUMBER_PADDING", 4)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SHIPMENT_DELIVERY_SLA_HOURS = 72


class ProductionConfig(Config):
    """PostgreSQL with a bounded pool and a 30s statement timeout."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
