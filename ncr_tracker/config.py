"""
NCR Tracker configuration classes.

``create_app(name)`` loads ``config[name]``; ``name`` defaults to the
APP_ENV environment variable, then "development".

Environment variables:
    DATABASE_URL          SQLAlchemy URL (``postgres://`` accepted)
    SECRET_KEY            Flask secret; required in production
    JWT_SECRET_KEY        token signing key, falls back to SECRET_KEY
    JWT_ACCESS_EXPIRES    access token lifetime in seconds
    CORS_ORIGINS          comma separated origins, ``*`` for any
    RATELIMIT_STORAGE_URI Flask-Limiter backend
    LOG_LEVEL             see middleware/logging_config.py
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'ncr_tracker_dev.db')}"


def _database_url(default=None):
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    # SQLAlchemy 2.x only knows the postgresql:// scheme
    return raw.replace("postgres://", "postgresql://", 1)


def _origins(raw: str) -> list[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))

    CORS_ORIGINS = _origins(os.getenv("CORS_ORIGINS", "*"))

    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_ENABLED = True

    # NCR bodies and comments are small JSON documents
    MAX_CONTENT_LENGTH = 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Requires DATABASE_URL and SECRET_KEY; instantiate to validate."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = _origins(os.getenv("CORS_ORIGINS", ""))
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
