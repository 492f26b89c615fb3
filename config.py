"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE_URL", str(BASE_DIR / "classroom.db"))
    JSON_SORT_KEYS = False

    # Bearer tokens
    JWT_SECRET = os.environ.get("JWT_SECRET", "dev-jwt-secret-change-in-production")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRES_HOURS = int(os.environ.get("JWT_EXPIRES_HOURS", "24"))

    # Upload limits (submission text, listing descriptions)
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Redis (analytics cache, rate limiter storage)
    REDIS_URL = os.environ.get("REDIS_URL", "")
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"

    # Time tracking
    MAX_DAILY_HOURS = int(os.environ.get("MAX_DAILY_HOURS", "8"))
    MIN_SESSION_MINUTES = 5
    HEARTBEAT_TIMEOUT_MINUTES = 5
    MAX_IDLE_MINUTES = 15
    MINUTES_PER_TOKEN = int(os.environ.get("MINUTES_PER_TOKEN", "15"))

    # Token economy
    TOKEN_MILESTONES = [50, 100, 250, 500, 1000]

    # Analytics
    ANALYTICS_CACHE_TTL = 300

    # Background jobs
    ENABLE_SCHEDULER = os.environ.get("ENABLE_SCHEDULER", "1") == "1"
    SCHEDULER_TIMEZONE = os.environ.get("SCHEDULER_TIMEZONE", "")  # empty: local time


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")
        if cls.JWT_SECRET in ("dev-jwt-secret-change-in-production", ""):
            errors.append("JWT_SECRET must be set to a secure value in production.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    ENABLE_SCHEDULER = False
    RATELIMIT_ENABLED = False


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
