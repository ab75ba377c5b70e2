"""
Application Configuration, Plans & Scan Universe
Environment-driven settings plus the static tier tables
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List
from functools import lru_cache
import logging
import os
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env only in development (hosting platforms inject real env vars)
if os.getenv("RENDER") != "true":
    BASE_DIR = Path(__file__).resolve().parent
    ENV_FILE = BASE_DIR / ".env"
    if ENV_FILE.exists():
        load_dotenv(ENV_FILE, override=True)
        logger.info(f"[CONFIG] Loaded .env from: {ENV_FILE}")


class Settings(BaseSettings):
    """Application settings with explicit defaults"""

    # Environment
    DEBUG: bool = Field(default=False, validation_alias="DEBUG")
    API_URL: str = Field(default="http://localhost:8000", validation_alias="API_URL")
    FRONTEND_URL: str = Field(default="http://localhost:3000", validation_alias="FRONTEND_URL")

    # MongoDB
    MONGODB_URI: str = Field(default="mongodb://localhost:27017", validation_alias="MONGODB_URI")
    DATABASE_NAME: str = Field(default="signaldesk", validation_alias="DATABASE_NAME")

    # Sessions
    JWT_SECRET_KEY: str = Field(default="your-secret-key-change-this", validation_alias="JWT_SECRET_KEY")
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    AUTH_COOKIE_NAME: str = Field(default="sd_access_token", validation_alias="AUTH_COOKIE_NAME")

    # Paystack
    PAYSTACK_SECRET_KEY: str = Field(default="", validation_alias="PAYSTACK_SECRET_KEY")
    PAYSTACK_WEBHOOK_SECRET: str = Field(default="", validation_alias="PAYSTACK_WEBHOOK_SECRET")
    PAYSTACK_BASE_URL: str = Field(default="https://api.paystack.co", validation_alias="PAYSTACK_BASE_URL")
    PAYMENT_CURRENCY: str = "ZAR"

    # Chart analysis provider (OpenRouter chat completions)
    OPENROUTER_API_KEY: str = Field(default="", validation_alias="OPENROUTER_API_KEY")
    ANALYSIS_PROVIDER_URL: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        validation_alias="ANALYSIS_PROVIDER_URL"
    )
    ANALYSIS_MODEL: str = Field(default="anthropic/claude-sonnet-4", validation_alias="ANALYSIS_MODEL")

    # Out-of-process trade bridge
    TRADE_BRIDGE_URL: str = Field(default="", validation_alias="TRADE_BRIDGE_URL")
    TRADE_BRIDGE_TOKEN: str = Field(default="", validation_alias="TRADE_BRIDGE_TOKEN")
    TRADE_BRIDGE_TIMEOUT_SECONDS: float = 45.0

    # Ceilings & intervals
    SCAN_TIMEOUT_SECONDS: float = 60.0
    BATCH_SCAN_TIMEOUT_SECONDS: float = 300.0
    STATS_CACHE_TTL_SECONDS: int = Field(default=60, validation_alias="STATS_CACHE_TTL_SECONDS")
    PAYMENT_SWEEP_INTERVAL_MINUTES: int = 10
    PAYMENT_MIN_AGE_SECONDS: int = 120
    SCHEDULER_ENABLED: bool = Field(default=True, validation_alias="SCHEDULER_ENABLED")

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.DEBUG:
            return ["*"]
        origins = [self.FRONTEND_URL]
        if self.API_URL:
            origins.append(self.API_URL)
        return origins

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True
        extra = "ignore"


# Subscription tiers. -1 means unlimited.
PLANS = {
    "free": {
        "name": "Free",
        "daily_scans": 1,
        "monthly_scans": 5,
        "monthly_price": 0,
        "yearly_price": 0,
        "topup_credits": 0,
        "features": [
            "1 AI chart scan per day",
            "Trend & structure analysis",
        ],
    },
    "basic": {
        "name": "Basic",
        "daily_scans": 5,
        "monthly_scans": 150,
        "monthly_price": 79,
        "yearly_price": 749,
        "topup_credits": 0,
        "features": [
            "5 AI chart scans per day",
            "Entry, SL, TP & R:R on every scan",
            "S/R levels + order blocks",
        ],
    },
    "starter": {
        "name": "Starter",
        "daily_scans": 15,
        "monthly_scans": 450,
        "monthly_price": 199,
        "yearly_price": 1899,
        "topup_credits": 5,
        "features": [
            "15 AI chart scans per day",
            "AI reasoning on each scan",
            "5 bonus top-up credits",
        ],
    },
    "pro": {
        "name": "Pro",
        "daily_scans": 50,
        "monthly_scans": 1500,
        "monthly_price": 349,
        "yearly_price": 3349,
        "topup_credits": 12,
        "features": [
            "50 AI chart scans per day",
            "Full market scan",
            "Full smart money (OBs, FVGs, liquidity)",
            "12 bonus top-up credits",
        ],
    },
    "unlimited": {
        "name": "Unlimited",
        "daily_scans": -1,
        "monthly_scans": -1,
        "monthly_price": 499,
        "yearly_price": 4799,
        "topup_credits": 0,
        "features": [
            "Unlimited AI chart scans",
            "Full market scan",
            "Everything included, no limits",
        ],
    },
}

TIER_ORDER = {"free": 0, "basic": 1, "starter": 2, "pro": 3, "unlimited": 4}

FULL_SCAN_MIN_TIER = "pro"

CREDIT_PACKS = {
    "pack_5": {"credits": 5, "price_cents": 4900},
    "pack_12": {"credits": 12, "price_cents": 9900},
    "pack_30": {"credits": 30, "price_cents": 19900},
}

BILLING_PERIOD_MONTHS = {"monthly": 1, "yearly": 12}

# Tracked universe for the full market scan
SCAN_PAIRS = [
    {"symbol": "OANDA:EUR_USD", "display": "EUR/USD"},
    {"symbol": "OANDA:GBP_USD", "display": "GBP/USD"},
    {"symbol": "OANDA:USD_JPY", "display": "USD/JPY"},
    {"symbol": "OANDA:AUD_USD", "display": "AUD/USD"},
    {"symbol": "OANDA:USD_CAD", "display": "USD/CAD"},
    {"symbol": "OANDA:NZD_USD", "display": "NZD/USD"},
    {"symbol": "OANDA:EUR_JPY", "display": "EUR/JPY"},
    {"symbol": "OANDA:GBP_JPY", "display": "GBP/JPY"},
    {"symbol": "OANDA:EUR_GBP", "display": "EUR/GBP"},
    {"symbol": "OANDA:USD_CHF", "display": "USD/CHF"},
    {"symbol": "OANDA:USD_ZAR", "display": "USD/ZAR"},
    {"symbol": "OANDA:GBP_AUD", "display": "GBP/AUD"},
]

SCAN_TIMEFRAMES = ("1h", "4h")


def get_plan(plan_id: str) -> dict:
    """Plan definition, falling back to free for unknown ids"""
    return PLANS.get(plan_id or "free", PLANS["free"])


def tier_at_least(plan_id: str, required: str) -> bool:
    return TIER_ORDER.get(plan_id, 0) >= TIER_ORDER.get(required, 0)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()


def validate_settings():
    """Log critical settings that are missing or left at defaults"""
    errors = []

    if not settings.JWT_SECRET_KEY or settings.JWT_SECRET_KEY == "your-secret-key-change-this":
        errors.append("JWT_SECRET_KEY is not set or using default")
    if not settings.OPENROUTER_API_KEY:
        errors.append("OPENROUTER_API_KEY is not set")
    if not settings.PAYSTACK_SECRET_KEY:
        errors.append("PAYSTACK_SECRET_KEY is not set")

    for error in errors:
        logger.warning(f"[CONFIG] {error}")

    return len(errors) == 0


# Auto-validate on import (only in non-test environments)
if __name__ != "__main__" and os.getenv("PYTEST_CURRENT_TEST") is None:
    validate_settings()
