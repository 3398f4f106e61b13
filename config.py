"""Configuration management for the Pocket Bounty backend"""

import os
import logging
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower().strip() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Environment detection: ENVIRONMENT wins, then deployment heuristics
    ENVIRONMENT = os.getenv("ENVIRONMENT", "").lower().strip()
    if ENVIRONMENT:
        IS_PRODUCTION = ENVIRONMENT == "production"
    else:
        IS_PRODUCTION = (
            os.getenv("REPLIT_DEPLOYMENT") == "1"
            or bool(os.getenv("RAILWAY_PUBLIC_DOMAIN"))
        )
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./pocket_bounty.db")
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "7"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "15"))

    # Public URL used to build referral share links
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000").rstrip("/")
    # Browser origins allowed to call the API; defaults to the public site
    CORS_ORIGINS = _env_list("CORS_ORIGINS") or [PUBLIC_BASE_URL]

    # Platform fee applied to completions, expiry refunds and deposits
    PLATFORM_FEE_PERCENTAGE = Decimal(os.getenv("PLATFORM_FEE_PERCENTAGE", "5.0"))

    # Bounty rules
    MIN_BOUNTY_REWARD = Decimal(os.getenv("MIN_BOUNTY_REWARD", "1.00"))
    MAX_BOUNTY_REWARD = Decimal(os.getenv("MAX_BOUNTY_REWARD", "10000.00"))
    BOUNTY_POSTING_POINTS_COST = int(os.getenv("BOUNTY_POSTING_POINTS_COST", "5"))
    BOUNTY_EXPIRY_DAYS = int(os.getenv("BOUNTY_EXPIRY_DAYS", "3"))
    BOUNTY_EXPIRY_SWEEP_MINUTES = int(os.getenv("BOUNTY_EXPIRY_SWEEP_MINUTES", "5"))
    BOUNTY_EXPIRY_BATCH_SIZE = int(os.getenv("BOUNTY_EXPIRY_BATCH_SIZE", "100"))
    # Legacy behaviour: also sweep when the public bounty list is requested
    EXPIRY_SWEEP_ON_LIST = _env_bool("EXPIRY_SWEEP_ON_LIST", "false")
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "true")

    # Wallet rules
    MIN_WITHDRAWAL_AMOUNT = Decimal(os.getenv("MIN_WITHDRAWAL_AMOUNT", "5.00"))
    MAX_WITHDRAWAL_AMOUNT = Decimal(os.getenv("MAX_WITHDRAWAL_AMOUNT", "50000.00"))
    INSTANT_TRANSFER_FEE_PERCENTAGE = Decimal(os.getenv("INSTANT_TRANSFER_FEE_PERCENTAGE", "1.5"))
    INSTANT_TRANSFER_MIN_FEE = Decimal(os.getenv("INSTANT_TRANSFER_MIN_FEE", "0.25"))
    MAX_DEPOSIT_AMOUNT = Decimal(os.getenv("MAX_DEPOSIT_AMOUNT", "10000.00"))
    TEST_DEPOSIT_MAX_AMOUNT = Decimal(os.getenv("TEST_DEPOSIT_MAX_AMOUNT", "1000.00"))
    TEST_DEPOSIT_ENABLED = _env_bool("TEST_DEPOSIT_ENABLED", "false" if IS_PRODUCTION else "true")
    # Pending withdrawals older than this are checked against the provider
    WITHDRAWAL_RECONCILE_MINUTES = int(os.getenv("WITHDRAWAL_RECONCILE_MINUTES", "10"))

    # Mini-game points
    MAX_GAME_POINTS_AWARD = int(os.getenv("MAX_GAME_POINTS_AWARD", "100"))

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

    # Authentication (tokens issued by the external identity provider)
    AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "dev-secret-change-me")
    AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
    OIDC_JWKS_URL = os.getenv("OIDC_JWKS_URL")
    OIDC_ISSUER = os.getenv("OIDC_ISSUER")
    OIDC_AUDIENCE = os.getenv("OIDC_AUDIENCE")

    # Creator dashboard access
    CREATOR_USER_IDS = _env_list("CREATOR_USER_IDS")

    # Rate limiting (requests per window)
    RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", "true")
    RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    API_RATE_LIMIT = int(os.getenv("API_RATE_LIMIT", "100"))
    PAYMENT_RATE_LIMIT = int(os.getenv("PAYMENT_RATE_LIMIT", "10"))

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Pocket Bounty Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Platform fee: {Config.PLATFORM_FEE_PERCENTAGE}%")
        logger.info(f"   Bounty expiry: {Config.BOUNTY_EXPIRY_DAYS} days "
                    f"(sweep every {Config.BOUNTY_EXPIRY_SWEEP_MINUTES} min)")
        logger.info(f"   Stripe configured: {bool(Config.STRIPE_SECRET_KEY)}")
        logger.info(f"   Test deposits: {'ENABLED' if Config.TEST_DEPOSIT_ENABLED else 'disabled'}")

    @staticmethod
    def validate_fee_configuration():
        """Validate fee percentages are usable"""
        if not (Decimal("0") <= Config.PLATFORM_FEE_PERCENTAGE < Decimal("100")):
            raise ValueError(
                f"PLATFORM_FEE_PERCENTAGE must be in [0, 100), got {Config.PLATFORM_FEE_PERCENTAGE}"
            )
        if Config.INSTANT_TRANSFER_FEE_PERCENTAGE < 0 or Config.INSTANT_TRANSFER_MIN_FEE < 0:
            raise ValueError("Instant transfer fee settings must not be negative")
        if Config.MIN_BOUNTY_REWARD <= 0 or Config.MIN_WITHDRAWAL_AMOUNT <= 0:
            raise ValueError("Minimum reward and withdrawal amounts must be positive")

    @staticmethod
    def validate_production_config():
        """Warn about settings that are unsafe outside development"""
        if not Config.IS_PRODUCTION:
            return
        if Config.AUTH_JWT_SECRET == "dev-secret-change-me" and not Config.OIDC_JWKS_URL:
            logger.critical("❌ Production without OIDC_JWKS_URL or AUTH_JWT_SECRET - tokens are forgeable!")
            raise ValueError("Authentication is not configured for production")
        if Config.DATABASE_URL.startswith("sqlite"):
            logger.warning("⚠️ Production environment is running on SQLite")
        if not Config.STRIPE_SECRET_KEY:
            logger.warning("⚠️ STRIPE_SECRET_KEY not set - payment routes will return 503")
        if Config.TEST_DEPOSIT_ENABLED:
            logger.warning("⚠️ TEST_DEPOSIT_ENABLED in production - free funds endpoint is live")
