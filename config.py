"""Configuration management for the Escrow Ledger and Release Scheduler"""

import os
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)


def _decimal_env(name: str, default: str) -> Decimal:
    """Read a Decimal from the environment, falling back to the default on bad input"""
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except (InvalidOperation, TypeError):
        logger.error(f"❌ Invalid decimal for {name}: {raw!r} - using default {default}")
        return Decimal(default)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.error(f"❌ Invalid integer for {name}: {raw!r} - using default {default}")
        return default


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./escrow_ledger.db")
    DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"
    DATABASE_POOL_SIZE = _int_env("DATABASE_POOL_SIZE", 7)
    DATABASE_MAX_OVERFLOW = _int_env("DATABASE_MAX_OVERFLOW", 15)
    # SQLite busy timeout; concurrent writers wait this long for the write lock
    SQLITE_BUSY_TIMEOUT_SECONDS = _int_env("SQLITE_BUSY_TIMEOUT_SECONDS", 30)

    # Escrow holding rules
    ESCROW_HOLD_DAYS = _int_env("ESCROW_HOLD_DAYS", 5)
    ESCROW_MAX_RETRY_ATTEMPTS = _int_env("ESCROW_MAX_RETRY_ATTEMPTS", 3)
    ESCROW_MAX_AMOUNT = _decimal_env("ESCROW_MAX_AMOUNT", "10000")
    ESCROW_CURRENCY = os.getenv("ESCROW_CURRENCY", "usd").lower()
    PAYMENT_TRACKING_VERSION = os.getenv("PAYMENT_TRACKING_VERSION", "1.0")

    # Release sweep job
    RELEASE_SWEEP_ENABLED = os.getenv("RELEASE_SWEEP_ENABLED", "true").lower() == "true"
    RELEASE_SWEEP_INTERVAL_MINUTES = _int_env("RELEASE_SWEEP_INTERVAL_MINUTES", 60)
    RELEASE_SWEEP_MAX_CONCURRENCY = _int_env("RELEASE_SWEEP_MAX_CONCURRENCY", 10)
    RELEASE_SWEEP_MISFIRE_GRACE_SECONDS = _int_env("RELEASE_SWEEP_MISFIRE_GRACE_SECONDS", 300)

    # Payment gateway
    PAYMENT_GATEWAY_BASE_URL = os.getenv("PAYMENT_GATEWAY_BASE_URL", "")
    PAYMENT_GATEWAY_API_KEY = os.getenv("PAYMENT_GATEWAY_API_KEY")
    PAYMENT_GATEWAY_TIMEOUT_SECONDS = _int_env("PAYMENT_GATEWAY_TIMEOUT_SECONDS", 30)

    @staticmethod
    def log_escrow_configuration():
        """Log current escrow configuration for debugging"""
        logger.info("🔧 Escrow Ledger Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Hold Days: {Config.ESCROW_HOLD_DAYS}")
        logger.info(f"   Max Retry Attempts: {Config.ESCROW_MAX_RETRY_ATTEMPTS}")
        logger.info(f"   Max Amount: {Config.ESCROW_MAX_AMOUNT} {Config.ESCROW_CURRENCY.upper()}")
        logger.info(
            f"   Release Sweep: {'enabled' if Config.RELEASE_SWEEP_ENABLED else 'disabled'} "
            f"every {Config.RELEASE_SWEEP_INTERVAL_MINUTES} min "
            f"(max concurrency {Config.RELEASE_SWEEP_MAX_CONCURRENCY})"
        )
        # Never log credentials, only whether they are present
        gateway_state = "✅ Set" if Config.PAYMENT_GATEWAY_API_KEY else "❌ Not set"
        logger.info(f"   Payment Gateway: {Config.PAYMENT_GATEWAY_BASE_URL or 'NOT CONFIGURED'} (API key {gateway_state})")

    @staticmethod
    def validate_escrow_configuration():
        """Validate escrow tunables and raise ValueError with every problem found"""
        problems = []
        if Config.ESCROW_HOLD_DAYS < 0:
            problems.append(f"ESCROW_HOLD_DAYS must be >= 0 (got {Config.ESCROW_HOLD_DAYS})")
        if Config.ESCROW_MAX_RETRY_ATTEMPTS < 1:
            problems.append(
                f"ESCROW_MAX_RETRY_ATTEMPTS must be >= 1 (got {Config.ESCROW_MAX_RETRY_ATTEMPTS})"
            )
        if Config.ESCROW_MAX_AMOUNT <= 0:
            problems.append(f"ESCROW_MAX_AMOUNT must be positive (got {Config.ESCROW_MAX_AMOUNT})")
        if Config.RELEASE_SWEEP_INTERVAL_MINUTES < 1:
            problems.append("RELEASE_SWEEP_INTERVAL_MINUTES must be >= 1")
        if Config.RELEASE_SWEEP_MAX_CONCURRENCY < 1:
            problems.append("RELEASE_SWEEP_MAX_CONCURRENCY must be >= 1")
        if Config.IS_PRODUCTION and not Config.PAYMENT_GATEWAY_API_KEY:
            problems.append("PAYMENT_GATEWAY_API_KEY is required in production")

        if problems:
            for problem in problems:
                logger.critical(f"🚨 CONFIG_ERROR: {problem}")
            raise ValueError("Invalid escrow configuration: " + "; ".join(problems))
        return True


@dataclass(frozen=True)
class EscrowSettings:
    """Tunables handed to the ledger and the release scheduler at construction"""

    hold_days: int = 5
    max_retry_attempts: int = 3
    max_amount: Decimal = Decimal("10000")
    currency: str = "usd"
    tracking_version: str = "1.0"
    sweep_max_concurrency: int = 10

    @classmethod
    def from_config(cls) -> "EscrowSettings":
        return cls(
            hold_days=Config.ESCROW_HOLD_DAYS,
            max_retry_attempts=Config.ESCROW_MAX_RETRY_ATTEMPTS,
            max_amount=Config.ESCROW_MAX_AMOUNT,
            currency=Config.ESCROW_CURRENCY,
            tracking_version=Config.PAYMENT_TRACKING_VERSION,
            sweep_max_concurrency=Config.RELEASE_SWEEP_MAX_CONCURRENCY,
        )
