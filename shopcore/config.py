# shopcore/config.py
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value.isdigit() else default


class Config:
    """Configuration settings for the checkout service"""

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = _env_int("DB_POOL_MIN_SIZE", 2)
    DB_POOL_MAX_SIZE: int = _env_int("DB_POOL_MAX_SIZE", 10)

    # Payment settings
    CURRENCY: str = os.getenv("CURRENCY", "SGD").strip().upper()
    HTTP_TIMEOUT_SECONDS: int = _env_int("HTTP_TIMEOUT_SECONDS", 7)
    PAYMENT_INTENT_TTL_MINUTES: int = _env_int("PAYMENT_INTENT_TTL_MINUTES", 20)

    PAYPAL_CLIENT_ID: str = os.getenv("PAYPAL_CLIENT_ID", "").strip()
    PAYPAL_CLIENT_SECRET: str = os.getenv("PAYPAL_CLIENT_SECRET", "").strip()
    PAYPAL_ENVIRONMENT: str = os.getenv("PAYPAL_ENVIRONMENT", "sandbox").strip().lower()
    PAYPAL_API: str = os.getenv("PAYPAL_API", "").strip() or (
        "https://api-m.paypal.com"
        if PAYPAL_ENVIRONMENT in ("live", "prod", "production")
        else "https://api-m.sandbox.paypal.com"
    )

    NETS_API_KEY: str = os.getenv("NETS_API_KEY", os.getenv("API_KEY", "")).strip()
    NETS_PROJECT_ID: str = os.getenv("NETS_PROJECT_ID", os.getenv("PROJECT_ID", "")).strip()
    NETS_TXN_ID: str = os.getenv(
        "NETS_TXN_ID", "sandbox_nets|m|8ff8e5b6-d43e-4786-8ac5-7accf8c5bd9b"
    )
    NETS_API_BASE: str = os.getenv(
        "NETS_API_BASE", "https://sandbox.nets.openapipaas.com/api/v1/common/payments"
    ).rstrip("/")
    NETS_COURSE_INIT_ID: str = os.getenv("NETS_COURSE_INIT_ID", "")
    NETS_SUCCESS_WINDOW_SECONDS: int = _env_int("NETS_SUCCESS_WINDOW_SECONDS", 20)

    # Outbox worker settings
    OUTBOX_POLL_SECONDS: int = _env_int("OUTBOX_POLL_SECONDS", 15)
    OUTBOX_MAX_ATTEMPTS: int = _env_int("OUTBOX_MAX_ATTEMPTS", 5)
    OUTBOX_BATCH_SIZE: int = _env_int("OUTBOX_BATCH_SIZE", 20)

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Asia/Singapore")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Paths
    LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))

    @classmethod
    def validate(cls):
        """Fail fast on settings the service cannot start without"""
        if not cls.DATABASE_URL:
            raise ValueError("No DATABASE_URL set in environment")


def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = Config.LOG_DIR / "shopcore.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
