import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Force-load .env from the project root (reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class Settings(BaseModel):
    database_url: str = "sqlite:///./payments.db"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    jwt_secret: Optional[str] = None

    # Holds older than this are canceled by the sweeper
    authorization_timeout_seconds: float = 2 * 60 * 60
    sweep_interval_seconds: float = 30 * 60
    sweep_startup_delay_seconds: float = 10

    checkout_amount_cents: int = 499
    checkout_currency: str = "usd"
    checkout_product_name: str = "Photo Animation"
    public_base_url: str = "http://localhost:8000"

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "database_url": os.getenv("DATABASE_URL"),
            "stripe_secret_key": os.getenv("STRIPE_SECRET_KEY"),
            "stripe_webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "authorization_timeout_seconds": os.getenv("AUTHORIZATION_TIMEOUT_SECONDS"),
            "sweep_interval_seconds": os.getenv("SWEEP_INTERVAL_SECONDS"),
            "sweep_startup_delay_seconds": os.getenv("SWEEP_STARTUP_DELAY_SECONDS"),
            "checkout_amount_cents": os.getenv("CHECKOUT_AMOUNT_CENTS"),
            "checkout_currency": os.getenv("CHECKOUT_CURRENCY"),
            "checkout_product_name": os.getenv("CHECKOUT_PRODUCT_NAME"),
            "public_base_url": os.getenv("PUBLIC_BASE_URL"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        # Unset variables fall back to the field defaults
        return cls(**{key: value for key, value in env.items() if value})
