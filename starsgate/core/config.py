import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"

    # Database (optional; in-memory entitlements when unset)
    DATABASE_URL: Optional[str] = None

    # Telegram payments
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    INIT_DATA_SECRET: Optional[str] = None  # defaults to TELEGRAM_BOT_TOKEN
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = None
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_TIMEOUT_SECONDS: float = 10.0

    # Entitlement price and invoice texts
    ENTITLEMENT_PRICE_STARS: int = 10
    INVOICE_CURRENCY: str = "XTR"
    INVOICE_TITLE: str = "Доступ к генератору описаний"
    INVOICE_DESCRIPTION: str = "Неограниченный доступ к AI-генератору описаний для handmade-изделий"
    INVOICE_LABEL: str = "Доступ к боту"

    # initData freshness window (0 disables the check)
    INIT_DATA_MAX_AGE_SECONDS: int = 86400

    # Identity-only status lookup (GET /payment/status?userId=)
    PUBLIC_STATUS_ENABLED: bool = True

    # Paid-hint cache
    PAID_HINT_TTL_SECONDS: int = 3600
    PAID_HINT_MAX_ENTRIES: int = 10000

    # Operator access for manual confirmation
    ADMIN_KEY: Optional[str] = None

    # Description generation
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "meta-llama/llama-4-scout-17b-16e-instruct"

    # CORS (comma-separated)
    CORS_ORIGINS: str = "*"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def integrity_secret(self) -> Optional[str]:
        """Secret used to verify initData and sign invoice payloads."""
        return self.INIT_DATA_SECRET or self.TELEGRAM_BOT_TOKEN

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()


def validate_config(settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Warn about optional configuration that disables features.

    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("starsgate")

    optional_keys = {
        "TELEGRAM_WEBHOOK_SECRET": "webhook secret header check disabled",
        "GROQ_API_KEY": "description generation unavailable",
        "ADMIN_KEY": "manual payment confirmation disabled",
    }
    for key, effect in optional_keys.items():
        if not getattr(cfg, key, None):
            log.warning(f"{key} not set: {effect}")

    return True
