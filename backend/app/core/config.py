"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import List, Optional
import os
from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

DB_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./referrals.db")


class Settings(BaseSettings):
    """Application settings"""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # API
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Referral Cashback"
    VERSION: str = "1.0.0"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database
    DATABASE_URL: str = DB_URL
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Shopify Admin API
    SHOPIFY_STORE_DOMAIN: Optional[str] = None
    SHOPIFY_ADMIN_ACCESS_TOKEN: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2025-01"
    SHOPIFY_HTTP_TIMEOUT_SECONDS: float = 15.0
    SHOPIFY_REFUND_GATEWAY: str = "store-credit"  # used when an order exposes no capturable transaction

    # Referral program
    DEFAULT_CURRENCY: str = "EUR"
    CODE_GENERATION_MAX_ATTEMPTS: int = 5
    CODE_ISSUANCE_POLICY: str = "reuse"  # reuse | per_purchase
    REFUND_MAX_ATTEMPTS: int = 3
    REFUND_RETRY_DELAY_SECONDS: float = 2.0  # linear: 2s, 4s, ...
    REFUND_REQUIRE_ORDER_TOTAL: bool = False
    SETTLEMENT_LOCK_TTL_SECONDS: int = 300

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM_EMAIL: str = "onboarding@resend.dev"
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_LOGO_URL: Optional[str] = None
    EMAIL_LOGO_ALT: Optional[str] = None
    SHOP_URL: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"  # json | console

    # Tracing
    TRACING_ENABLED: bool = False
    OTLP_ENDPOINT: str = "localhost:4317"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
