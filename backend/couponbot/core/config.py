"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Coupon Negotiator"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/couponbot.db"
    COUPONS_DIR: str = "./data/coupons"

    # Operator (the human behind both checkpoints)
    OPERATOR_ID: str = "operator"

    # Negotiation terms
    FIXED_PRICE: int = 70

    # Human confirmation checkpoints
    PURCHASE_ESCALATION_SECONDS: float = 25.0  # out-of-band alert if still undecided
    PURCHASE_CONFIRMATION_TIMEOUT_SECONDS: float = 120.0
    PAYMENT_CONFIRMATION_TIMEOUT_SECONDS: float = 600.0

    # Deliverable follow-ups
    FOLLOW_UP_INTERVAL_SECONDS: float = 30.0
    MAX_FOLLOW_UPS: int = 8

    # Resumption and duplicate detection
    INACTIVITY_TIMEOUT_MINUTES: int = 10
    RECENT_CONVERSATION_WINDOW_MINUTES: int = 10

    # Presentation
    MAX_HISTORY_MESSAGES: int = 50
    VISIBILITY_WINDOW_SECONDS: int = 15

    # Classification thresholds
    WITHDRAWAL_CONFIDENCE_THRESHOLD: float = 0.5
    ATTACHMENT_SCAN_LIMIT: int = 50

    # Outbound send retries
    SEND_MAX_RETRIES: int = 3
    SEND_RETRY_DELAY: float = 1.0  # seconds, base for exponential backoff

    # Counterparties exempt from inactivity expiry and daily blocking
    EXEMPT_COUNTERPARTIES: str = ""

    # Daily eligibility cutoffs (HH:MM, local time); empty disables
    LUNCH_CUTOFF: str = "14:10"
    DINNER_CUTOFF: str = "21:10"

    # NLU backend selection
    LLM_PROVIDER: Literal["keyword", "lm_studio"] = "keyword"

    # LM Studio Configuration
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_DEFAULT_MODEL: str = "qwen/qwen3-1.7b"
    LM_STUDIO_TIMEOUT: int = 30  # seconds

    # LLM Request Configuration
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: int = 2  # seconds, base for exponential backoff
    LLM_DEFAULT_TEMPERATURE: float = 0.0
    LLM_DEFAULT_MAX_TOKENS: int = 256

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    @field_validator("CORS_ORIGINS", "EXEMPT_COUNTERPARTIES", mode="before")
    @classmethod
    def join_list_values(cls, v):
        """Accept comma-separated strings or lists for list-like fields."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def get_exempt_counterparties(self) -> set[str]:
        """Get exempt counterparty ids as a set."""
        return {cp.strip() for cp in self.EXEMPT_COUNTERPARTIES.split(",") if cp.strip()}

    def is_exempt(self, counterparty_id: str) -> bool:
        """Exempt counterparties are never expired on resume nor blocked for the day."""
        return counterparty_id in self.get_exempt_counterparties()

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton instance
settings = Settings()
