# ============================================================
# feedesk/core/config.py
#
# All configuration comes from environment variables (or a
# local .env file during development). Nothing here is
# branch- or session-specific: those are passed explicitly
# into every ledger call as a LedgerScope.
#
# Usage anywhere in the app:
#   from feedesk.core.config import settings
#   print(settings.CURRENCY_SYMBOL)
# ============================================================

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from pathlib import Path
from datetime import date, datetime
from zoneinfo import ZoneInfo


class Settings(BaseSettings):
    """
    Pydantic reads the .env file when running locally.
    In Docker / VPS, set these as real environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── App Identity ─────────────────────────────────────────
    APP_NAME: str = "FeeDesk"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"        # development | production
    DEBUG: bool = False
    # Keep production logs at INFO and suppress verbose HTTP wire logs by default.
    HTTP_CLIENT_DEBUG_LOGS: bool = False

    # ── API Settings ─────────────────────────────────────────
    API_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",            # Next.js dev server
        "http://localhost:5173",            # Vite dev server
    ]

    # ── Supabase (fee structure, concessions, collections) ───
    SUPABASE_URL: str                       # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY: str               # Service key - backend only
    DB_SCHEMA: str = "public"

    # ── Payment gateway webhook ──────────────────────────────
    GATEWAY_WEBHOOK_SECRET: str             # HMAC-SHA256 shared secret

    # ── n8n Automation (WhatsApp receipts, payment links) ────
    N8N_WEBHOOK_BASE_URL: str = "http://n8n:5678/webhook"
    N8N_RECEIPT_WEBHOOK: str = "fee-receipt"
    N8N_PAYMENT_LINK_WEBHOOK: str = "fee-payment-link"
    N8N_TIMEOUT_SECONDS: float = 5.0

    # ── Idempotency / at-most-once submission ────────────────
    IDEMPOTENCY_TTL_SECONDS: int = 600      # gateway event replay window
    IDEMPOTENCY_DB_PATH: str = "/tmp/feedesk_idempotency.db"
    BATCH_LATCH_TTL_SECONDS: int = 120      # stale in-flight latches expire

    # ── Money & receipts ─────────────────────────────────────
    CURRENCY: str = "INR"
    CURRENCY_SYMBOL: str = "₹"
    RECEIPT_PREFIX: str = "RCP"

    # ── Reminder thresholds (days overdue) ───────────────────
    REMINDER_FIRST_DAYS: int = 7
    REMINDER_SECOND_DAYS: int = 15
    REMINDER_FINAL_DAYS: int = 30

    # ── Timezone ─────────────────────────────────────────────
    TIMEZONE: str = "Asia/Kolkata"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


# Single instance - import this everywhere
settings = Settings()


def local_today() -> date:
    """Evaluation date for the ledger: today in the school's timezone, not the host's."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).date()
