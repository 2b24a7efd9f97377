"""MetricSync — Central Configuration via Pydantic Settings."""

import os
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Platform (auth verifier + permission RPC) ──
    platform_url: str = ""
    platform_anon_key: str = ""
    sync_capability: str = "canSyncData"

    # ── Google Sheets ──
    google_service_account_email: Optional[str] = None
    google_private_key: Optional[str] = None
    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_sheets_scope: str = "https://www.googleapis.com/auth/spreadsheets.readonly"
    sheets_base_url: str = "https://sheets.googleapis.com/v4"
    sheets_default_range: str = "A:AZ"
    sheets_max_retries: int = 3
    sheets_retry_base_delay: float = 2.0  # seconds
    http_timeout: float = 30.0

    # ── Database ──
    database_url: str = ""

    # ── Normalization ──
    date_order: Literal["MDY", "DMY"] = "MDY"  # how 01/02/2025 is read
    report_sample_errors: int = 5

    # ── App ──
    log_level: str = "INFO"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/metricsync.db"
        return "sqlite:///./metricsync.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
