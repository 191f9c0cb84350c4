from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Tag Audit Service"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    # ── Database ────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./audits.db"

    # ── Job queue / retry policy ────────────────
    MAX_RETRIES: PositiveInt = 5
    BASE_BACKOFF_MS: PositiveInt = 5000
    RATE_LIMIT_BACKOFF_BASE_MS: PositiveInt = 15000
    RATE_LIMIT_BACKOFF_MAX_MS: PositiveInt = 120000
    RATE_LIMIT_GLOBAL_COOLDOWN_MS: PositiveInt = 60000

    # ── Analysis service ────────────────────────
    ANALYSIS_SERVICE_URL: str = Field(
        default="http://localhost:5001",
        validation_alias=AliasChoices("ANALYSIS_SERVICE_URL", "PYTHON_SERVICE_URL"),
    )
    ANALYSIS_TIMEOUT_SECONDS: PositiveFloat = 40.0

    # ── Scanning ────────────────────────────────
    PRECHECK_TIMEOUT_SECONDS: PositiveFloat = 5.0
    SCAN_TIMEOUT_SECONDS: PositiveFloat = 90.0  # watchdog around the whole browser session
    SCAN_PAGE_LOAD_TIMEOUT_SECONDS: PositiveInt = 30
    SCAN_SETTLE_SECONDS: float = 2.0
    CHROMEDRIVER_PATH: Optional[str] = None

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
