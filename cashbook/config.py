"""Application configuration."""
from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./cashbook.db"
    SQL_ECHO: bool = False
    AUTO_CREATE_TABLES: bool = False  # Alembic owns the schema outside local dev

    # Application
    APP_ENV: str = "development"
    API_V1_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Ledger
    # Stored and computed balances closer than this are considered equal
    BALANCE_TOLERANCE: Decimal = Decimal("0.01")
    # Flows tagged with this category (or pay type) are loan movements
    LOAN_CATEGORY: str = "loan"
    # Used when converting legacy loan flows that carry no loan type / counterparty
    LEGACY_LOAN_DEFAULT_TYPE: str = "lend"
    LEGACY_COUNTERPARTY_FALLBACK: str = "unknown"

    # CORS
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.APP_ENV == "development":
            return ["*"]  # Allow all origins in development
        return [self.FRONTEND_URL, "http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
