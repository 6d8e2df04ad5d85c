"""
Application Configuration
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import List, Optional
import warnings

INSECURE_SECRET_KEYS = {
    "change-me-orderledger-secret-key-32-chars-min",
    "secret-key",
    "change-me",
}


class Settings(BaseSettings):
    """Order ledger settings, read from the environment or `.env`"""

    APP_NAME: str = "Order Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite:///./orderledger.db"
    DB_ISOLATION_LEVEL: Optional[str] = None  # SERIALIZABLE on PostgreSQL

    SECRET_KEY: str = "change-me-orderledger-secret-key-32-chars-min"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 8 * 60  # one working day
    SESSION_COOKIE_SECURE: bool = False

    # Seeded at startup when the users table is empty
    INITIAL_ADMIN_USERNAME: str = "admin"
    INITIAL_ADMIN_EMAIL: str = "admin@example.com"
    INITIAL_ADMIN_PASSWORD: Optional[str] = None

    # Invoices of local clients are in LOCAL_CURRENCY, international
    # receipts are booked in BASE_CURRENCY
    LOCAL_CURRENCY: str = "PKR"
    BASE_CURRENCY: str = "USD"
    INVOICE_DUE_DAYS: int = 30
    ORDER_NUMBER_PREFIX: str = "ORD"
    FISCAL_YEAR_START_MONTH: int = 7
    REVERSE_BANK_ENTRY_ON_PAYMENT_CHANGE: bool = True
    DOCUMENT_STORAGE_DIR: str = "./documents"

    RATE_LIMIT_ENABLED: bool = True
    CORS_ORIGINS: str = "http://localhost:5000,http://127.0.0.1:5000"

    @field_validator("LOCAL_CURRENCY", "BASE_CURRENCY")
    @classmethod
    def currency_code(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise ValueError(f"'{value}' is not a three-letter currency code")
        return value

    @field_validator("FISCAL_YEAR_START_MONTH")
    @classmethod
    def calendar_month(cls, value: int) -> int:
        if not 1 <= value <= 12:
            raise ValueError("FISCAL_YEAR_START_MONTH must be between 1 and 12")
        return value

    @field_validator("INVOICE_DUE_DAYS")
    @classmethod
    def non_negative_days(cls, value: int) -> int:
        if value < 0:
            raise ValueError("INVOICE_DUE_DAYS cannot be negative")
        return value

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def database_url(self) -> str:
        # Hosting panels hand out "file:<path>" for SQLite
        if self.DATABASE_URL.startswith("file:"):
            return "sqlite:///" + self.DATABASE_URL[len("file:"):]
        return self.DATABASE_URL

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def validate_security_settings(self):
        """Refuse insecure production settings, warn about them elsewhere"""
        fatal = []
        if self.SECRET_KEY in INSECURE_SECRET_KEYS or len(self.SECRET_KEY) < 32:
            fatal.append("SECRET_KEY is a default or shorter than 32 characters")
        if self.DEBUG:
            fatal.append("DEBUG is enabled")

        if fatal and self.is_production:
            raise ValueError("Insecure production settings: " + "; ".join(fatal))
        for problem in fatal:
            warnings.warn(problem, UserWarning)
        return True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
settings.validate_security_settings()
