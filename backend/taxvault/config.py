from pydantic_settings import BaseSettings
from decimal import Decimal
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "TaxVault"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173"]

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    RECEIPTS_TABLE: str = "receipts"

    # Document AI (expense parser processor)
    DOCUMENT_AI_PROJECT_ID: str = ""
    DOCUMENT_AI_LOCATION: str = "us"
    DOCUMENT_AI_PROCESSOR_ID: str = ""
    DOCUMENT_AI_TOKEN: str = ""
    DOCUMENT_AI_TIMEOUT_SECONDS: float = 30.0

    # Review thresholds
    RECONCILIATION_TOLERANCE: Decimal = Decimal("0.05")
    LOW_CONFIDENCE_THRESHOLD: float = 0.9
    FALLBACK_CONFIDENCE: float = 0.3

    # Money
    DEFAULT_CURRENCY: str = "MYR"
    LIFESTYLE_CAP: Decimal = Decimal("2500")

    # Claim overrides awaiting confirmation
    PENDING_OVERRIDE_TTL_SECONDS: float = 900.0
    PENDING_OVERRIDE_LIMIT: int = 1000

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
