from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "TicketHub API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_TIMEZONE: str = "Africa/Addis_Ababa"

    CURRENCY: str = "ETB"
    DEFAULT_PAYMENT_INSTRUCTIONS: str = "Pay the exact amount to the account shown by the operator and send the receipt reference."

    # Receipt admission
    RECEIPT_MAX_FILE_MB: int = 10
    RECEIPT_MIN_FILE_BYTES: int = 1024
    RECEIPT_STRICT_VALIDATION: bool = False
    RECEIPT_AMOUNT_EPSILON: Decimal = Decimal("0.0001")
    RECEIPT_LINK_AMOUNT_TOLERANCE: Decimal = Decimal("1.00")

    # Settlement
    RESTORE_SEATS_ON_REJECT: bool = True
    CHECKIN_TRIP_DAY_ONLY: bool = False

    # GNPL defaults (overridable at runtime through the settings table)
    GNPL_ENABLED: bool = False
    GNPL_REQUIRE_ADMIN_APPROVAL: bool = True
    GNPL_TERM_DAYS: int = 14
    GNPL_PENALTY_ENABLED: bool = True
    GNPL_PENALTY_PERCENT: Decimal = Decimal("5")
    GNPL_PENALTY_PERIOD_DAYS: int = 7
    GNPL_REMINDER_ENABLED: bool = True
    GNPL_REMINDER_DAYS_BEFORE: int = 0
    GNPL_ALLOCATION_ORDER: str = "penalty_first"  # penalty_first | principal_first

    @field_validator("GNPL_ALLOCATION_ORDER", mode="after")
    @classmethod
    def check_allocation_order(cls, v: str) -> str:
        if v not in ("penalty_first", "principal_first"):
            raise ValueError("GNPL_ALLOCATION_ORDER must be penalty_first or principal_first")
        return v

    RECONCILIATION_TOLERANCE: Decimal = Decimal("1.00")

    # Role allowed to approve operators' cash remittances
    MANUAL_CASH_APPROVER_ROLE: str = "superadmin"

    # Automated checkout (opaque initiator + signed webhook)
    PAYMENT_GATEWAY_URL: str = ""
    PAYMENT_GATEWAY_APP_ID: str = ""
    PAYMENT_GATEWAY_SECRET: str = ""
    PAYMENT_GATEWAY_TIMEOUT: int = 15
    PAYMENT_WEBHOOK_VERIFY: bool = True

    # Chat notifications
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    NOTIFY_TIMEOUT: int = 10

    # Object storage for receipt proofs and ticket cards
    STORAGE_LOCAL_DIR: str = "./data/files"
    GCS_BUCKET_NAME: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""

    SEED_ADMIN_EMAIL: str = ""
    SEED_ADMIN_PASSWORD: str = ""


settings = Settings()
