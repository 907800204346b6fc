from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Sinema API"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = "changeme"
    LOG_LEVEL: str = "INFO"

    ADMIN_SECRET_KEY: str = "change-this-admin-secret"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "12345"
    POSTGRES_DB: str = "sinema_db"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: str = ""

    # Pricing fallbacks; rows in the `settings` table take precedence
    CURRENCY: str = "TRY"
    BASE_TICKET_PRICE: Decimal = Decimal("100.00")
    HALK_GUNU: str = "Wednesday"

    # Booking policy
    VIP_ADVANCE_BOOKING_DAYS: int = 7
    REGULAR_ADVANCE_BOOKING_DAYS: int = 2
    ENFORCE_T60_CUTOFF: bool = False

    # Seat holds
    SEAT_HOLD_DEFAULT_TTL_SECONDS: int = 120
    SEAT_HOLD_HEARTBEAT_EXTEND_SECONDS: int = 120
    SEAT_HOLD_MAX_EXTEND_MINUTES: int = 10

    # Sales
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    IDEMPOTENCY_TTL_MINUTES: int = 60

    # Background jobs
    ENABLE_BACKGROUND_JOBS: bool = True
    HOLD_CLEANUP_INTERVAL_SECONDS: int = 60
    HOLD_CLEANUP_BATCH_SIZE: int = 100
    RESERVATION_EXPIRY_INTERVAL_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def assemble_db_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

settings = Settings()
settings.DATABASE_URL = settings.assemble_db_url()
