"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Business calendar
    DEFAULT_TIMEZONE: str = "Europe/Lisbon"
    HOLIDAY_COUNTRY: str = "PT"
    HOLIDAY_SUBDIVISION: str = ""
    EXTRA_HOLIDAYS: str = ""  # Comma-separated MM-DD, e.g. "06-13,12-24"
    SEND_WINDOW_START: str = "09:00"
    SEND_WINDOW_END: str = "18:00"
    CADENCE_ANCHOR_TIME: str = "09:00"  # Local time given to generated due dates

    # Cadence generation
    HIGH_VALUE_THRESHOLD: float = 1000

    # Claim processor
    CLAIM_TIMEOUT_MINUTES: int = 15
    CADENCE_BATCH_SIZE: int = 50
    CADENCE_MAX_ATTEMPTS: int = 3

    # When False every email step becomes a manual task (no automatic sends)
    AUTO_EMAIL_MODE: bool = True

    # Worker
    WORKER_POLL_INTERVAL: int = 300  # seconds

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""

    # Email delivery (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@example.com"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    @property
    def extra_holidays_list(self) -> list[str]:
        """Parse EXTRA_HOLIDAYS into a list of MM-DD strings."""
        return [h.strip() for h in self.EXTRA_HOLIDAYS.split(",") if h.strip()]

    @property
    def email_configured(self) -> bool:
        return bool(self.RESEND_API_KEY)


settings = Settings()
