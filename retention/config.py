from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres settings
    DATABASE_URL: str = "postgresql://localhost:5432/retention"

    # Fallback for tenants stored without a timezone
    DEFAULT_TIMEZONE: str = "Europe/London"

    # Postmark (email channel)
    POSTMARK_SERVER_TOKEN: str | None = None
    POSTMARK_FROM_EMAIL: str | None = None

    # Twilio (SMS + WhatsApp channels)
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM_SMS: str | None = None
    TWILIO_FROM_WHATSAPP: str | None = None

    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    # Local/dev only: fake a send instead of failing on missing credentials
    PROVIDER_STUB_WHEN_UNCONFIGURED: bool = False

    # Shared secret for the scheduler hitting /interventions/cron/daily
    CRON_SECRET: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    def postmark_configured(self) -> bool:
        return bool(self.POSTMARK_SERVER_TOKEN and self.POSTMARK_FROM_EMAIL)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
