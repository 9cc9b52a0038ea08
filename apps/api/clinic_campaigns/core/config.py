"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Internal scheduled endpoints (cron jobs, event ingest)
    INTERNAL_SECRET: str = ""

    # Tenants without a configured timezone evaluate recurrence in this zone
    DEFAULT_TIMEZONE: str = "UTC"

    # Campaign engine
    CAMPAIGN_DRAIN_BATCH_SIZE: int = 100  # Pending actions claimed per drain
    CAMPAIGN_AUDIENCE_BATCH_LIMIT: int = 1000  # Max recipients per audience pass
    CAMPAIGN_RECURRING_TOLERANCE_MINUTES: int = 5
    # What to do when a WAIT expression cannot be resolved: 'immediate' | 'drop'
    CAMPAIGN_WAIT_FALLBACK: str = "immediate"

    # Worker
    WORKER_POLL_INTERVAL: int = 30  # seconds
    WORKER_BATCH_SIZE: int = 10  # queued jobs per tick

    # Messaging gateway (leave URL empty to log instead of sending)
    MESSAGING_GATEWAY_URL: str = ""
    MESSAGING_GATEWAY_TOKEN: str = ""
    MESSAGING_GATEWAY_TIMEOUT_SECONDS: float = 15.0

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"

    @property
    def wait_fallback_drops(self) -> bool:
        """True when unresolvable WAIT expressions end the workflow."""
        return self.CAMPAIGN_WAIT_FALLBACK.strip().lower() == "drop"


settings = Settings()
