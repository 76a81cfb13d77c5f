from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres connection string
    DATABASE_URL: str

    # Shared secret the scheduler sends as "Authorization: Bearer <secret>"
    CRON_SECRET: str | None = None

    # Billing provider (Stripe)
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_API_BASE: str = "https://api.stripe.com"
    BILLING_CANCEL_TIMEOUT_SECONDS: float = 10.0

    # =================================================================
    # ACCOUNT DELETION SETTINGS
    # =================================================================
    DELETION_ANONYMIZED_SENTINEL: str = "deleted"
    DELETION_BATCH_LIMIT: int = 500
    DELETION_MAX_CONCURRENCY: int = 1
    DELETION_REGISTRY_STRICT: bool = True
    DELETION_REGISTRY_SCHEMA: str = "public"
    DELETION_RUN_LOCK_ENABLED: bool = False
    DELETION_RUN_LOCK_KEY: int = 72_014_311

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

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

    def get_deletion_config(self) -> dict:
        """
        Get account deletion job configuration.

        Concurrency is clamped so the job never asks for more connections
        than the pool can hand out (one is kept free for the run lock).
        """
        pool_max = self.get_db_pool_config()["max_size"]
        max_concurrency = max(1, min(self.DELETION_MAX_CONCURRENCY, max(1, pool_max - 1)))

        return {
            "anonymized_sentinel": self.DELETION_ANONYMIZED_SENTINEL,
            "batch_limit": max(1, self.DELETION_BATCH_LIMIT),
            "max_concurrency": max_concurrency,
            "registry_strict": self.DELETION_REGISTRY_STRICT,
            "registry_schema": self.DELETION_REGISTRY_SCHEMA,
            "run_lock_enabled": self.DELETION_RUN_LOCK_ENABLED,
            "run_lock_key": self.DELETION_RUN_LOCK_KEY,
        }

    def billing_configured(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)


settings = Settings()
