from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Motherhood Jobs API"
    DATABASE_URL: str = "" # Logic: If set, use Postgres. Else, use SQLite.
    SQLITE_PATH: str = "background_jobs.db"
    REDIS_URL: str = "redis://localhost:6379/0" # Celery broker + job status channel
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # The mobile app and the scheduler both call the worker endpoint.
    CORS_ORIGINS: str = "*"

    # ─── Downstream AI Services ──────────────────────────────────────────
    ANALYSIS_SERVICE_URL: str | None = None  # image-analyzer function endpoint
    SERVICE_ROLE_KEY: str | None = None      # bearer credential for the analyzer
    ANALYSIS_TIMEOUT_SECONDS: float = 30.0

    # ─── Queue Policy ────────────────────────────────────────────────────
    JOB_BATCH_SIZE: int = 10
    JOB_PACING_MS: int = 100
    JOB_LEASE_SECONDS: int = 300
    HANDLER_TIMEOUT_SECONDS: float = 60.0
    DEFAULT_MAX_RETRIES: int = 3
    BACKOFF_BASE_MS: int = 1000
    BACKOFF_CAP_MS: int = 30000
    ENFORCE_BACKOFF: bool = True
    RETRY_MISSING_HANDLER: bool = True
    STRICT_ENQUEUE: bool = False

    # ─── Scheduler ───────────────────────────────────────────────────────
    DISPATCH_INTERVAL_SECONDS: float = 60.0

    class Config:
        env_file = ".env"

    def missing_worker_settings(self) -> list[str]:
        """Names of settings the dispatcher cannot run without."""
        required = {
            "ANALYSIS_SERVICE_URL": self.ANALYSIS_SERVICE_URL,
            "SERVICE_ROLE_KEY": self.SERVICE_ROLE_KEY,
        }
        return [name for name, value in required.items() if not value]

settings = Settings()
