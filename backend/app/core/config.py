"""
Pydantic Settings — centralized configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ──────────────────────────────
    POSTGRES_USER: str = "tenders_user"
    POSTGRES_PASSWORD: str = "tenders_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "tenders_db"

    # Full async URL; overrides the POSTGRES_* parts when set
    # (e.g. sqlite+aiosqlite:///./tenders.db for a local demo)
    DATABASE_URL_OVERRIDE: str = ""

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # ── Document Storage ──────────────────────
    DOCUMENT_STORAGE_ROOT: str = "./storage"
    DOCUMENT_FETCH_TIMEOUT: float = 30.0

    # ── LangSmith Tracing ────────────────────
    LANGSMITH_API_KEY: str = ""
    LANGSMITH_ENDPOINT: str = "https://api.smith.langchain.com"
    LANGSMITH_PROJECT: str = "tender-pipeline"
    LANGSMITH_TRACING: bool = False

    # ── Pipeline Runner / Scheduler ───────────
    PIPELINE_DISPATCH: str = "inprocess"        # inprocess | celery
    PIPELINE_WORKER_CONCURRENCY: int = 5
    PIPELINE_RETRY_BACKOFF_SECONDS: float = 1.0
    PIPELINE_SERIALIZE_BY_TENDER: bool = False
    SCHEDULER_DRAIN_TIMEOUT: float = 30.0

    # ── Extraction / Approval ─────────────────
    EXTRACTION_MIN_CONFIDENCE: float = 0.5
    EXTRACTION_MAX_RESULTS: int = 5
    APPROVAL_LOW_CONFIDENCE_THRESHOLD: float = 0.5

    # ── Audit ─────────────────────────────────
    AUDIT_RETENTION_DAYS: int = 365
    AUDIT_SUSPICIOUS_ACTIONS_PER_HOUR: int = 100

    # ── Application ───────────────────────────
    APP_ENV: str = "development"
    LOG_LEVEL: str = ""
    SEED_DEFAULTS_ON_STARTUP: bool = False

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}


settings = Settings()
