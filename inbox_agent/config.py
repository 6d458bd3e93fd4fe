from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "postgresql://localhost:5432/inbox_agent"
    REDIS_URL: str = "redis://localhost:6379/0"

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_CLASSIFICATION_MODEL: str = "gpt-4o-mini"
    OPENAI_OPPORTUNITY_MODEL: str = "gpt-4-turbo"
    OPENAI_CLASSIFICATION_TEMPERATURE: float = 0.3
    OPENAI_OPPORTUNITY_TEMPERATURE: float = 0.5
    OPENAI_MAX_TOKENS: int = 500
    OPENAI_TIMEOUT_SECONDS: float = 30.0

    # External capabilities
    FAQ_SERVICE_URL: str | None = None
    FAQ_SERVICE_TOKEN: str | None = None
    PUSH_GATEWAY_URL: str | None = None
    PUSH_GATEWAY_TOKEN: str | None = None
    EXTERNAL_REQUEST_TIMEOUT: float = 10.0

    # =================================================================
    # WORKFLOW DEFAULTS - per-account config overrides most of these
    # =================================================================
    WORKFLOW_TIME_BUDGET_SECONDS: float = 300.0  # 5 minutes
    WORKFLOW_LOOKBACK_HOURS: int = 12
    WORKFLOW_ACTIVE_CONVERSATION_MINUTES: int = 60
    WORKFLOW_BATCH_SIZE: int = 50
    WORKFLOW_ESCALATION_THRESHOLD: float = 0.3
    WORKFLOW_MAX_AUTO_RESPONSES: int = 20
    WORKFLOW_ACTIVE_THRESHOLD_MINUTES: int = 30
    WORKFLOW_DAILY_CAPACITY: int = 10

    # Scheduler
    SCHEDULER_DEFAULT_RUN_TIME: str = "09:00"
    SCHEDULER_DEFAULT_TIMEZONE: str = "America/Los_Angeles"
    SCHEDULER_TOLERANCE_MINUTES: int = 5
    SCHEDULER_INTERVAL_MINUTES: int = 60

    # Postgres pool, shared sizing for the API and the worker
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0
    DB_POOL_MAX_LIFETIME: float = 3600.0
    DB_STATEMENT_TIMEOUT_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def openai_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    def get_db_pool_config(self) -> dict:
        """Keyword arguments for AsyncConnectionPool; development runs a smaller pool."""
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config


settings = Settings()
