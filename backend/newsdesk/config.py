from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://localhost:3001"]

    # Sessions
    SESSION_SECRET: str = "newsdesk-session-secret-change-in-production"
    ADMIN_SESSION_MAX_AGE_SECONDS: int = 8 * 60 * 60
    PUBLIC_SESSION_MAX_AGE_SECONDS: int = 30 * 24 * 60 * 60

    # Database - DATABASE_URL wins over the discrete parameters
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "newsdesk"
    DB_CREATE_TABLES: bool = True

    # Pool
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 0
    DB_POOL_TIMEOUT_SECONDS: float = 10.0
    DB_CONNECT_TIMEOUT_SECONDS: float = 10.0
    DB_STATEMENT_TIMEOUT_MS: int = 30000
    DB_IDLE_IN_TRANSACTION_TIMEOUT_MS: int = 60000

    # Retry / reconnect policy
    DB_QUERY_MAX_RETRIES: int = 3
    DB_RETRY_BACKOFF_SECONDS: float = 1.0
    DB_RETRY_BACKOFF_CAP_SECONDS: float = 8.0
    DB_MAX_RECONNECT_ATTEMPTS: int = 10
    DB_STARTUP_ATTEMPTS: int = 5
    DB_STARTUP_RETRY_DELAY_SECONDS: float = 2.0

    # Cleanup
    CLEANUP_SCHEDULER_ENABLED: bool = True
    CLEANUP_INTERVAL_HOURS: float = 6
    CLEANUP_MAX_FAILURES: int = 5
    CLEANUP_GEO_STALE_HOURS: float = 30 * 24
    CLEANUP_HISTORY_DEFAULT_LIMIT: int = 20
    ACTIVE_DEVICE_WINDOW_DAYS: int = 7

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
