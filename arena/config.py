import logging
from logging.config import dictConfig
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "local"

    # JWT
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRY: int = 1  # days

    # Main DB (Arena)
    POSTGRES_DRIVER: str = "postgresql+asyncpg"
    POSTGRES_USER: str = "arena"
    ARENA_DB: str = "arena"
    ARENA_DB_PASSWORD: str = "arena"
    ARENA_DB_PORT: int = 5432
    ARENA_DB_HOST_PROD: str = "db"
    # Overrides the composed URL when set (tests use sqlite+aiosqlite)
    DATABASE_URL: str = ""

    # Redis
    REDIS_HOST_PROD: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""

    # Codeforces
    CODEFORCES_API_URL: str = "https://codeforces.com/api"
    JUDGE_TIMEOUT_SECONDS: float = 10.0
    CATALOG_CACHE_SECONDS: int = 600
    SUBMISSIONS_FETCH_COUNT: int = 20

    # Match engine
    MATCH_START_GRACE_SECONDS: int = 10
    MATCHMAKE_INTERVAL_SECONDS: float = 3.0
    POLL_INTERVAL_SECONDS: float = 5.0
    POLL_TICK_DEADLINE_SECONDS: float = 25.0
    POLL_CONCURRENCY: int = 8
    MATCHMAKE_LOCK_TIMEOUT_SECONDS: int = 30
    MATCHMAKE_LOCK_WAIT_SECONDS: float = 5.0
    SCHEDULER_ENABLED: bool = True

    # Rating
    RATING_POLICY: str = "fixed"
    K_FACTOR: int = 32

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def ARENA_DB_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"{self.POSTGRES_DRIVER}://{self.POSTGRES_USER}:{self.ARENA_DB_PASSWORD}@{self.ARENA_DB_HOST}:{self.ARENA_DB_PORT}/{self.ARENA_DB}"

    @property
    def REDIS_HOST(self) -> str:
        if self.ENVIRONMENT == "local":
            return "localhost"
        return self.REDIS_HOST_PROD

    @property
    def ARENA_DB_HOST(self) -> str:
        if self.ENVIRONMENT == "local":
            return "localhost"
        return self.ARENA_DB_HOST_PROD


Config = Settings()

# Ensure logs directory exists
log_dir = Path(Config.LOG_FILE).parent
log_dir.mkdir(parents=True, exist_ok=True)


def configure_logging():
    """Configure logging for the application."""
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(funcName)s - %(lineno)d - %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": Config.LOG_LEVEL,
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "detailed",
                "filename": Config.LOG_FILE,
                "maxBytes": 10485760,  # 10MB
                "backupCount": 5,
                "level": Config.LOG_LEVEL,
            },
        },
        "loggers": {
            "app": {
                "handlers": ["console", "file"],
                "level": Config.LOG_LEVEL,
                "propagate": False,
            },
        },
        "root": {
            "handlers": ["console", "file"],
            "level": Config.LOG_LEVEL,
        },
    }
    dictConfig(log_config)
    return logging.getLogger("app")


# Initialize logger
logger = configure_logging()
