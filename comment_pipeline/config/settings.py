from typing import Optional, Union
from pathlib import Path

from pydantic import Field, PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Root directory of the comment_pipeline package
SERVICE_ROOT_DIR = Path(__file__).parent.parent.resolve()
# Repository root (one level above the package)
PROJECT_ROOT_DIR = SERVICE_ROOT_DIR.parent


def _split_csv(value: Union[str, list[str]]) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "CommentPipeline"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8002

    # Security settings
    # The edge forwards arbitrary public hostnames; restrict this when ADMIN_API_ENABLED is set
    ALLOWED_HOSTS: Union[str, list[str]] = "*"
    CORS_ORIGINS: Union[str, list[str]] = "http://localhost:3000,http://localhost:8080"
    CORS_ALLOW_CREDENTIALS: bool = False
    CORS_ALLOW_METHODS: Union[str, list[str]] = "GET"
    CORS_ALLOW_HEADERS: Union[str, list[str]] = "*"

    # Database settings
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "user"
    DB_PASSWORD: str = "password"
    DB_NAME: str = "comments_db"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> str:
        if isinstance(v, str) and v:
            return v
        return str(PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=info.data.get("DB_USER"),
            password=info.data.get("DB_PASSWORD"),
            host=info.data.get("DB_HOST"),
            port=info.data.get("DB_PORT"),
            path=info.data.get("DB_NAME") or "",
        ))

    # Edge capture
    CAPTURE_PATH: str = "/comment"
    CAPTURE_TIMEOUT_SECONDS: float = 3.0

    # Message bus
    BUS_TOPIC: str = "comments"
    BUS_SUBSCRIBERS: Union[str, list[str]] = "comment-processor"
    BUS_FETCH_BATCH_SIZE: int = 25
    BUS_POLL_INTERVAL_SECONDS: float = 1.0
    BUS_VISIBILITY_TIMEOUT_SECONDS: float = 60.0
    BUS_MAX_DELIVERY_ATTEMPTS: int = 5
    BUS_RETRY_BACKOFF_SECONDS: float = 2.0
    BUS_RETRY_BACKOFF_MAX_SECONDS: float = 300.0

    # Durable processor
    PROCESSOR_SUBSCRIBER: str = "comment-processor"
    PROCESSOR_TIMEOUT_SECONDS: float = 30.0
    STORE_TIMEOUT_SECONDS: float = 5.0
    RUN_PROCESSOR_IN_API: bool = True

    # Administrative surface (moderation hook); off on the public edge by default
    ADMIN_API_ENABLED: bool = False

    # Monitoring
    METRICS_PORT: int = 9102

    # Logging configuration path (can be overridden by env var)
    LOGGING_CONFIG_PATH: str = str(SERVICE_ROOT_DIR / "config" / "logging_config.yaml")

    def model_post_init(self, __context) -> None:
        """Parse comma-separated strings into lists after model initialization."""
        self.ALLOWED_HOSTS = _split_csv(self.ALLOWED_HOSTS)
        self.CORS_ORIGINS = _split_csv(self.CORS_ORIGINS)
        self.CORS_ALLOW_METHODS = _split_csv(self.CORS_ALLOW_METHODS)
        if self.CORS_ALLOW_HEADERS == "*":
            self.CORS_ALLOW_HEADERS = ["*"]
        else:
            self.CORS_ALLOW_HEADERS = _split_csv(self.CORS_ALLOW_HEADERS)
        self.BUS_SUBSCRIBERS = _split_csv(self.BUS_SUBSCRIBERS)

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Instantiate settings
settings = Settings()
