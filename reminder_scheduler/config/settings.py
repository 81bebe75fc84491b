from typing import Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "reminder-scheduler"
    VERSION: str = "0.1.0"
    APP_NAME: str = "Tiger App"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./productivity.db"
    DATABASE_ECHO: bool = False

    # SMTP transport
    EMAIL_HOST: Optional[str] = None
    EMAIL_PORT: int = 465
    """Port 465 always uses implicit TLS, other ports honour EMAIL_SECURE."""
    EMAIL_SECURE: bool = False
    EMAIL_USER: Optional[str] = None
    EMAIL_PASS: Optional[str] = None
    EMAIL_FROM: str = '"Tiger App" <notifications@tigerapp.com>'
    EMAIL_VERIFY_ON_STARTUP: bool = True
    EMAIL_TIMEOUT_SECONDS: float = 30.0

    # Links rendered in reminder e-mails
    CLIENT_URL: str = "http://localhost:3000"
    PRODUCTION_CLIENT_URL: str = "http://localhost:3000"

    # Scheduler
    CHECK_INTERVAL_MINUTES: int = 15
    BOOTSTRAP_RETRY_MINUTES: int = 5
    LOG_RETENTION_DAYS: int = 30
    LOG_CLEANUP_INTERVAL_HOURS: int = 24
    WINDOW_SLACK_MINUTES: int = 5

    @field_validator("CLIENT_URL", "PRODUCTION_CLIENT_URL", mode="before")
    def strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @model_validator(mode="after")
    def force_tls_on_smtps_port(self):
        if self.EMAIL_PORT == 465:
            self.EMAIL_SECURE = True
        return self

    @property
    def base_client_url(self) -> str:
        if self.ENVIRONMENT == "production":
            return self.PRODUCTION_CLIENT_URL
        return self.CLIENT_URL

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
