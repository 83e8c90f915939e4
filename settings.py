"""Application settings using Pydantic BaseSettings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # SQLite contact ledger
    database_path: str = "contacts.db"
    database_timeout_seconds: float = 5.0

    # Identify retries when the write lock is contended
    identify_max_retries: int = 3

    # Application
    service_name: str = "Identity Reconciliation Service"
    environment: str = "development"
    log_level: str = "INFO"
    cors_allow_origins: list[str] = ["*"]

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
