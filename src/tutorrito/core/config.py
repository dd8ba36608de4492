"""Application configuration loaded from environment and config files."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseSettings):
    """Database connection configuration.

    When ``database_url`` is unset the app runs on in-memory stores.
    """

    model_config = {"env_prefix": "TUTORRITO_DB_"}

    database_url: str | None = None
    echo: bool = False
    pool_size: int = 5


class EmailConfig(BaseSettings):
    """Email provider configuration."""

    model_config = {"env_prefix": "TUTORRITO_EMAIL_"}

    provider: str = "mock"
    api_key: str | None = None
    base_url: str = "https://api.resend.com"
    sender: str = "Tutorrito <notifications@tutorrito.com>"
    timeout_seconds: float = 10.0
    admin_email: str = "admin@tutorrito.com"
    app_url: str = "https://tutorrito.com"


class DeliveryConfig(BaseSettings):
    """Retry and idempotency settings for notification delivery."""

    model_config = {"env_prefix": "TUTORRITO_DELIVERY_"}

    send_attempts: int = 3
    record_attempts: int = 3
    lookup_attempts: int = 3
    base_delay_seconds: float = 0.5
    multiplier: float = 2.0
    max_delay_seconds: float = 8.0
    claim_timeout_seconds: float = 120.0
    templates_path: str = "config/notification_templates.yml"


class CorsConfig(BaseSettings):
    """Cross-origin configuration for the separately hosted front end."""

    model_config = {"env_prefix": "TUTORRITO_CORS_"}

    allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    allow_headers: list[str] = Field(
        default_factory=lambda: ["authorization", "x-client-info", "apikey", "content-type"]
    )


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "TUTORRITO_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
