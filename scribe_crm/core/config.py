"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration (credential store)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")
    CREDENTIALS_TABLE: str = "user_credentials"

    # Google Gemini (suggestion generation and contact questions)
    GEMINI_API_KEY: SecretStr = SecretStr("")
    GEMINI_MODEL: str = "gemini-2.5-flash-lite"
    GEMINI_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/models"

    # HubSpot OAuth + CRM API
    HUBSPOT_CLIENT_ID: str = ""
    HUBSPOT_CLIENT_SECRET: SecretStr = SecretStr("")
    HUBSPOT_API_BASE_URL: str = "https://api.hubapi.com"

    # Salesforce OAuth + CRM API
    SALESFORCE_CLIENT_ID: str = ""
    SALESFORCE_CLIENT_SECRET: SecretStr = SecretStr("")
    SALESFORCE_LOGIN_URL: str = "https://login.salesforce.com"
    SALESFORCE_API_VERSION: str = "v59.0"
    SALESFORCE_SESSION_LIFETIME_SECONDS: int = 7200  # token endpoint omits expires_in

    # Credential lifecycle
    TOKEN_REFRESH_WINDOW_SECONDS: int = 300  # refresh on use when expiring within 5 min
    TOKEN_SWEEP_WINDOW_SECONDS: int = 600  # proactive sweep looks 10 min ahead
    TOKEN_SWEEP_INTERVAL_MINUTES: int = 5
    TOKEN_SWEEP_TASK_TIMEOUT_SECONDS: float = 30.0

    # Generative AI rate limiting
    AI_RATE_LIMIT_DEFAULT_DELAY_SECONDS: int = 35
    AI_RATE_LIMIT_MAX_DELAY_SECONDS: int = 60

    # HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Background scheduler
    ENABLE_SCHEDULER: bool = True

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    @field_validator(
        "SUPABASE_URL",
        "GEMINI_API_BASE_URL",
        "HUBSPOT_API_BASE_URL",
        "SALESFORCE_LOGIN_URL",
    )
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that service URLs are http(s) and strip trailing slashes."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Service URLs must start with http:// or https://")
        return v.rstrip("/") if v else v

    @property
    def gemini_configured(self) -> bool:
        """Check if the Gemini API key is set."""
        return bool(self.GEMINI_API_KEY.get_secret_value())

    @property
    def hubspot_configured(self) -> bool:
        """Check if HubSpot OAuth client credentials are set."""
        return bool(self.HUBSPOT_CLIENT_ID and self.HUBSPOT_CLIENT_SECRET.get_secret_value())

    @property
    def salesforce_configured(self) -> bool:
        """Check if Salesforce OAuth client credentials are set."""
        return bool(
            self.SALESFORCE_CLIENT_ID and self.SALESFORCE_CLIENT_SECRET.get_secret_value()
        )

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            "GEMINI_API_KEY": self.GEMINI_API_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")

        if not (self.hubspot_configured or self.salesforce_configured):
            logger.warning("No CRM OAuth client configured; token refresh will fail")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from the environment.
    """
    return Settings()
