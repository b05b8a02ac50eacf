"""
Environment-driven settings for the concierge relay.

``Settings`` is a pydantic-settings model: values come from the process
environment and from a ``.env`` file in the working directory, matched
case-insensitively. ``validate_settings`` enforces the startup rules: required
secrets fail fast in production, optional integrations fall back to a mock
mode elsewhere.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from concierge_relay.config.constants import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_INSTRUCTIONS,
    DEFAULT_REALTIME_MODEL,
    DEFAULT_REALTIME_URL,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOOL_TIMEOUT,
    DEFAULT_VOICE,
    LOGGER_NAME,
)
from concierge_relay.errors import ConfigurationError

logger = logging.getLogger(LOGGER_NAME)

MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Runtime configuration for the relay, the registry and the hub."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )

    environment: Literal["development", "test", "production"] = "development"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_dir: Path = Path("logs")

    # Upstream speech model
    openai_api_key: Optional[str] = None
    realtime_url: str = Field(
        default=DEFAULT_REALTIME_URL,
        validation_alias=AliasChoices("realtime_url", "OPENAI_REALTIME_URL"),
    )
    realtime_model: str = Field(
        default=DEFAULT_REALTIME_MODEL,
        validation_alias=AliasChoices("realtime_model", "OPENAI_REALTIME_MODEL"),
    )
    voice: str = Field(
        default=DEFAULT_VOICE,
        validation_alias=AliasChoices("voice", "REALTIME_VOICE"),
    )
    temperature: float = Field(
        default=DEFAULT_TEMPERATURE,
        ge=0.0,
        le=2.0,
        validation_alias=AliasChoices("temperature", "REALTIME_TEMPERATURE"),
    )
    default_instructions: str = DEFAULT_INSTRUCTIONS
    idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT
    tool_timeout_seconds: float = Field(default=DEFAULT_TOOL_TIMEOUT, gt=0)

    # Dashboard authentication
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"

    # Carrier
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_api_base_url: str = "https://api.twilio.com"
    public_base_url: Optional[str] = None

    tenant_config_path: Optional[Path] = None

    @field_validator("environment", "log_format", mode="before")
    @classmethod
    def lowercase(cls, value):
        return value.lower() if isinstance(value, str) else value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def twilio_mock_mode(self) -> bool:
        """True when carrier credentials are absent and Twilio REST calls are skipped."""
        return not (self.twilio_account_sid and self.twilio_auth_token)

    @property
    def jwt_algorithms(self) -> List[str]:
        return [self.jwt_algorithm]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide Settings read from the environment."""
    return Settings()


def validate_settings(settings: Settings) -> Settings:
    """
    Apply startup rules to the settings.

    In production a missing OpenAI key or a missing/weak JWT secret is fatal.
    In other environments a missing JWT secret is replaced by a random
    temporary one, and missing carrier credentials put the remote status
    lookup into mock mode.

    Returns:
        Settings: The validated settings (a copy when a value was filled in)

    Raises:
        ConfigurationError: If a required secret is missing in production
    """
    problems = []
    if settings.is_production:
        if not settings.openai_api_key:
            problems.append("OPENAI_API_KEY is required in production")
        if not settings.jwt_secret:
            problems.append("JWT_SECRET is required in production")
        elif len(settings.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            problems.append(
                f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
            )
    if problems:
        for problem in problems:
            logger.error(f"Configuration error: {problem}")
        raise ConfigurationError("; ".join(problems))

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; voice calls will not reach the speech model")

    if not settings.jwt_secret:
        logger.warning("JWT_SECRET is not set; using a temporary secret for this process only")
        settings = settings.model_copy(update={"jwt_secret": secrets.token_hex(64)})
    elif len(settings.jwt_secret) < MIN_JWT_SECRET_LENGTH:
        logger.warning("JWT_SECRET is shorter than recommended")

    if settings.twilio_mock_mode:
        logger.warning("Twilio credentials missing; remote call status lookups run in mock mode")

    return settings
