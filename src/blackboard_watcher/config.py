"""
Configuration management for Blackboard Watcher.

Loads and validates all required environment variables with clear error messages.
Uses Pydantic Settings for type safety and validation.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All required variables must be set, or the application will fail fast
    with a clear error message indicating which variables are missing.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Credential vault
    encryption_key: str = Field(
        ...,
        description="Key used to encrypt stored IAAA passwords (do not change once set)"
    )

    # Remote platform
    blackboard_base_url: str = Field(
        default="https://course.pku.edu.cn",
        description="Base URL of the Blackboard course platform"
    )
    iaaa_login_url: str = Field(
        default="https://iaaa.pku.edu.cn/iaaa/oauthlogin.do",
        description="IAAA identity provider login endpoint"
    )
    iaaa_app_id: str = Field(
        default="blackboard",
        description="Application id presented to IAAA"
    )
    sso_redirect_url: str = Field(
        default="http://course.pku.edu.cn/webapps/bb-sso-BBLEARN/execute/authValidate/campusLogin",
        description="Redirect URL registered with IAAA for the Blackboard SSO"
    )
    request_timeout: float = Field(
        default=30,
        gt=0,
        description="Timeout in seconds for each HTTP request"
    )
    notice_settle_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Delay between opening the stream viewer and loading the notice stream"
    )

    # Scheduling
    check_interval_minutes: int = Field(
        default=60,
        ge=30,
        le=240,
        description="Minutes between two sweeps over all bound identities"
    )
    inter_identity_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between two identities within one sweep"
    )

    # Supabase Configuration
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_service_role_key: str = Field(
        ...,
        description="Supabase service role key (not anon key)"
    )

    # Telegram Bot API Configuration
    telegram_bot_token: str = Field(
        ...,
        description="Telegram Bot API token (from @BotFather)"
    )

    # Optional Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    timezone: str = Field(
        default="Asia/Shanghai",
        description="Timezone used to display times in messages"
    )

    @field_validator("blackboard_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return upper

    @property
    def stream_viewer_url(self) -> str:
        """Endpoint serving the notice stream."""
        return f"{self.blackboard_base_url}/webapps/streamViewer/streamViewer"

    @property
    def calendar_events_url(self) -> str:
        """Endpoint serving windowed calendar events."""
        return f"{self.blackboard_base_url}/webapps/calendar/calendarData/selectedCalendarEvents"

    @property
    def sso_validate_url(self) -> str:
        """Blackboard endpoint that exchanges an IAAA token for a session."""
        return f"{self.blackboard_base_url}/webapps/bb-sso-BBLEARN/execute/authValidate/campusLogin"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Validated application settings

    Raises:
        ValidationError: If required environment variables are missing or invalid
    """
    return Settings()


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """
    Configure application logging.

    Args:
        settings: Optional settings instance, will be loaded if not provided

    Returns:
        logging.Logger: Configured logger instance
    """
    if settings is None:
        settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logging.getLogger("blackboard_watcher")
