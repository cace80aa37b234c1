"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    ANTHROPIC_API_KEY: API key for the language model collaborator
    CALENDAR_API_URL: Base URL of the calendar service
    PROVIDER_CALENDARS: Provider to calendar id mapping ("Name:calId,...")
    CLINIC_TIMEZONE: IANA timezone the clinic works in (default: UTC)
    SESSION_TIMEOUT_MINUTES: Idle time before a session is swept (default: 10)
    APP_ENV: Environment name (development/staging/production)
    DEBUG: Enable debug mode (default: False)
"""

from functools import lru_cache
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Environment
    app_env: Literal["development", "staging", "production"] = "development"
    """Current application environment.

    Options:
    - development: Local development, verbose logging
    - staging: Pre-production testing environment
    - production: Live production environment, minimal logging
    """

    debug: bool = False
    """Enable debug mode (DEBUG level logging)."""

    app_name: str = "dental-desk"
    """Application name."""

    host: str = "0.0.0.0"
    """Host to bind the application server."""

    port: int = 8000
    """Port to bind the application server."""

    # Claude Configuration
    anthropic_api_key: str = ""
    """Anthropic API key. Required for AI-assisted turns.

    Without it every AI call fails and the deterministic fallbacks
    (keyword intents, keyword confirmation, template replies) are used.
    """

    claude_intent_model: str = "claude-3-5-haiku-latest"
    """Fast model used for classification, extraction and confirmation."""

    claude_fallback_model: str = "claude-sonnet-4-5"
    """Model tried when the primary model call fails."""

    claude_reply_model: str = "claude-sonnet-4-5"
    """Model used for open-ended reply generation."""

    # Calendar Configuration
    calendar_api_url: str = "http://localhost:8001"
    """Base URL of the calendar service."""

    calendar_timeout_seconds: float = 15.0
    """Request timeout for calendar calls in seconds."""

    provider_calendars: str = ""
    """Comma-separated provider to calendar id pairs.

    Format: "Dr BracesA:cal-a,Dr BracesB:cal-b,Dr GeneralA:cal-c"
    """

    # Clinic Configuration
    clinic_name: str = "the clinic"
    """Clinic name used in replies."""

    receptionist_contact: str = "our receptionist"
    """How callers reach a human, used in failure replies."""

    clinic_timezone: str = "UTC"
    """IANA timezone all appointment times are interpreted in."""

    working_hours_start: int = 9
    """First bookable hour of the day (24h clock)."""

    working_hours_end: int = 18
    """Hour by which every appointment must have ended (24h clock)."""

    working_days: str = "0,1,2,3,4"
    """Comma-separated bookable weekdays, Monday=0."""

    # Session Configuration
    session_timeout_minutes: int = 10
    """Idle minutes after which a conversation session is swept."""

    session_sweep_interval_seconds: int = 60
    """How often the background sweep looks for idle sessions."""

    session_max_history: int = 20
    """Maximum conversation turns kept per session."""

    slot_cache_ttl_seconds: int = 60
    """How long a fetched open-slot list may be reused for matching."""

    # Audit / passthrough
    audit_webhook_url: Optional[str] = None
    """Optional URL audit events are POSTed to as JSON."""

    pricing_info: str = ""
    """Free-text pricing notes appended to price questions as-is."""

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",  # Load from .env file if it exists
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def provider_calendar_map(self) -> dict[str, str]:
        """Parse provider_calendars into a {provider: calendar_id} dict."""
        mapping = {}
        for pair in self.provider_calendars.split(","):
            if ":" not in pair:
                continue
            name, calendar_id = pair.split(":", 1)
            if name.strip() and calendar_id.strip():
                mapping[name.strip()] = calendar_id.strip()
        return mapping

    @property
    def working_days_list(self) -> list[int]:
        """Split working_days into a list of weekday numbers."""
        return [int(day) for day in self.working_days.split(",") if day.strip()]

    @property
    def tz(self) -> ZoneInfo:
        """Clinic timezone as a ZoneInfo."""
        return ZoneInfo(self.clinic_timezone)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from dental_desk.config import get_settings
        >>> get_settings().session_timeout_minutes
        10
    """
    return Settings()


# Module-level settings instance for easy imports
settings = get_settings()
