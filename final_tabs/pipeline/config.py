"""Configuration module for Final Tabs.

Handles environment variable parsing with defaults and validation.
"""

import os
from typing import Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from ..api.espn_client import ESPNClient
from ..posting.history import DEFAULT_HISTORY_FILE

CREDENTIAL_ENV_VARS = (
    "TWITTER_APP_KEY",
    "TWITTER_APP_SECRET",
    "TWITTER_ACCESS_TOKEN",
    "TWITTER_ACCESS_SECRET",
)


class ConfigError(ValueError):
    """Raised at startup when configuration is missing or invalid."""


class AutopostConfig(BaseModel):
    """Configuration for an autopost run."""

    dry_run: bool = Field(default=False, description="Compose captions without posting")

    # Posting credentials (OAuth 1.0a user context)
    twitter_app_key: Optional[str] = Field(default=None, repr=False)
    twitter_app_secret: Optional[str] = Field(default=None, repr=False)
    twitter_access_token: Optional[str] = Field(default=None, repr=False)
    twitter_access_secret: Optional[str] = Field(default=None, repr=False)

    history_file: str = Field(default=DEFAULT_HISTORY_FILE, description="Post history JSON file")
    post_delay_seconds: float = Field(
        default=2.0, ge=0, description="Minimum delay between live posts"
    )

    # Provider
    espn_base_url: str = Field(default=ESPNClient.DEFAULT_BASE_URL, description="ESPN site API base URL")
    http_timeout: float = Field(default=15.0, gt=0, description="Provider request timeout in seconds")
    http_max_retries: int = Field(default=2, ge=0, description="Provider retries on server errors")
    timezone: str = Field(default="America/New_York", description="Timezone for game dates")

    # Browser and capture
    headless: bool = Field(default=True, description="Run Chromium headless")
    page_url: Optional[str] = Field(
        default=None, description="Capture from a served page instead of the rendered document"
    )
    viewport_width: int = Field(default=1200, gt=0)
    viewport_height: int = Field(default=900, gt=0)
    page_timeout_ms: int = Field(default=30000, gt=0, description="Wait for keys or no-games message")
    overlay_timeout_ms: int = Field(default=5000, gt=0, description="Wait for a receipt to open/close")
    image_timeout_ms: int = Field(default=5000, gt=0, description="Wait for receipt images")
    settle_delay_seconds: float = Field(default=1.0, ge=0)
    dismiss_delay_seconds: float = Field(default=0.8, ge=0)

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_log_levels}")
        return v.upper()

    @field_validator("espn_base_url", "page_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate HTTP/HTTPS URLs."""
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"{v!r} must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_credentials(self) -> "AutopostConfig":
        """Posting credentials are required unless this is a dry run."""
        if not self.dry_run and self.missing_credentials():
            raise ConfigError(
                "Missing posting credentials: " + ", ".join(self.missing_credentials())
            )
        return self

    def missing_credentials(self) -> list[str]:
        values = (
            self.twitter_app_key,
            self.twitter_app_secret,
            self.twitter_access_token,
            self.twitter_access_secret,
        )
        return [name for name, value in zip(CREDENTIAL_ENV_VARS, values) if not value]

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def public_summary(self) -> dict[str, object]:
        """Non-secret settings for logging."""
        return self.model_dump(
            exclude={
                "twitter_app_key",
                "twitter_app_secret",
                "twitter_access_token",
                "twitter_access_secret",
            }
        )


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _env_number(name: str, default: str, cast: type) -> float:
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a valid {cast.__name__}, got {raw!r}") from e


def load_config(dry_run: Optional[bool] = None) -> AutopostConfig:
    """Load configuration from environment variables with defaults.

    Args:
        dry_run: Overrides DRY_RUN when given

    Returns:
        AutopostConfig: Parsed and validated configuration object

    Raises:
        ConfigError: If credentials are missing outside dry run, or a value
            is invalid
    """
    if dry_run is None:
        dry_run = _env_bool("DRY_RUN")

    try:
        return AutopostConfig(
            dry_run=dry_run,
            twitter_app_key=os.getenv("TWITTER_APP_KEY"),
            twitter_app_secret=os.getenv("TWITTER_APP_SECRET"),
            twitter_access_token=os.getenv("TWITTER_ACCESS_TOKEN"),
            twitter_access_secret=os.getenv("TWITTER_ACCESS_SECRET"),
            history_file=os.getenv("HISTORY_FILE", DEFAULT_HISTORY_FILE),
            post_delay_seconds=_env_number("POST_DELAY_SECONDS", "2.0", float),
            espn_base_url=os.getenv("ESPN_BASE_URL", ESPNClient.DEFAULT_BASE_URL),
            http_timeout=_env_number("HTTP_TIMEOUT", "15.0", float),
            http_max_retries=_env_number("HTTP_MAX_RETRIES", "2", int),
            timezone=os.getenv("GAME_TIMEZONE", "America/New_York"),
            headless=_env_bool("HEADLESS", "true"),
            page_url=os.getenv("PAGE_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
    except ConfigError:
        raise
    except ValueError as e:
        # pydantic.ValidationError is a ValueError; ConfigError raised inside
        # a validator arrives wrapped in one
        raise ConfigError(str(e)) from e
