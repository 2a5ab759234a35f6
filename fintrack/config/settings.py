"""
Configuration Management for fintrack

Every setting fintrack reads lives in this module, one BaseSettings class
per external concern (database, Google Sheets, SMTP, Cloudinary) plus the
application section.

DESIGN DECISION: Sections are built on first access. A memory-backed
install runs with nothing but defaults, and a misconfigured section only
fails the code path that needs it.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQL storage backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///fintrack.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    worksheet_prefix: str = Field(
        default="",
        description="Prefix added to every worksheet (table) name"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Missing credentials only warn: the file may be mounted after startup."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "The google_sheets backend will fail until it is present."
            )
        return v


class SmtpSettings(BaseSettings):
    """Outgoing mail for last-wish deliveries."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore"
    )

    host: str = Field(default="smtp.gmail.com")
    port: int = Field(default=587, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = Field(
        default=None,
        description="From address; defaults to the username"
    )
    use_tls: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0)

    @property
    def from_address(self) -> str:
        return self.sender or self.username or "no-reply@localhost"


class CloudinarySettings(BaseSettings):
    """Cloudinary file storage for purchase attachments."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Account cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="fintrack",
        description="Root folder for uploaded attachments"
    )


class AppSettings(BaseSettings):
    """Core behaviour: backend choice, currency, ids, thresholds, workflows."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="development, staging or production"
    )
    debug_mode: bool = Field(
        default=False,
        description="Verbose logging and relaxed checks"
    )

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|sql|google_sheets)$",
        description="Which storage backend to use"
    )

    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
    )
    transaction_id_prefix: str = Field(
        default="F",
        min_length=1,
        max_length=3,
        description="Prefix of human-facing transaction ids"
    )

    # Validation thresholds
    max_transaction_amount: float = Field(
        default=10000000.0,
        description="Amounts above this are flagged for review"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a transaction date can be"
    )

    # Workflows
    deletion_step_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per deletion step before the job is marked failed"
    )
    last_wish_default_frequency_days: int = Field(
        default=30,
        ge=1,
        le=3650,
    )
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum attachment size in MB"
    )

    @property
    def max_upload_size_bytes(self) -> int:
        """Upload limit in bytes, as the attachment store expects it."""
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """Entry point to every settings section."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration:
    # a memory-backed install needs no Google or Cloudinary credentials.

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def smtp(self) -> SmtpSettings:
        return SmtpSettings()

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide Settings. Tests call get_settings.cache_clear() after changing env vars."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to load every section.

    Returns {section: loaded}, plus {section}_error holding the message
    for each section that failed. Backs the verify-settings command.
    """
    results = {}

    settings = get_settings()

    for name in ("app", "database", "smtp", "google_sheets", "cloudinary"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
