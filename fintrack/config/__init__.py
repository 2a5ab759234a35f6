"""Configuration package."""

from fintrack.config.settings import (
    AppSettings,
    CloudinarySettings,
    DatabaseSettings,
    GoogleSheetsSettings,
    Settings,
    SmtpSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CloudinarySettings",
    "DatabaseSettings",
    "GoogleSheetsSettings",
    "Settings",
    "SmtpSettings",
    "get_settings",
    "validate_all_settings",
]
