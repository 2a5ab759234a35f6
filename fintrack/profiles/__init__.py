"""Profiles package: registration, email uniqueness and notifications."""

from fintrack.profiles.notifications import NotificationService
from fintrack.profiles.service import ProfileService, normalize_email

__all__ = ["NotificationService", "ProfileService", "normalize_email"]
