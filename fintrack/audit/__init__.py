"""Activity logging package."""

from fintrack.audit.logger import ActivityLogger, create_correlation_id

__all__ = ["ActivityLogger", "create_correlation_id"]
