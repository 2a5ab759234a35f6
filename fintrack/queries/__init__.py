"""Report execution package."""

from fintrack.queries.executor import ReportExecutor

__all__ = ["ReportExecutor"]
