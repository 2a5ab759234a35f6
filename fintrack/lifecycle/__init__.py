"""Account lifecycle workflows: user deletion and last wish delivery."""

from fintrack.lifecycle.deletion import DELETION_STEPS, STEP_NAMES, UserDeletionWorkflow
from fintrack.lifecycle.last_wish import EXPORT_FILE_NAME, LastWishService

__all__ = [
    "DELETION_STEPS",
    "EXPORT_FILE_NAME",
    "LastWishService",
    "STEP_NAMES",
    "UserDeletionWorkflow",
]
