"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Memory, SQL (SQLAlchemy) and Google Sheets backends implement the same
interfaces and are swappable through configuration.
"""

from fintrack.services.storage.interface import (
    ActivityStorageInterface,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    IntegrityError,
    NotFoundError,
    StorageError,
    TableActivityStorage,
)
from fintrack.services.storage.memory import InMemoryStorage
from fintrack.services.storage.sql import SqlAlchemyStorage
from fintrack.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsStorage,
)

__all__ = [
    # Interfaces
    "ActivityStorageInterface",
    "FinanceStorageInterface",
    "TableActivityStorage",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "IntegrityError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsStorage",
    "InMemoryStorage",
    "SqlAlchemyStorage",
]
