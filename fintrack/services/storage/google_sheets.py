"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets remains a supported backend because:
1. Non-technical users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions or foreign keys (we handle this with careful ordering)
- Limited query capabilities (we filter in Python)

One worksheet per table, created on demand with a header row taken
from the record model. The header of an existing sheet decides column
order, so columns can be added to a model without rewriting old sheets.
"""

from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from fintrack.config import GoogleSheetsSettings, get_settings
from fintrack.models.finance import Profile
from fintrack.models.tables import Table, model_for, owner_field
from fintrack.services.storage.codec import (
    columns_for,
    default_order_field,
    matches,
    paginate,
    record_to_row,
    row_to_record,
    sort_records,
)
from fintrack.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
    TableActivityStorage,
)


logger = structlog.get_logger()

_sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._sheets: dict[Table, gspread.Worksheet] = {}

    @_sheets_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def worksheet_name(self, table: Table) -> str:
        return f"{self._settings.worksheet_prefix}{table.value}"

    def get_table_sheet(self, table: Table) -> gspread.Worksheet:
        """Get or create the worksheet backing a table."""
        if table in self._sheets:
            return self._sheets[table]

        spreadsheet = self.get_spreadsheet()
        name = self.worksheet_name(table)
        try:
            sheet = spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            columns = columns_for(model_for(table))
            sheet = spreadsheet.add_worksheet(
                title=name,
                rows=5000 if table == Table.ACTIVITY_HISTORY else 1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
            logger.info("worksheet_created", worksheet=name)
        self._sheets[table] = sheet
        return sheet


class GoogleSheetsStorage(FinanceStorageInterface, TableActivityStorage):
    """
    Google Sheets implementation of record and activity storage.

    Records are stored one per row. Nested fields (tags, steps,
    snapshots, recipients) are JSON-serialized into a single cell.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # =========================================================================
    # RAW SHEET ACCESS
    # =========================================================================

    @_sheets_retry
    def _read_table(self, table: Table) -> tuple[list[str], list[list[str]]]:
        """Return (header, data rows) for a table."""
        values = self._client.get_table_sheet(table).get_all_values()
        if not values:
            return columns_for(model_for(table)), []
        return values[0], values[1:]

    @_sheets_retry
    def _append(self, table: Table, row: list[str]) -> None:
        self._client.get_table_sheet(table).append_row(row, value_input_option="RAW")

    @_sheets_retry
    def _write_row(self, table: Table, row_number: int, row: list[str]) -> None:
        sheet = self._client.get_table_sheet(table)
        # Update each cell in the row
        for col_idx, value in enumerate(row, start=1):
            sheet.update_cell(row_number, col_idx, value)

    @_sheets_retry
    def _delete_row(self, table: Table, row_number: int) -> None:
        self._client.get_table_sheet(table).delete_rows(row_number)

    def _load(self, table: Table) -> tuple[list[str], list[tuple[int, BaseModel]]]:
        """
        Parse every row of a table.

        Returns the header and (sheet row number, record) pairs. Row 1
        is the header, so data starts at row 2.
        """
        try:
            header, rows = self._read_table(table)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table.value}: {e}")

        model = model_for(table)
        records = []
        for row_number, row in enumerate(rows, start=2):
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                records.append((row_number, row_to_record(model, header, row)))
            except ValueError as e:
                logger.warning(
                    "sheet_row_skipped",
                    table=table.value,
                    row=row_number,
                    error=str(e),
                )
        return header, records

    def _find(self, table: Table, record_id: UUID) -> tuple[list[str], Optional[int], Optional[BaseModel]]:
        header, records = self._load(table)
        for row_number, record in records:
            if record.id == record_id:
                return header, row_number, record
        return header, None, None

    def _select(
        self,
        table: Table,
        user_id: Optional[UUID],
        criteria: dict[str, Any],
    ) -> list[tuple[int, BaseModel]]:
        criteria = dict(criteria)
        if user_id is not None:
            owner = owner_field(table)
            if owner is None:
                raise StorageError(f"{table.value} has no owner column")
            criteria[owner] = user_id
        _, records = self._load(table)
        return [(n, r) for n, r in records if matches(r, criteria)]

    # =========================================================================
    # INTERFACE
    # =========================================================================

    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        header, row_number, _ = self._find(table, record.id)
        if row_number is not None:
            raise DuplicateError(f"{table.value} already has a record {record.id}")
        try:
            self._append(table, record_to_row(record, header))
        except Exception as e:
            raise StorageError(f"Failed to insert into {table.value}: {e}")
        return record

    async def get(self, table: Table, record_id: UUID) -> Optional[BaseModel]:
        _, _, record = self._find(table, record_id)
        return record

    async def update(self, table: Table, record: BaseModel) -> BaseModel:
        header, row_number, _ = self._find(table, record.id)
        if row_number is None:
            raise NotFoundError(f"{table.value} has no record {record.id}")
        try:
            self._write_row(table, row_number, record_to_row(record, header))
        except Exception as e:
            raise StorageError(f"Failed to update {table.value}: {e}")
        return record

    async def delete(self, table: Table, record_id: UUID) -> bool:
        _, row_number, _ = self._find(table, record_id)
        if row_number is None:
            return False
        try:
            self._delete_row(table, row_number)
        except Exception as e:
            raise StorageError(f"Failed to delete from {table.value}: {e}")
        return True

    async def list_records(
        self,
        table: Table,
        user_id: Optional[UUID] = None,
        filters: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[BaseModel]:
        records = [r for _, r in self._select(table, user_id, filters or {})]
        records = sort_records(
            records,
            order_by or default_order_field(model_for(table)),
            descending,
        )
        return paginate(records, limit, offset)

    async def delete_where(self, table: Table, **criteria: Any) -> int:
        doomed = self._select(table, None, criteria)
        try:
            # Bottom-up so earlier row numbers stay valid
            for row_number, _ in sorted(doomed, key=lambda pair: pair[0], reverse=True):
                self._delete_row(table, row_number)
        except Exception as e:
            raise StorageError(f"Failed to delete from {table.value}: {e}")
        return len(doomed)

    async def count(self, table: Table, **criteria: Any) -> int:
        return len(self._select(table, None, criteria))

    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        wanted = email.strip().lower()
        _, records = self._load(Table.PROFILES)
        for _, profile in records:
            if profile.email.strip().lower() == wanted:
                return profile
        return None
