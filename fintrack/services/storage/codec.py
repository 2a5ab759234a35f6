"""
Record codec shared by the storage backends.

Knows how a pydantic record maps onto flat columns: which fields hold
nested JSON, how criteria match a record, and how a record becomes a
spreadsheet row and back.
"""

import json
import types
from datetime import date, datetime
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Optional, Union, get_args, get_origin

from pydantic import BaseModel


def _strip_annotated(annotation: Any) -> Any:
    if get_origin(annotation) is Annotated:
        return get_args(annotation)[0]
    return annotation


def unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """
    Return (inner type, is_optional) for Optional[X] / X | None.

    Annotated metadata is dropped on both sides, so Optional[Money]
    unwraps to Decimal.
    """
    annotation = _strip_annotated(annotation)
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return _strip_annotated(args[0]), True
    return annotation, False


def is_json_annotation(annotation: Any) -> bool:
    inner, _ = unwrap_optional(annotation)
    origin = get_origin(inner) or inner
    if origin in (list, dict, tuple, set):
        return True
    return isinstance(origin, type) and issubclass(origin, BaseModel)


@lru_cache(maxsize=None)
def json_fields(model: type[BaseModel]) -> frozenset[str]:
    """Fields stored as a JSON document rather than a scalar column."""
    return frozenset(
        name
        for name, field in model.model_fields.items()
        if is_json_annotation(field.annotation)
    )


def columns_for(model: type[BaseModel]) -> list[str]:
    return list(model.model_fields)


def default_order_field(model: type[BaseModel]) -> str:
    if "created_at" in model.model_fields:
        return "created_at"
    if "timestamp" in model.model_fields:
        return "timestamp"
    return "id"


# =============================================================================
# MATCHING
# =============================================================================

def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def matches(record: BaseModel, criteria: dict[str, Any]) -> bool:
    """
    Check a record against field criteria.

    A list/tuple/set value means "one of"; None means "is missing".
    """
    for field, expected in criteria.items():
        actual = _plain(getattr(record, field))
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in {_plain(v) for v in expected}:
                return False
        elif expected is None:
            if actual is not None:
                return False
        elif actual != _plain(expected):
            return False
    return True


def sort_records(
    records: list[BaseModel],
    order_by: str,
    descending: bool = False,
) -> list[BaseModel]:
    """Sort on one field; missing values always sort last."""
    present = [r for r in records if getattr(r, order_by) is not None]
    missing = [r for r in records if getattr(r, order_by) is None]
    present.sort(key=lambda r: _sortable(getattr(r, order_by)), reverse=descending)
    return present + missing


def _sortable(value: Any) -> Any:
    # date and datetime do not compare with each other
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return _plain(value)


def paginate(records: list, limit: Optional[int], offset: int) -> list:
    if limit is None:
        return records[offset:]
    return records[offset:offset + limit]


# =============================================================================
# SPREADSHEET ROWS
# =============================================================================

def record_to_row(record: BaseModel, columns: list[str]) -> list[str]:
    """
    Convert a record to a spreadsheet row.

    Nested fields are JSON-serialized, None becomes an empty cell and
    everything else is written as its JSON-mode string form.
    """
    data = record.model_dump(mode="json")
    nested = json_fields(type(record))
    row = []
    for column in columns:
        value = data.get(column)
        if value is None:
            row.append("")
        elif column in nested:
            row.append(json.dumps(value))
        elif isinstance(value, bool):
            row.append("true" if value else "false")
        else:
            row.append(str(value))
    return row


def row_to_record(
    model: type[BaseModel],
    header: list[str],
    row: list[str],
) -> BaseModel:
    """
    Convert a spreadsheet row back into a record.

    Empty cells are left out so the model default applies; pydantic
    parses the remaining strings into their field types.
    """
    nested = json_fields(model)
    data: dict[str, Any] = {}
    for index, column in enumerate(header):
        if column not in model.model_fields:
            continue
        cell = row[index] if index < len(row) else ""
        if cell == "":
            continue
        data[column] = json.loads(cell) if column in nested else cell
    return model.model_validate(data)
