"""
Shared plumbing for the finance services.

Every service talks to the same storage backend and activity logger,
and looks records up the same way.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog

from fintrack.audit import ActivityLogger
from fintrack.errors import RecordNotFoundError
from fintrack.models.finance import quantize_money
from fintrack.models.tables import Table
from fintrack.services.storage import FinanceStorageInterface


T = TypeVar("T")

ZERO = Decimal("0")


class RecordService:
    """Base class holding storage, activity logger and a structured logger."""

    def __init__(
        self,
        storage: FinanceStorageInterface,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self._storage = storage
        self._activity = activity_logger or ActivityLogger()
        self._logger = structlog.get_logger()

    async def _require(
        self,
        table: Table,
        record_id: UUID,
        entity_type: str,
        user_id: Optional[UUID] = None,
    ):
        """
        Fetch a record or raise RecordNotFoundError.

        When user_id is given, a record owned by someone else counts as
        missing.
        """
        record = await self._find(table, record_id, user_id)
        if record is None:
            raise RecordNotFoundError(entity_type, record_id)
        return record

    async def _find(self, table: Table, record_id: UUID, user_id: Optional[UUID] = None):
        """Like _require, but returns None instead of raising."""
        record = await self._storage.get(table, record_id)
        if record is None:
            return None
        if user_id is not None and getattr(record, "user_id", user_id) != user_id:
            self._logger.warning(
                "record_owner_mismatch",
                table=table.value,
                record_id=str(record_id),
                user_id=str(user_id),
            )
            return None
        return record


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return quantize_money(sum(values, ZERO))


def percentage(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return round(float(part / whole * 100), 2)


def group_totals(
    items: Iterable[T],
    key: Callable[[T], str],
    amount: Callable[[T], Decimal],
) -> dict[str, tuple[Decimal, int]]:
    """Group items into {key: (total, count)}."""
    totals: dict[str, list] = defaultdict(lambda: [ZERO, 0])
    for item in items:
        bucket = totals[key(item)]
        bucket[0] += amount(item)
        bucket[1] += 1
    return {k: (quantize_money(v[0]), v[1]) for k, v in totals.items()}
