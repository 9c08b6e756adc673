"""Delivery log storage operations for Courier.

The log table is insert-only. Rows are added by the delivery operations in
the same transaction as the change they record; these methods only read.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from courier.models import (
    DeliveryLogEntry,
    DeliveryStatus,
    EndpointStats,
    OutcomeKind,
    ensure_utc,
)

from .retry import storage_retry
from .tables import DeliveryLogRow, DeliveryRow

_FAILURE_OUTCOMES = [OutcomeKind.RETRYABLE_FAILURE.value, OutcomeKind.PERMANENT_FAILURE.value]


def log_entry_to_row(entry: DeliveryLogEntry) -> DeliveryLogRow:
    return DeliveryLogRow(
        delivery_id=entry.delivery_id,
        endpoint_id=entry.endpoint_id,
        event_type=entry.event_type,
        attempt_number=entry.attempt_number,
        from_status=entry.from_status.value if entry.from_status else None,
        to_status=entry.to_status.value,
        outcome=entry.outcome.value if entry.outcome else None,
        response_code=entry.response_code,
        response_time_ms=entry.response_time_ms,
        error_message=entry.error_message,
        next_attempt_at=entry.next_attempt_at,
        recorded_at=entry.recorded_at,
    )


def row_to_log_entry(row: DeliveryLogRow) -> DeliveryLogEntry:
    return DeliveryLogEntry(
        id=row.id,
        delivery_id=row.delivery_id,
        endpoint_id=row.endpoint_id,
        event_type=row.event_type,
        attempt_number=row.attempt_number,
        from_status=DeliveryStatus(row.from_status) if row.from_status else None,
        to_status=DeliveryStatus(row.to_status),
        outcome=OutcomeKind(row.outcome) if row.outcome else None,
        response_code=row.response_code,
        response_time_ms=row.response_time_ms,
        error_message=row.error_message,
        next_attempt_at=ensure_utc(row.next_attempt_at),
        recorded_at=ensure_utc(row.recorded_at),
    )


class DeliveryLogMixin:
    """Mixin providing delivery log operations for CourierStorage.

    This mixin expects the following from the base class:
    - transaction() -> async context manager yielding an AsyncSession
    """

    transaction: Any

    @storage_retry
    async def delivery_history(self, delivery_id: str) -> list[DeliveryLogEntry]:
        """All log entries for one delivery, oldest first."""
        async with self.transaction() as session:
            result = await session.execute(
                select(DeliveryLogRow)
                .where(DeliveryLogRow.delivery_id == delivery_id)
                .order_by(DeliveryLogRow.id)
            )
            return [row_to_log_entry(row) for row in result.scalars().all()]

    @storage_retry
    async def recent_log(
        self,
        limit: int = 50,
        endpoint_id: str | None = None,
    ) -> list[DeliveryLogEntry]:
        """Most recent log entries, newest first."""
        stmt = select(DeliveryLogRow).order_by(DeliveryLogRow.id.desc()).limit(limit)
        if endpoint_id is not None:
            stmt = stmt.where(DeliveryLogRow.endpoint_id == endpoint_id)
        async with self.transaction() as session:
            result = await session.execute(stmt)
            return [row_to_log_entry(row) for row in result.scalars().all()]

    @storage_retry
    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        """Success and failure counters plus last-triggered time for an endpoint."""
        async with self.transaction() as session:
            successes = await session.scalar(
                select(func.count(DeliveryLogRow.id))
                .where(DeliveryLogRow.endpoint_id == endpoint_id)
                .where(DeliveryLogRow.to_status == DeliveryStatus.SUCCEEDED.value)
            )
            failures = await session.scalar(
                select(func.count(DeliveryLogRow.id))
                .where(DeliveryLogRow.endpoint_id == endpoint_id)
                .where(DeliveryLogRow.outcome.in_(_FAILURE_OUTCOMES))
            )
            last_triggered = await session.scalar(
                select(func.max(DeliveryRow.created_at)).where(
                    DeliveryRow.endpoint_id == endpoint_id
                )
            )
        return EndpointStats.from_counts(
            endpoint_id=endpoint_id,
            success_count=successes or 0,
            failure_count=failures or 0,
            last_triggered_at=ensure_utc(last_triggered),
        )
