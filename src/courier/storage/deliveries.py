"""Delivery storage operations for Courier.

Every change to a delivery is written together with its log entry in a
single transaction, so the record and its audit trail never disagree.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courier.exceptions import InvalidTransitionError, NotFoundError
from courier.models import (
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryLogEntry,
    DeliveryStatus,
    EndpointStatus,
    ensure_utc,
)

from .log import log_entry_to_row
from .retry import storage_retry
from .tables import DeliveryLogRow, DeliveryRow, EndpointRow

_TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


def delivery_to_values(delivery: DeliveryAttempt) -> dict[str, Any]:
    return {
        "id": delivery.id,
        "endpoint_id": delivery.endpoint_id,
        "event_id": delivery.event_id,
        "event_type": delivery.event_type,
        "payload": delivery.payload,
        "status": delivery.status.value,
        "attempt_count": delivery.attempt_count,
        "response_code": delivery.response_code,
        "response_time_ms": delivery.response_time_ms,
        "error_message": delivery.error_message,
        "next_attempt_at": delivery.next_attempt_at,
        "replay_of": delivery.replay_of,
        "created_at": delivery.created_at,
        "updated_at": delivery.updated_at,
        "completed_at": delivery.completed_at,
    }


def row_to_delivery(row: DeliveryRow) -> DeliveryAttempt:
    return DeliveryAttempt(
        id=row.id,
        endpoint_id=row.endpoint_id,
        event_id=row.event_id,
        event_type=row.event_type,
        payload=row.payload,
        status=DeliveryStatus(row.status),
        attempt_count=row.attempt_count,
        response_code=row.response_code,
        response_time_ms=row.response_time_ms,
        error_message=row.error_message,
        next_attempt_at=ensure_utc(row.next_attempt_at),
        replay_of=row.replay_of,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        completed_at=ensure_utc(row.completed_at),
    )


def creation_entry(delivery: DeliveryAttempt) -> DeliveryLogEntry:
    """Log entry recording that a delivery was created."""
    return DeliveryLogEntry(
        delivery_id=delivery.id,
        endpoint_id=delivery.endpoint_id,
        event_type=delivery.event_type,
        attempt_number=delivery.attempt_count,
        from_status=None,
        to_status=delivery.status,
        recorded_at=delivery.created_at,
    )


def transition_entry(delivery: DeliveryAttempt, from_status: DeliveryStatus) -> DeliveryLogEntry:
    """Log entry for a status change without an attempt outcome."""
    return DeliveryLogEntry(
        delivery_id=delivery.id,
        endpoint_id=delivery.endpoint_id,
        event_type=delivery.event_type,
        attempt_number=delivery.attempt_count,
        from_status=from_status,
        to_status=delivery.status,
        next_attempt_at=delivery.next_attempt_at,
        recorded_at=delivery.updated_at,
    )


class DeliveryMixin:
    """Mixin providing delivery operations for CourierStorage.

    This mixin expects the following from the base class:
    - transaction() -> async context manager yielding an AsyncSession
    """

    transaction: Any

    @storage_retry
    async def create_deliveries(self, deliveries: list[DeliveryAttempt]) -> None:
        """Insert new deliveries and their creation log entries atomically."""
        if not deliveries:
            return
        async with self.transaction() as session:
            # Insertion sequence breaks created_at ties so FIFO order is stable
            seq = (await session.execute(select(func.max(DeliveryRow.seq)))).scalar() or 0
            for delivery in deliveries:
                seq += 1
                session.add(DeliveryRow(seq=seq, **delivery_to_values(delivery)))
                session.add(log_entry_to_row(creation_entry(delivery)))

    @storage_retry
    async def save_delivery(
        self,
        delivery: DeliveryAttempt,
        entry: DeliveryLogEntry | None = None,
    ) -> DeliveryAttempt:
        """Persist a delivery's new state and append its log entry.

        Raises:
            NotFoundError: If the delivery does not exist.
            InvalidTransitionError: If the stored record is already terminal.
        """
        async with self.transaction() as session:
            await self._update_delivery(session, delivery)
            if entry is not None:
                session.add(log_entry_to_row(entry))
        return delivery

    async def _update_delivery(self, session: AsyncSession, delivery: DeliveryAttempt) -> None:
        values = delivery_to_values(delivery)
        values.pop("id")
        values.pop("payload")
        result = await session.execute(
            update(DeliveryRow)
            .where(DeliveryRow.id == delivery.id)
            .where(DeliveryRow.status.not_in(_TERMINAL_VALUES))
            .values(**values)
        )
        if result.rowcount == 0:
            row = await session.get(DeliveryRow, delivery.id)
            if row is None:
                raise NotFoundError("delivery", delivery.id)
            raise InvalidTransitionError(delivery.id, row.status, delivery.status.value)

    @storage_retry
    async def get_delivery(self, delivery_id: str) -> DeliveryAttempt | None:
        async with self.transaction() as session:
            row = await session.get(DeliveryRow, delivery_id)
            return row_to_delivery(row) if row is not None else None

    @storage_retry
    async def list_deliveries(
        self,
        endpoint_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """List deliveries, newest first."""
        stmt = select(DeliveryRow).order_by(
            DeliveryRow.created_at.desc(), DeliveryRow.seq.desc()
        )
        if endpoint_id is not None:
            stmt = stmt.where(DeliveryRow.endpoint_id == endpoint_id)
        if status is not None:
            stmt = stmt.where(DeliveryRow.status == status.value)
        stmt = stmt.limit(limit).offset(offset)
        async with self.transaction() as session:
            result = await session.execute(stmt)
            return [row_to_delivery(row) for row in result.scalars().all()]

    @storage_retry
    async def pending_deliveries(self, endpoint_id: str | None = None) -> list[DeliveryAttempt]:
        """Pending deliveries in creation order."""
        stmt = (
            select(DeliveryRow)
            .where(DeliveryRow.status == DeliveryStatus.PENDING.value)
            .order_by(DeliveryRow.created_at, DeliveryRow.seq)
        )
        if endpoint_id is not None:
            stmt = stmt.where(DeliveryRow.endpoint_id == endpoint_id)
        async with self.transaction() as session:
            result = await session.execute(stmt)
            return [row_to_delivery(row) for row in result.scalars().all()]

    @storage_retry
    async def due_retries(self, now: datetime, limit: int = 100) -> list[DeliveryAttempt]:
        """RetryWait deliveries of Active endpoints whose next attempt time has passed."""
        stmt = (
            select(DeliveryRow)
            .join(EndpointRow, EndpointRow.id == DeliveryRow.endpoint_id)
            .where(EndpointRow.status == EndpointStatus.ACTIVE.value)
            .where(DeliveryRow.status == DeliveryStatus.RETRY_WAIT.value)
            .where(DeliveryRow.next_attempt_at <= now)
            .order_by(DeliveryRow.next_attempt_at, DeliveryRow.seq)
            .limit(limit)
        )
        async with self.transaction() as session:
            result = await session.execute(stmt)
            return [row_to_delivery(row) for row in result.scalars().all()]

    @storage_retry
    async def revert_to_pending(
        self,
        endpoint_id: str | None,
        statuses: tuple[DeliveryStatus, ...],
        at: datetime,
    ) -> list[DeliveryAttempt]:
        """Move deliveries in the given states back to Pending.

        Used when an endpoint is paused and when recovering records left
        InFlight by a crash. Each reverted record gets a log entry.

        Args:
            endpoint_id: Restrict to one endpoint, or None for all.
            statuses: Non-terminal states to revert.
            at: Transition timestamp.

        Returns:
            The reverted deliveries.
        """
        stmt = select(DeliveryRow).where(DeliveryRow.status.in_([s.value for s in statuses]))
        if endpoint_id is not None:
            stmt = stmt.where(DeliveryRow.endpoint_id == endpoint_id)
        reverted: list[DeliveryAttempt] = []
        async with self.transaction() as session:
            result = await session.execute(stmt.order_by(DeliveryRow.created_at, DeliveryRow.seq))
            for row in result.scalars().all():
                delivery = row_to_delivery(row)
                previous = delivery.transition(DeliveryStatus.PENDING, at=at)
                await self._update_delivery(session, delivery)
                session.add(log_entry_to_row(transition_entry(delivery, previous)))
                reverted.append(delivery)
        return reverted

    @storage_retry
    async def purge_terminal_before(self, cutoff: datetime) -> int:
        """Delete terminal deliveries completed before ``cutoff`` and their log rows.

        Returns:
            Number of deliveries removed.
        """
        async with self.transaction() as session:
            result = await session.execute(
                select(DeliveryRow.id)
                .where(DeliveryRow.status.in_(_TERMINAL_VALUES))
                .where(DeliveryRow.completed_at < cutoff)
            )
            ids = list(result.scalars().all())
            if not ids:
                return 0
            await session.execute(delete(DeliveryLogRow).where(DeliveryLogRow.delivery_id.in_(ids)))
            await session.execute(delete(DeliveryRow).where(DeliveryRow.id.in_(ids)))
            return len(ids)
