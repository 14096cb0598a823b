# src/core/bookings/repository.py
"""
Репозиторий для работы с бронированиями в БД.

Все переходы статуса выполняются условным UPDATE ... WHERE status = ANY(...):
из двух конкурирующих переходов одной брони проходит ровно один.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import asyncpg
from asyncpg import Record
from pydantic import BaseModel

from src.common.constants import BookingStatus
from src.core.bookings.models import Booking
from src.infra.database import DatabaseManager, QueryRunner

BOOKING_COLUMNS = """
    id, trip_id, passenger_id, status, seats, price_per_seat, price_total,
    commission_amount, currency, payment_status, payment_id, payment_attempts, refund_id,
    refund_amount, penalty_amount, qr_code, pnr_code, item_type, item_details,
    segment_context, passenger_note, rejection_reason, cancellation_reason,
    created_at, updated_at, accepted_at, rejected_at, expires_at, payment_due_at,
    paid_at, checked_in_at, completed_at, completion_source, cancelled_at,
    expired_at, dispute_status, dispute_reason, dispute_raised_by,
    dispute_opened_at, dispute_deadline_at, payout_10_released_at,
    payout_90_released_at, payout_hold_reason
"""

# Колонки, которые сервис может менять при переходе
UPDATABLE_COLUMNS: frozenset[str] = frozenset({
    "status", "payment_status", "payment_id", "refund_id", "refund_amount",
    "penalty_amount", "rejection_reason", "cancellation_reason", "accepted_at",
    "rejected_at", "expires_at", "payment_due_at", "paid_at", "checked_in_at",
    "completed_at", "completion_source", "cancelled_at", "expired_at",
    "dispute_status", "dispute_reason", "dispute_raised_by", "dispute_opened_at",
    "dispute_deadline_at", "payout_hold_reason",
})

CODE_CONSTRAINTS = ("uq_bookings_qr_code", "uq_bookings_pnr_code")


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class BookingRepository:
    """Репозиторий бронирований."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    def _runner(self, conn: QueryRunner | None) -> QueryRunner:
        return conn or self._db

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_by_id(self, booking_id: str, conn: QueryRunner | None = None) -> Optional[Booking]:
        """Получает бронирование по ID."""
        row = await self._runner(conn).fetchrow(
            f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE id = $1",
            booking_id,
        )
        return self._row_to_booking(row) if row else None

    async def get_by_qr(self, qr_code: str, conn: QueryRunner | None = None) -> Optional[Booking]:
        """Получает бронирование по QR коду."""
        row = await self._runner(conn).fetchrow(
            f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE qr_code = $1",
            qr_code,
        )
        return self._row_to_booking(row) if row else None

    async def get_by_pnr(self, pnr_code: str, conn: QueryRunner | None = None) -> Optional[Booking]:
        """Получает бронирование по PNR."""
        row = await self._runner(conn).fetchrow(
            f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE pnr_code = $1",
            pnr_code,
        )
        return self._row_to_booking(row) if row else None

    async def list_by_passenger(self, passenger_id: str) -> list[Booking]:
        """Бронирования пассажира, новые первыми."""
        rows = await self._db.fetch(
            f"""
            SELECT {BOOKING_COLUMNS} FROM bookings
            WHERE passenger_id = $1
            ORDER BY created_at DESC
            """,
            passenger_id,
        )
        return [self._row_to_booking(row) for row in rows]

    async def list_by_trip(
        self,
        trip_id: str,
        statuses: Iterable[BookingStatus] | None = None,
        conn: QueryRunner | None = None,
    ) -> list[Booking]:
        """Бронирования поездки (опционально только в указанных статусах)."""
        if statuses is None:
            rows = await self._runner(conn).fetch(
                f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE trip_id = $1 ORDER BY created_at DESC",
                trip_id,
            )
        else:
            rows = await self._runner(conn).fetch(
                f"""
                SELECT {BOOKING_COLUMNS} FROM bookings
                WHERE trip_id = $1 AND status = ANY($2::text[])
                ORDER BY created_at DESC
                """,
                trip_id,
                [s.value for s in statuses],
            )
        return [self._row_to_booking(row) for row in rows]

    async def find_expired_holds(self, now: datetime, limit: int) -> list[Booking]:
        """
        Брони с истёкшим дедлайном: pending после expires_at
        и awaiting_payment после payment_due_at.
        """
        rows = await self._db.fetch(
            f"""
            SELECT {BOOKING_COLUMNS} FROM bookings
            WHERE (status = 'pending' AND expires_at <= $1)
               OR (status = 'awaiting_payment' AND payment_due_at <= $1)
            ORDER BY created_at
            LIMIT $2
            """,
            now,
            limit,
        )
        return [self._row_to_booking(row) for row in rows]

    async def find_auto_complete_candidates(
        self,
        now: datetime,
        delay_minutes: int,
        fallback_hours: int,
        limit: int,
    ) -> list[Booking]:
        """
        checked_in брони, у которых прошло прибытие поездки + задержка.
        Без расчётного прибытия берётся отправление + fallback часов.
        """
        rows = await self._db.fetch(
            f"""
            SELECT {", ".join(f"b.{c.strip()}" for c in BOOKING_COLUMNS.split(","))}
            FROM bookings b
            JOIN trips t ON t.id = b.trip_id
            WHERE b.status = 'checked_in'
              AND COALESCE(t.estimated_arrival_time, t.departure_time + $2::interval)
                  + $3::interval <= $1
            ORDER BY b.checked_in_at
            LIMIT $4
            """,
            now,
            timedelta(hours=fallback_hours),
            timedelta(minutes=delay_minutes),
            limit,
        )
        return [self._row_to_booking(row) for row in rows]

    async def find_settlement_candidates(self, limit: int) -> list[Booking]:
        """Оплаченные checked_in/completed брони с невыплаченным этапом."""
        rows = await self._db.fetch(
            f"""
            SELECT {BOOKING_COLUMNS} FROM bookings
            WHERE payment_status = 'paid'
              AND status IN ('checked_in', 'completed')
              AND (payout_10_released_at IS NULL OR payout_90_released_at IS NULL)
            ORDER BY COALESCE(completed_at, checked_in_at)
            LIMIT $1
            """,
            limit,
        )
        return [self._row_to_booking(row) for row in rows]

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def insert(self, booking: Booking, conn: QueryRunner | None = None) -> Optional[Booking]:
        """
        Сохраняет новое бронирование.

        Returns:
            Сохранённое бронирование или None, если QR/PNR код уже занят
        """
        try:
            row = await self._runner(conn).fetchrow(
                f"""
                INSERT INTO bookings (
                    id, trip_id, passenger_id, status, seats, price_per_seat, price_total,
                    commission_amount, currency, payment_status, qr_code, pnr_code,
                    item_type, item_details, segment_context, passenger_note,
                    expires_at, payment_due_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18)
                RETURNING {BOOKING_COLUMNS}
                """,
                booking.id,
                booking.trip_id,
                booking.passenger_id,
                booking.status.value,
                booking.seats,
                booking.price_per_seat,
                booking.price_total,
                booking.commission_amount,
                booking.currency,
                booking.payment_status.value,
                booking.qr_code,
                booking.pnr_code,
                booking.item_type.value,
                _db_value(booking.item_details),
                _db_value(booking.segment_context),
                booking.passenger_note,
                booking.expires_at,
                booking.payment_due_at,
            )
        except asyncpg.UniqueViolationError as e:
            if getattr(e, "constraint_name", None) in CODE_CONSTRAINTS:
                return None
            raise
        return self._row_to_booking(row)

    async def update_if_status(
        self,
        booking_id: str,
        expected: Iterable[BookingStatus],
        changes: Mapping[str, Any],
        conn: QueryRunner | None = None,
    ) -> Optional[Booking]:
        """
        Условный переход: изменения применяются, только если текущий статус
        входит в `expected`.

        Returns:
            Обновлённое бронирование или None, если статус уже другой
        """
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Неизменяемые колонки: {sorted(unknown)}")

        columns = list(changes)
        assignments = ", ".join(f"{col} = ${i + 3}" for i, col in enumerate(columns))
        row = await self._runner(conn).fetchrow(
            f"""
            UPDATE bookings
            SET {assignments}, updated_at = NOW()
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING {BOOKING_COLUMNS}
            """,
            booking_id,
            [s.value for s in expected],
            *(_db_value(changes[col]) for col in columns),
        )
        return self._row_to_booking(row) if row else None

    async def next_payment_attempt(self, booking_id: str, conn: QueryRunner | None = None) -> Optional[int]:
        """
        Атомарно увеличивает счётчик попыток оплаты awaiting_payment брони.

        Returns:
            Номер новой попытки или None, если бронь уже не ждёт оплаты
        """
        return await self._runner(conn).fetchval(
            """
            UPDATE bookings
            SET payment_attempts = payment_attempts + 1, updated_at = NOW()
            WHERE id = $1 AND status = 'awaiting_payment'
            RETURNING payment_attempts
            """,
            booking_id,
        )

    async def stamp_payout_released(
        self,
        booking_id: str,
        stage: int,
        released_at: datetime,
        conn: QueryRunner | None = None,
    ) -> bool:
        """
        Отмечает выплату этапа, только если он ещё не отмечен.

        Returns:
            True если отметка поставлена этим вызовом
        """
        column = "payout_10_released_at" if stage == 10 else "payout_90_released_at"
        row = await self._runner(conn).fetchrow(
            f"""
            UPDATE bookings
            SET {column} = $2, payout_hold_reason = NULL, updated_at = NOW()
            WHERE id = $1 AND {column} IS NULL
            RETURNING id
            """,
            booking_id,
            released_at,
        )
        return row is not None

    async def set_payout_hold_reason(
        self,
        booking_id: str,
        reason: str | None,
        conn: QueryRunner | None = None,
    ) -> None:
        """Записывает причину удержания выплаты."""
        await self._runner(conn).execute(
            "UPDATE bookings SET payout_hold_reason = $2, updated_at = NOW() WHERE id = $1",
            booking_id,
            reason,
        )

    @staticmethod
    def _row_to_booking(row: Record) -> Booking:
        return Booking.model_validate(dict(row))
