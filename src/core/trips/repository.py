# src/core/trips/repository.py
"""
Репозиторий для работы с поездками в БД.
"""

from __future__ import annotations

from typing import Iterable, Optional

from asyncpg import Record

from src.common.constants import TripStatus
from src.core.trips.models import SeatRelease, SeatReservation, Trip
from src.infra.database import DatabaseManager, QueryRunner

TRIP_COLUMNS = """
    id, driver_id, status, booking_type, total_seats, available_seats,
    price_per_seat, currency, departure_time, estimated_arrival_time,
    departure_city, departure_lat, departure_lng,
    arrival_city, arrival_lat, arrival_lng, via_cities,
    cancelled_at, created_at, updated_at
"""


class TripRepository:
    """
    Репозиторий поездок.

    Каждый метод принимает опциональное соединение `conn`, чтобы
    работать внутри транзакции вызывающего сервиса.
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    def _runner(self, conn: QueryRunner | None) -> QueryRunner:
        return conn or self._db

    async def get_by_id(self, trip_id: str, conn: QueryRunner | None = None) -> Optional[Trip]:
        """Получает поездку по ID."""
        row = await self._runner(conn).fetchrow(
            f"SELECT {TRIP_COLUMNS} FROM trips WHERE id = $1",
            trip_id,
        )
        return self._row_to_trip(row) if row else None

    async def create(self, trip: Trip, conn: QueryRunner | None = None) -> Trip:
        """Сохраняет новую поездку."""
        row = await self._runner(conn).fetchrow(
            f"""
            INSERT INTO trips (
                id, driver_id, status, booking_type, total_seats, available_seats,
                price_per_seat, currency, departure_time, estimated_arrival_time,
                departure_city, departure_lat, departure_lng,
                arrival_city, arrival_lat, arrival_lng, via_cities
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
            RETURNING {TRIP_COLUMNS}
            """,
            trip.id,
            trip.driver_id,
            trip.status.value,
            trip.booking_type.value,
            trip.total_seats,
            trip.available_seats,
            trip.price_per_seat,
            trip.currency,
            trip.departure_time,
            trip.estimated_arrival_time,
            trip.departure_city,
            trip.departure_lat,
            trip.departure_lng,
            trip.arrival_city,
            trip.arrival_lat,
            trip.arrival_lng,
            [stop.model_dump() for stop in trip.via_cities],
        )
        return self._row_to_trip(row)

    async def try_reserve_seats(
        self,
        trip_id: str,
        seats: int,
        conn: QueryRunner | None = None,
    ) -> SeatReservation:
        """
        Атомарно списывает места одним условным UPDATE.

        Условие в WHERE и вычитание выполняются одной командой, поэтому
        две конкурентные брони последнего места не могут пройти обе.
        """
        row = await self._runner(conn).fetchrow(
            """
            UPDATE trips
            SET available_seats = available_seats - $2,
                status = CASE WHEN available_seats - $2 = 0 THEN 'full' ELSE status END,
                updated_at = NOW()
            WHERE id = $1
              AND available_seats >= $2
              AND status IN ('published', 'full')
            RETURNING available_seats, status
            """,
            trip_id,
            seats,
        )
        if row is None:
            return SeatReservation(ok=False)
        return SeatReservation(
            ok=True,
            available_seats=row["available_seats"],
            status=TripStatus(row["status"]),
        )

    async def release_seats(
        self,
        trip_id: str,
        seats: int,
        conn: QueryRunner | None = None,
    ) -> Optional[SeatRelease]:
        """
        Атомарно возвращает места, не превышая вместимость.
        Заполненная поездка снова становится published; отменённая и завершённая
        сохраняют статус.
        """
        row = await self._runner(conn).fetchrow(
            """
            WITH prev AS (
                SELECT id, available_seats FROM trips WHERE id = $1 FOR UPDATE
            )
            UPDATE trips t
            SET available_seats = LEAST(t.total_seats, t.available_seats + $2),
                status = CASE WHEN t.status = 'full' THEN 'published' ELSE t.status END,
                updated_at = NOW()
            FROM prev
            WHERE t.id = prev.id
            RETURNING t.available_seats, t.status,
                      (prev.available_seats + $2 > t.total_seats) AS clamped
            """,
            trip_id,
            seats,
        )
        if row is None:
            return None
        return SeatRelease(
            available_seats=row["available_seats"],
            status=TripStatus(row["status"]),
            clamped=bool(row["clamped"]),
        )

    async def update_status_if(
        self,
        trip_id: str,
        new_status: TripStatus,
        expected: Iterable[TripStatus],
        conn: QueryRunner | None = None,
    ) -> Optional[Trip]:
        """Меняет статус, только если текущий входит в `expected`."""
        row = await self._runner(conn).fetchrow(
            f"""
            UPDATE trips
            SET status = $2,
                cancelled_at = CASE WHEN $2 = 'cancelled' THEN NOW() ELSE cancelled_at END,
                updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {TRIP_COLUMNS}
            """,
            trip_id,
            new_status.value,
            [s.value for s in expected],
        )
        return self._row_to_trip(row) if row else None

    async def seats_held(self, trip_id: str, conn: QueryRunner | None = None) -> int:
        """Сумма мест, удерживаемых бронированиями поездки."""
        value = await self._runner(conn).fetchval(
            """
            SELECT COALESCE(SUM(seats), 0) FROM bookings
            WHERE trip_id = $1
              AND status IN ('confirmed', 'checked_in', 'completed', 'disputed')
            """,
            trip_id,
        )
        return int(value or 0)

    @staticmethod
    def _row_to_trip(row: Record) -> Trip:
        data = dict(row)
        data["via_cities"] = data.get("via_cities") or []
        return Trip.model_validate(data)
