# src/core/trips/seat_guard.py
"""
Страж мест поездки.

Единственный легитимный писатель trips.available_seats: списание и
возврат выполняются одним условным UPDATE, без чтения-затем-записи.
"""

from __future__ import annotations

from src.common.constants import TypeMsg
from src.common.exceptions import ValidationError
from src.common.logger import log_info, log_warning
from src.core.trips.models import SeatRelease, SeatReservation
from src.core.trips.repository import TripRepository
from src.infra.database import QueryRunner


class SeatInventoryGuard:
    """Атомарное резервирование и освобождение мест."""

    def __init__(self, trips: TripRepository) -> None:
        self._trips = trips

    async def reserve_seats(
        self,
        trip_id: str,
        seats: int,
        conn: QueryRunner | None = None,
    ) -> SeatReservation:
        """
        Списывает `seats` мест, если их хватает и поездка открыта.

        Недостаток мест не считается сбоем: возвращается ok=False,
        вызывающий код сам решает, какую ошибку показать.
        """
        if seats <= 0:
            raise ValidationError("Количество мест должно быть положительным", seats=seats)

        result = await self._trips.try_reserve_seats(trip_id, seats, conn=conn)
        if result.ok:
            await log_info(
                f"Места списаны: {seats}",
                type_msg=TypeMsg.DEBUG,
                extra={"trip_id": trip_id, "available_seats": result.available_seats},
            )
        else:
            await log_info(
                f"Недостаточно мест для списания: {seats}",
                type_msg=TypeMsg.DEBUG,
                extra={"trip_id": trip_id},
            )
        return result

    async def release_seats(
        self,
        trip_id: str,
        seats: int,
        conn: QueryRunner | None = None,
    ) -> SeatRelease | None:
        """Возвращает `seats` мест (не больше вместимости поездки)."""
        if seats <= 0:
            raise ValidationError("Количество мест должно быть положительным", seats=seats)

        result = await self._trips.release_seats(trip_id, seats, conn=conn)
        if result is None:
            await log_warning(f"Возврат мест в несуществующую поездку {trip_id}")
            return None

        if result.clamped:
            await log_warning(
                "Возврат мест превысил вместимость, счётчик ограничен",
                extra={"trip_id": trip_id, "seats": seats},
            )
        await log_info(
            f"Места возвращены: {seats}",
            type_msg=TypeMsg.DEBUG,
            extra={"trip_id": trip_id, "available_seats": result.available_seats},
        )
        return result
