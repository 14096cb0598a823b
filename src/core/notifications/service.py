# src/core/notifications/service.py
"""
Сервис уведомлений о бронированиях.
Публикует события в шину; доставку (push/SMS) выполняют внешние подписчики.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info, log_warning
from src.infra.event_bus import DomainEvent, EventBus, EventTypes

if TYPE_CHECKING:
    from src.core.bookings.models import Booking
    from src.core.trips.models import Trip


class BookingNotifier:
    """
    Fire-and-forget уведомления.

    Ошибка публикации логируется и не пробрасывается: переход,
    который вызвал уведомление, уже зафиксирован.
    """

    def __init__(self, event_bus: EventBus) -> None:
        """
        Args:
            event_bus: Шина событий
        """
        self._event_bus = event_bus

    async def _publish(self, event_type: str, payload: dict[str, Any]) -> bool:
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as e:
            await log_warning(
                f"Уведомление {event_type} не отправлено: {e}",
                extra={"booking_id": payload.get("booking_id"), "trip_id": payload.get("trip_id")},
            )
            return False

        await log_info(f"Уведомление {event_type} поставлено в очередь", type_msg=TypeMsg.DEBUG)
        return True

    @staticmethod
    def _base(booking: Booking, trip: Optional[Trip] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "booking_id": booking.id,
            "trip_id": booking.trip_id,
            "passenger_id": booking.passenger_id,
            "status": booking.status.value,
            "seats": booking.seats,
        }
        if trip is not None:
            payload["driver_id"] = trip.driver_id
            payload["route"] = f"{trip.departure_city} → {trip.arrival_city}"
            payload["departure_time"] = trip.departure_time.isoformat()
        return payload

    async def booking_requested(self, booking: Booking, trip: Trip) -> bool:
        """Водителю: новая заявка на бронирование."""
        return await self._publish(EventTypes.BOOKING_REQUESTED, self._base(booking, trip))

    async def booking_accepted(self, booking: Booking, trip: Trip) -> bool:
        """Пассажиру: заявка принята, ждём оплату."""
        payload = self._base(booking, trip)
        payload["payment_due_at"] = booking.payment_due_at.isoformat() if booking.payment_due_at else None
        return await self._publish(EventTypes.BOOKING_ACCEPTED, payload)

    async def booking_rejected(self, booking: Booking, trip: Trip) -> bool:
        payload = self._base(booking, trip)
        payload["reason"] = booking.rejection_reason
        return await self._publish(EventTypes.BOOKING_REJECTED, payload)

    async def booking_confirmed(self, booking: Booking, trip: Trip) -> bool:
        """Обоим участникам: оплата прошла, места закреплены."""
        payload = self._base(booking, trip)
        payload["qr_code"] = booking.qr_code
        payload["pnr_code"] = booking.pnr_code
        payload["price_total"] = str(booking.price_total)
        return await self._publish(EventTypes.BOOKING_CONFIRMED, payload)

    async def booking_cancelled(
        self,
        booking: Booking,
        trip: Trip,
        refund_amount: Decimal | None = None,
    ) -> bool:
        payload = self._base(booking, trip)
        payload["refund_amount"] = str(refund_amount) if refund_amount is not None else None
        return await self._publish(EventTypes.BOOKING_CANCELLED, payload)

    async def booking_expired(self, booking: Booking) -> bool:
        return await self._publish(EventTypes.BOOKING_EXPIRED, self._base(booking))

    async def booking_checked_in(self, booking: Booking, trip: Trip) -> bool:
        return await self._publish(EventTypes.BOOKING_CHECKED_IN, self._base(booking, trip))

    async def booking_completed(self, booking: Booking) -> bool:
        payload = self._base(booking)
        payload["completion_source"] = booking.completion_source.value if booking.completion_source else None
        return await self._publish(EventTypes.BOOKING_COMPLETED, payload)

    async def dispute_opened(self, booking: Booking, trip: Trip, raised_by: str) -> bool:
        """Обоим участникам и поддержке: открыт спор."""
        payload = self._base(booking, trip)
        payload["raised_by"] = raised_by
        payload["reason"] = booking.dispute_reason
        return await self._publish(EventTypes.BOOKING_DISPUTE_OPENED, payload)

    async def trip_cancelled(self, trip: Trip, passenger_ids: Iterable[str]) -> bool:
        """Пассажирам: водитель отменил поездку."""
        return await self._publish(EventTypes.TRIP_CANCELLED, {
            "trip_id": trip.id,
            "driver_id": trip.driver_id,
            "passenger_ids": sorted(set(passenger_ids)),
        })

    async def payout_released(self, booking_id: str, driver_id: str, stage: int, amount: Decimal) -> bool:
        return await self._publish(EventTypes.PAYOUT_RELEASED, {
            "booking_id": booking_id,
            "driver_id": driver_id,
            "stage": stage,
            "amount": str(amount),
        })

    async def payout_held(self, booking_id: str, driver_id: str, stage: int, reason: str) -> bool:
        return await self._publish(EventTypes.PAYOUT_HELD, {
            "booking_id": booking_id,
            "driver_id": driver_id,
            "stage": stage,
            "reason": reason,
        })
