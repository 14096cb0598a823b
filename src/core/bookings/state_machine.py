# src/core/bookings/state_machine.py
"""
State machine жизненного цикла бронирования.
"""

from __future__ import annotations

from src.common.constants import BookingStatus
from src.common.exceptions import InvalidStateError


class BookingStateMachine:
    """
    Допустимые переходы:
    - pending → awaiting_payment → confirmed → checked_in → completed → disputed
    - pending → rejected (водитель отклонил)
    - pending, awaiting_payment → expired (истёк дедлайн)
    - pending, awaiting_payment, confirmed → cancelled_by_passenger / cancelled_by_driver
    - checked_in → cancelled_by_driver (только при отмене всей поездки)
    - disputed → disputed (повторная жалоба в пределах окна)
    """

    VALID_TRANSITIONS: dict[BookingStatus, list[BookingStatus]] = {
        BookingStatus.PENDING: [
            BookingStatus.AWAITING_PAYMENT,
            BookingStatus.REJECTED,
            BookingStatus.EXPIRED,
            BookingStatus.CANCELLED_BY_PASSENGER,
            BookingStatus.CANCELLED_BY_DRIVER,
        ],
        BookingStatus.AWAITING_PAYMENT: [
            BookingStatus.CONFIRMED,
            BookingStatus.EXPIRED,
            BookingStatus.CANCELLED_BY_PASSENGER,
            BookingStatus.CANCELLED_BY_DRIVER,
        ],
        BookingStatus.CONFIRMED: [
            BookingStatus.CHECKED_IN,
            BookingStatus.CANCELLED_BY_PASSENGER,
            BookingStatus.CANCELLED_BY_DRIVER,
        ],
        BookingStatus.CHECKED_IN: [
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED_BY_DRIVER,
        ],
        BookingStatus.COMPLETED: [BookingStatus.DISPUTED],
        BookingStatus.DISPUTED: [BookingStatus.DISPUTED],
        BookingStatus.REJECTED: [],
        BookingStatus.EXPIRED: [],
        BookingStatus.CANCELLED_BY_PASSENGER: [],
        BookingStatus.CANCELLED_BY_DRIVER: [],
    }

    # Отмена пассажиром или водителем возможна только до посадки
    CANCELLABLE: tuple[BookingStatus, ...] = (
        BookingStatus.PENDING,
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.CONFIRMED,
    )

    # Что отменяется каскадом при отмене поездки
    TRIP_CANCELLATION_CASCADE: tuple[BookingStatus, ...] = (
        BookingStatus.PENDING,
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.CONFIRMED,
        BookingStatus.CHECKED_IN,
    )

    @classmethod
    def can_transition(cls, from_status: BookingStatus, to_status: BookingStatus) -> bool:
        """Проверяет, допустим ли переход."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: BookingStatus, to_status: BookingStatus) -> None:
        """Проверяет переход и выбрасывает InvalidStateError при ошибке."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateError(
                f"Недопустимый переход: {from_status.value} → {to_status.value}",
                status=from_status.value,
                target=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)
