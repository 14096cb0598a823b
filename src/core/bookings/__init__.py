# src/core/bookings/__init__.py
"""
Домен бронирований.
Модели, коды посадки, state machine, репозиторий и сервис.
"""

from src.core.bookings.cancellation import RefundPolicy
from src.core.bookings.models import (
    Booking,
    BookingCreateDTO,
    CancellationQuote,
    CargoDetails,
    ItemDetails,
    PersonDetails,
    PetDetails,
    SegmentContext,
)
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingRules, BookingService
from src.core.bookings.state_machine import BookingStateMachine

__all__ = [
    "RefundPolicy",
    "Booking",
    "BookingCreateDTO",
    "CancellationQuote",
    "CargoDetails",
    "ItemDetails",
    "PersonDetails",
    "PetDetails",
    "SegmentContext",
    "BookingRepository",
    "BookingRules",
    "BookingService",
    "BookingStateMachine",
]
