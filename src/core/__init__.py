# src/core/__init__.py
"""
Доменный слой (Core Domain).
Бронирования, места в поездках, выплаты водителям и сверка платежей.
"""

from src.core.bookings import Booking, BookingService
from src.core.payouts import PayoutLedger, PayoutLedgerEngine
from src.core.reconciliation import ReconciliationService
from src.core.trips import SeatInventoryGuard, Trip

__all__ = [
    "Booking",
    "BookingService",
    "PayoutLedger",
    "PayoutLedgerEngine",
    "ReconciliationService",
    "SeatInventoryGuard",
    "Trip",
]
