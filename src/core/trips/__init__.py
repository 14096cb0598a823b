# src/core/trips/__init__.py
"""
Домен поездок.
Модели, репозиторий и страж мест.
"""

from src.core.trips.models import RouteStop, SeatRelease, SeatReservation, Trip
from src.core.trips.repository import TripRepository
from src.core.trips.seat_guard import SeatInventoryGuard

__all__ = [
    "RouteStop",
    "SeatRelease",
    "SeatReservation",
    "Trip",
    "TripRepository",
    "SeatInventoryGuard",
]
