# src/core/trips/models.py
"""
Модели данных поездок.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import BOOKABLE_TRIP_STATUSES, BookingType, TripStatus


class RouteStop(BaseModel):
    """Промежуточный город маршрута."""
    city: str
    lat: Optional[float] = None
    lng: Optional[float] = None


class Trip(BaseModel):
    """Поездка, опубликованная водителем."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="ID поездки")
    driver_id: str = Field(..., description="ID водителя")
    status: TripStatus = Field(TripStatus.DRAFT, description="Статус поездки")
    booking_type: BookingType = Field(BookingType.INSTANT, description="Режим бронирования")

    total_seats: int = Field(..., gt=0, description="Вместимость")
    available_seats: int = Field(..., ge=0, description="Свободные места")
    price_per_seat: Decimal = Field(..., ge=0, description="Цена за место")
    currency: str = "EUR"

    departure_time: datetime
    estimated_arrival_time: Optional[datetime] = None

    departure_city: str
    departure_lat: Optional[float] = None
    departure_lng: Optional[float] = None
    arrival_city: str
    arrival_lat: Optional[float] = None
    arrival_lng: Optional[float] = None
    via_cities: list[RouteStop] = Field(default_factory=list)

    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_bookable(self) -> bool:
        """Открыта ли поездка для бронирования."""
        return self.status in BOOKABLE_TRIP_STATUSES

    @property
    def is_instant(self) -> bool:
        return self.booking_type == BookingType.INSTANT


@dataclass
class SeatReservation:
    """Результат атомарного списания мест."""
    ok: bool
    available_seats: Optional[int] = None
    status: Optional[TripStatus] = None


@dataclass
class SeatRelease:
    """Результат возврата мест."""
    available_seats: int
    status: TripStatus
    clamped: bool = False  # возврат упёрся в вместимость
