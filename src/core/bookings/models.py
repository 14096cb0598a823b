# src/core/bookings/models.py
"""
Модели данных бронирований.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import (
    SEAT_HOLDING_STATUSES,
    BookingStatus,
    CompletionSource,
    DisputeStatus,
    ItemType,
    PaymentStatus,
)


# =============================================================================
# ЧТО ПЕРЕВОЗИТСЯ
# =============================================================================

class PersonDetails(BaseModel):
    """Пассажир (по умолчанию)."""
    item_type: Literal["person"] = "person"


class PetDetails(BaseModel):
    """Перевозка животного."""
    item_type: Literal["pet"] = "pet"
    name: str = Field(..., min_length=1, max_length=100)
    species: str = Field(..., min_length=1, max_length=50)
    breed: Optional[str] = Field(None, max_length=100)
    weight_kg: Optional[float] = Field(None, gt=0, le=100)
    vaccination_proof_url: Optional[str] = None


class CargoDetails(BaseModel):
    """Перевозка посылки."""
    item_type: Literal["cargo"] = "cargo"
    description: str = Field(..., min_length=1, max_length=500)
    weight_kg: Optional[float] = Field(None, gt=0, le=1000)
    dimensions: Optional[str] = Field(None, max_length=100, description="Напр. 40x30x20 см")
    fragile: bool = False


ItemDetails = Annotated[
    Union[PersonDetails, PetDetails, CargoDetails],
    Field(discriminator="item_type"),
]


class SegmentContext(BaseModel):
    """Участок маршрута, за который заплатил пассажир."""
    match_type: Literal["full", "segment"]
    from_city: str
    to_city: str
    from_index: int = Field(..., ge=0)
    to_index: int = Field(..., ge=0)
    distance_ratio: float = Field(..., ge=0, le=1)
    full_price_per_seat: Decimal
    segment_price_per_seat: Decimal


# =============================================================================
# БРОНИРОВАНИЕ
# =============================================================================

class Booking(BaseModel):
    """Модель бронирования."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="UUID бронирования")
    trip_id: str
    passenger_id: str
    status: BookingStatus = BookingStatus.PENDING

    seats: int = Field(..., ge=1, le=8)
    price_per_seat: Decimal
    price_total: Decimal
    commission_amount: Decimal = Decimal("0.00")
    currency: str = "EUR"

    # Оплата
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    payment_attempts: int = Field(0, ge=0, description="Сколько раз пассажир пытался оплатить")
    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    penalty_amount: Optional[Decimal] = None

    # Коды посадки
    qr_code: str
    pnr_code: str

    item_type: ItemType = ItemType.PERSON
    item_details: Optional[ItemDetails] = None
    segment_context: Optional[SegmentContext] = None
    passenger_note: Optional[str] = None

    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    # Временные метки
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    expires_at: Optional[datetime] = Field(None, description="Дедлайн решения водителя")
    payment_due_at: Optional[datetime] = Field(None, description="Дедлайн оплаты")
    paid_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_source: Optional[CompletionSource] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    # Спор
    dispute_status: DisputeStatus = DisputeStatus.NONE
    dispute_reason: Optional[str] = None
    dispute_raised_by: Optional[str] = None
    dispute_opened_at: Optional[datetime] = None
    dispute_deadline_at: Optional[datetime] = None

    # Выплаты водителю
    payout_10_released_at: Optional[datetime] = None
    payout_90_released_at: Optional[datetime] = None
    payout_hold_reason: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def holds_seats(self) -> bool:
        """Удерживает ли бронь места в поездке."""
        return self.status in SEAT_HOLDING_STATUSES

    def payout_released_at(self, stage: int) -> Optional[datetime]:
        """Время выплаты этапа (10 или 90)."""
        return self.payout_10_released_at if stage == 10 else self.payout_90_released_at


class BookingCreateDTO(BaseModel):
    """DTO для создания бронирования."""

    trip_id: str
    passenger_id: str
    seats: int = 1
    item_details: ItemDetails = Field(default_factory=PersonDetails)
    passenger_note: Optional[str] = Field(None, max_length=500)

    # Частичный маршрут (опционально)
    from_city: Optional[str] = None
    to_city: Optional[str] = None


class CancellationQuote(BaseModel):
    """Расчёт возврата при отмене."""
    booking_id: str
    hours_until_departure: float
    refund_percent: int
    refund_amount: Decimal
    penalty_amount: Decimal
    is_paid: bool
