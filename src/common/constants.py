# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TripStatus(str, Enum):
    """Статусы поездки (объявления водителя)."""
    DRAFT = "draft"
    PUBLISHED = "published"
    FULL = "full"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingType(str, Enum):
    """Режим бронирования поездки."""
    INSTANT = "instant"
    APPROVAL_REQUIRED = "approval_required"


class BookingStatus(str, Enum):
    """Статусы бронирования."""
    PENDING = "pending"  # Ждёт решения водителя
    AWAITING_PAYMENT = "awaiting_payment"  # Ждёт оплаты пассажиром
    CONFIRMED = "confirmed"  # Оплачено, места списаны
    CHECKED_IN = "checked_in"  # Пассажир отмечен водителем
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED_BY_PASSENGER = "cancelled_by_passenger"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"


class PaymentStatus(str, Enum):
    """Статусы оплаты бронирования."""
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class DisputeStatus(str, Enum):
    """Статус спора по бронированию."""
    NONE = "none"
    OPEN = "open"


class CompletionSource(str, Enum):
    """Кто завершил поездку."""
    PASSENGER = "passenger"
    AUTO = "auto"


class ItemType(str, Enum):
    """Что перевозится по бронированию."""
    PERSON = "person"
    PET = "pet"
    CARGO = "cargo"


class LedgerStatus(str, Enum):
    """Статусы записи выплат водителю."""
    PENDING = "pending"
    HOLD = "hold"
    PARTIAL_RELEASED = "partial_released"
    RELEASED = "released"


class PayoutStage(int, Enum):
    """Этапы выплаты водителю (процент от чистой суммы)."""
    STAGE_10 = 10
    STAGE_90 = 90


class PayoutAccountStatus(str, Enum):
    """Статус платёжного аккаунта водителя у провайдера."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class HoldReason(str, Enum):
    """Причины удержания выплаты."""
    DRIVER_PAYOUT_ACCOUNT_NOT_VERIFIED = "driver_payout_account_not_verified"
    DISPUTE_OPEN = "dispute_open"
    PAYOUT_FAILED = "payout_failed"
    LEDGER_UPDATE_FAILED = "ledger_update_failed"


class ReconciliationKind(str, Enum):
    """Типы записей очереди сверки."""
    REFUND_PENDING = "refund_pending"
    REFUND_WITHOUT_CANCELLATION = "refund_without_cancellation"


class ReconciliationStatus(str, Enum):
    """Статусы записей очереди сверки."""
    OPEN = "open"
    RESOLVED = "resolved"


# Статусы, в которых бронирование удерживает места в поездке
SEAT_HOLDING_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
    BookingStatus.COMPLETED,
    BookingStatus.DISPUTED,
})

# Статусы поездки, в которых возможна продажа мест
BOOKABLE_TRIP_STATUSES: frozenset[TripStatus] = frozenset({
    TripStatus.PUBLISHED,
    TripStatus.FULL,
})
