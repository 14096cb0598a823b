# src/common/exceptions.py
"""
Типизированные ошибки движка бронирований.

Каждая ошибка несёт стабильный машиночитаемый `kind` и человекочитаемое
сообщение. Бизнес-ошибки не повторяются автоматически; GatewayFailureError
можно безопасно повторить тем же вызовом.
"""

from __future__ import annotations

from typing import Any


class BookingError(Exception):
    """Базовая ошибка бизнес-логики."""

    kind: str = "booking_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Представление ошибки для внешнего слоя."""
        return {
            "kind": self.kind,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class NotFoundError(BookingError):
    """Бронирование или поездка не найдены."""
    kind = "not_found"


class ForbiddenError(BookingError):
    """Пользователь не является участником бронирования."""
    kind = "forbidden"


class InvalidStateError(BookingError):
    """Переход недопустим из текущего статуса."""
    kind = "invalid_state"


class PaymentHoldExpiredError(InvalidStateError):
    """Срок удержания брони для оплаты истёк."""
    kind = "payment_expired"


class ValidationError(BookingError):
    """Некорректные входные данные (PNR, количество мест, причина спора)."""
    kind = "invalid_input"


class CapacityExceededError(BookingError):
    """Недостаточно свободных мест в поездке."""
    kind = "capacity_exceeded"


class GatewayFailureError(BookingError):
    """Платёжный провайдер вернул ошибку."""
    kind = "gateway_failure"
    retryable = True


class DataIntegrityRiskError(BookingError):
    """Деньги у провайдера и локальное состояние разошлись, нужна сверка."""
    kind = "data_integrity_risk"


class CodeGenerationError(BookingError):
    """Не удалось подобрать уникальные QR/PNR коды за отведённое число попыток."""
    kind = "code_generation_failed"
    retryable = True
