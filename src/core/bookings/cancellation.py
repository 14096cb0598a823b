# src/core/bookings/cancellation.py
"""
Политика возврата при отмене бронирования.
Тариф зависит только от часов до отправления.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from src.common.money import ZERO, percent_of, to_money


@dataclass(frozen=True)
class RefundPolicy:
    """Пороги возврата (часы до отправления) и проценты."""
    no_refund_before_hours: float = 2
    partial_refund_before_hours: float = 24
    partial_refund_percent: int = 50
    full_refund_percent: int = 100

    @classmethod
    def from_settings(cls) -> "RefundPolicy":
        from src.config import settings

        cfg = settings.cancellation
        return cls(
            no_refund_before_hours=cfg.NO_REFUND_BEFORE_HOURS,
            partial_refund_before_hours=cfg.PARTIAL_REFUND_BEFORE_HOURS,
            partial_refund_percent=cfg.PARTIAL_REFUND_PERCENT,
            full_refund_percent=cfg.FULL_REFUND_PERCENT,
        )

    def refund_percent(self, hours_until_departure: float) -> int:
        """<2ч: 0%, <24ч: 50%, иначе 100%."""
        if hours_until_departure < self.no_refund_before_hours:
            return 0
        if hours_until_departure < self.partial_refund_before_hours:
            return self.partial_refund_percent
        return self.full_refund_percent

    def split(self, price_total: Decimal, hours_until_departure: float) -> tuple[int, Decimal, Decimal]:
        """
        Возвращает (процент, сумма возврата, штраф).
        Штраф и возврат в сумме дают price_total.
        """
        percent = self.refund_percent(hours_until_departure)
        total = to_money(price_total)
        refund = percent_of(total, percent) if percent else ZERO
        return percent, refund, to_money(total - refund)
