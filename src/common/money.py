# src/common/money.py
"""
Денежные и временные утилиты.
Все суммы хранятся в Decimal и округляются до копеек (half-up).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Источник текущего времени; в тестах подменяется
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


def to_decimal(value: Number) -> Decimal:
    """Приводит число к Decimal без потери точности для float."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def to_money(value: Number) -> Decimal:
    """Округляет сумму до 2 знаков (half away from zero)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Number, percent: Number) -> Decimal:
    """Возвращает `percent`% от суммы, округлённые до копеек."""
    return to_money(to_decimal(amount) * to_decimal(percent) / Decimal(100))


def add_minutes(moment: datetime, minutes: int | float) -> datetime:
    """Дедлайн через `minutes` минут."""
    return moment + timedelta(minutes=minutes)


def add_hours(moment: datetime, hours: int | float) -> datetime:
    """Дедлайн через `hours` часов."""
    return moment + timedelta(hours=hours)


def hours_between(start: datetime, end: datetime) -> float:
    """Сколько часов от `start` до `end` (отрицательно, если end в прошлом)."""
    return (end - start).total_seconds() / 3600


def is_past(deadline: datetime | None, now: datetime) -> bool:
    """Дедлайн наступил (now >= deadline). Пустой дедлайн не наступает."""
    return deadline is not None and now >= deadline
