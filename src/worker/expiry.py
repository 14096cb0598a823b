# src/worker/expiry.py
"""
Воркер истечения неоплаченных броней.
"""

from __future__ import annotations

from src.worker.base import BaseWorker
from src.core.bookings.service import BookingService


class ExpiryWorker(BaseWorker):
    """Переводит в expired брони с прошедшим дедлайном ответа или оплаты."""

    def __init__(self, bookings: BookingService, interval: float = 300, batch_size: int = 200) -> None:
        super().__init__(interval)
        self._bookings = bookings
        self._batch_size = batch_size

    @property
    def name(self) -> str:
        return "ExpiryWorker"

    async def run_once(self) -> int:
        return await self._bookings.expire_overdue_bookings(self._batch_size)
