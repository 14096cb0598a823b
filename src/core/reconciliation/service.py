# src/core/reconciliation/service.py
"""
Сервис сверки платежей.

Сюда попадают деньги, которые провайдер уже списал, но локально
не удалось довести до конца: возврат после отмены или компенсация
оплаты, для которой не хватило мест. Планировщик повторяет возвраты.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from src.common.constants import (
    BookingStatus,
    PaymentStatus,
    ReconciliationKind,
    TypeMsg,
)
from src.common.logger import log_error, log_info, log_warning
from src.common.money import Clock, to_money, utc_now
from src.core.bookings.repository import BookingRepository
from src.core.reconciliation.models import ReconciliationItem, ReconciliationSweepResult
from src.core.reconciliation.repository import ReconciliationRepository
from src.infra.database import DatabaseManager, QueryRunner
from src.infra.payment_gateway import PaymentGateway, refund_idempotency_key


class ReconciliationService:
    """Очередь возвратов, требующих повторной попытки."""

    def __init__(
        self,
        db: DatabaseManager,
        repository: ReconciliationRepository,
        bookings: BookingRepository,
        gateway: PaymentGateway,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._repository = repository
        self._bookings = bookings
        self._gateway = gateway
        self._clock = clock

    async def enqueue_refund(
        self,
        kind: ReconciliationKind,
        booking_id: str,
        payment_id: Optional[str],
        amount: Decimal,
        reason: str,
        error: Optional[str] = None,
        conn: QueryRunner | None = None,
    ) -> ReconciliationItem:
        """Ставит возврат в очередь сверки и громко логирует расхождение."""
        item = await self._repository.enqueue(ReconciliationItem(
            kind=kind,
            booking_id=booking_id,
            payment_id=payment_id,
            amount=to_money(amount),
            reason=reason,
            last_error=error,
        ), conn=conn)
        await log_error(
            f"Требуется сверка платежа ({kind.value}): {reason}",
            extra={
                "booking_id": booking_id,
                "payment_id": payment_id,
                "amount": str(item.amount),
                "reconciliation_id": item.id,
                "error": error,
            },
        )
        return item

    async def retry_open_refunds(self, limit: int = 100) -> ReconciliationSweepResult:
        """
        Повторяет возвраты по открытым записям.
        Ошибка по одной записи не останавливает проход.
        """
        result = ReconciliationSweepResult()
        for item in await self._repository.list_open(limit):
            result.processed += 1
            try:
                if await self._retry_one(item):
                    result.resolved += 1
                else:
                    result.failed += 1
            except Exception as e:
                result.failed += 1
                await log_error(
                    f"Ошибка повтора возврата: {e}",
                    extra={"reconciliation_id": item.id, "booking_id": item.booking_id},
                    exc_info=True,
                )

        if result.processed:
            await log_info(
                f"Сверка: обработано {result.processed}, закрыто {result.resolved}, "
                f"осталось {result.failed}",
                type_msg=TypeMsg.INFO,
            )
        return result

    async def _retry_one(self, item: ReconciliationItem) -> bool:
        if not item.payment_id:
            await self._repository.record_attempt(item.id, "Нет ID платежа, нужен ручной разбор")
            await log_warning("Запись сверки без ID платежа", extra={"reconciliation_id": item.id})
            return False

        refund = await self._gateway.refund(
            item.payment_id,
            item.amount,
            item.reason,
            refund_idempotency_key(item.payment_id),
        )
        if not refund.success:
            await self._repository.record_attempt(item.id, refund.error_message)
            return False

        booking = await self._bookings.get_by_id(item.booking_id)
        async with self._db.transaction() as conn:
            if item.kind == ReconciliationKind.REFUND_PENDING and booking is not None:
                payment_status = (
                    PaymentStatus.REFUNDED
                    if item.amount >= to_money(booking.price_total)
                    else PaymentStatus.PARTIALLY_REFUNDED
                )
                await self._bookings.update_if_status(
                    item.booking_id,
                    [BookingStatus.CANCELLED_BY_PASSENGER, BookingStatus.CANCELLED_BY_DRIVER],
                    {
                        "refund_id": refund.refund_id,
                        "refund_amount": item.amount,
                        "payment_status": payment_status,
                    },
                    conn=conn,
                )
            await self._repository.resolve(item.id, self._clock(), conn=conn)

        await log_info(
            f"Возврат по сверке выполнен: {item.amount}",
            type_msg=TypeMsg.INFO,
            extra={"reconciliation_id": item.id, "booking_id": item.booking_id},
        )
        return True
