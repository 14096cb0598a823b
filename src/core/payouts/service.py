# src/core/payouts/service.py
"""
Движок выплат водителям.

Выплата делится на два этапа: 10% чистой суммы после посадки пассажира
и 90% после закрытия окна споров. Каждый этап:
- идемпотентен (payout_N_released_at на брони + ключ идемпотентности у провайдера);
- при любой ошибке оставляет запись в hold, следующий проход планировщика повторяет попытку.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Optional

from src.common.constants import (
    BookingStatus,
    DisputeStatus,
    HoldReason,
    PayoutAccountStatus,
    PayoutStage,
    TypeMsg,
)
from src.common.exceptions import GatewayFailureError, NotFoundError, ValidationError
from src.common.logger import log_error, log_info, log_warning
from src.common.money import Clock, is_past, utc_now
from src.core.bookings.models import Booking
from src.core.bookings.repository import BookingRepository
from src.core.notifications.service import BookingNotifier
from src.core.payouts.models import (
    PayoutAccount,
    PayoutLedger,
    PayoutSweepResult,
    ReleaseOutcome,
)
from src.core.payouts.repository import PayoutRepository
from src.core.trips.repository import TripRepository
from src.infra.database import DatabaseManager, QueryRunner
from src.infra.payment_gateway import PaymentGateway

IBAN_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")


def payout_idempotency_key(booking_id: str, stage: PayoutStage | int) -> str:
    """Стабильный ключ перевода: повтор не создаёт второй перевод."""
    return f"booking-{booking_id}-stage-{int(stage)}"


class PayoutLedgerEngine:
    """Выплаты водителям по оплаченным бронированиям."""

    def __init__(
        self,
        db: DatabaseManager,
        bookings: BookingRepository,
        trips: TripRepository,
        payouts: PayoutRepository,
        gateway: PaymentGateway,
        notifier: Optional[BookingNotifier] = None,
        clock: Clock = utc_now,
        stage_10_percent: Decimal = Decimal("10"),
        currency: str = "EUR",
    ) -> None:
        """
        Args:
            db: Менеджер базы данных (транзакции)
            bookings: Репозиторий бронирований
            trips: Репозиторий поездок
            payouts: Репозиторий леджеров, аккаунтов и кошельков
            gateway: Платёжный провайдер
            notifier: Уведомления (опционально)
            clock: Источник текущего времени
            stage_10_percent: Доля первого этапа от чистой суммы
            currency: Валюта кошельков
        """
        self._db = db
        self._bookings = bookings
        self._trips = trips
        self._payouts = payouts
        self._gateway = gateway
        self._notifier = notifier
        self._clock = clock
        self._stage_10_percent = stage_10_percent
        self._currency = currency

    # =========================================================================
    # ВЫПЛАТА ЭТАПА
    # =========================================================================

    async def release_payout_stage(self, booking_id: str, stage: PayoutStage | int) -> ReleaseOutcome:
        """
        Выплачивает этап 10 или 90.

        Этап 90 выполняется конвейером: сначала гарантируется этап 10,
        бронь перечитывается, и если этап 10 так и не выплачен, этап 90 не начинается.

        Raises:
            NotFoundError: бронь не найдена
        """
        stage = PayoutStage(int(stage))

        if stage == PayoutStage.STAGE_90:
            first = await self._release_single(booking_id, PayoutStage.STAGE_10)
            booking = await self._require_booking(booking_id)
            if booking.payout_10_released_at is None:
                await log_info(
                    "Этап 90 отложен: этап 10 не выплачен",
                    type_msg=TypeMsg.DEBUG,
                    extra={"booking_id": booking_id, "stage_10": first.value},
                )
                return ReleaseOutcome.HELD if first == ReleaseOutcome.HELD else ReleaseOutcome.SKIPPED

        return await self._release_single(booking_id, stage)

    async def _release_single(self, booking_id: str, stage: PayoutStage) -> ReleaseOutcome:
        booking = await self._require_booking(booking_id)

        if booking.payout_released_at(stage) is not None:
            return ReleaseOutcome.SKIPPED
        if not booking.is_paid:
            return ReleaseOutcome.SKIPPED

        if booking.dispute_status == DisputeStatus.OPEN:
            return ReleaseOutcome.HELD
        if not self._stage_is_due(booking, stage):
            return ReleaseOutcome.SKIPPED

        trip = await self._trips.get_by_id(booking.trip_id)
        if trip is None:
            raise NotFoundError("Поездка не найдена", trip_id=booking.trip_id)

        ledger = await self._ensure_ledger(booking, trip.driver_id)
        extra = {"booking_id": booking_id, "stage": int(stage), "driver_id": trip.driver_id}

        account = await self._payouts.get_account(trip.driver_id)
        if account is None or not account.can_receive:
            await self._hold(booking_id, HoldReason.DRIVER_PAYOUT_ACCOUNT_NOT_VERIFIED, None)
            await log_warning("Выплата удержана: аккаунт водителя не подтверждён", extra=extra)
            if self._notifier:
                await self._notifier.payout_held(
                    booking_id, trip.driver_id, int(stage),
                    HoldReason.DRIVER_PAYOUT_ACCOUNT_NOT_VERIFIED.value,
                )
            return ReleaseOutcome.HELD

        amount = ledger.amount_for(stage)
        transfer_id: Optional[str] = None

        if amount > 0:
            result = await self._gateway.release_payout(
                account.provider_account_id,
                amount,
                payout_idempotency_key(booking_id, stage),
            )
            if not result.success:
                await self._hold(booking_id, HoldReason.PAYOUT_FAILED, result.error_message)
                await log_warning(
                    f"Перевод водителю не прошёл: {result.error_message}",
                    extra={**extra, "amount": str(amount)},
                )
                return ReleaseOutcome.HELD
            transfer_id = result.transfer_id

        try:
            credited = await self._finalize_release(booking_id, trip.driver_id, stage, amount, transfer_id)
        except Exception as e:
            # Деньги уже у водителя, локальная отметка не записалась
            await log_error(
                f"Перевод выполнен, но леджер не обновлён: {e}",
                extra={**extra, "amount": str(amount), "transfer_id": transfer_id},
                exc_info=True,
            )
            await self._hold(booking_id, HoldReason.LEDGER_UPDATE_FAILED, str(e))
            return ReleaseOutcome.HELD

        if not credited:
            return ReleaseOutcome.SKIPPED

        await log_info(f"Выплата этапа {int(stage)}: {amount}", type_msg=TypeMsg.INFO, extra=extra)
        if self._notifier:
            await self._notifier.payout_released(booking_id, trip.driver_id, int(stage), amount)
        return ReleaseOutcome.RELEASED

    def _stage_is_due(self, booking: Booking, stage: PayoutStage) -> bool:
        if stage == PayoutStage.STAGE_10:
            return booking.status in (BookingStatus.CHECKED_IN, BookingStatus.COMPLETED)
        return (
            booking.status == BookingStatus.COMPLETED
            and booking.payout_10_released_at is not None
            and is_past(booking.dispute_deadline_at, self._clock())
        )

    async def _finalize_release(
        self,
        booking_id: str,
        driver_id: str,
        stage: PayoutStage,
        amount: Decimal,
        transfer_id: Optional[str],
    ) -> bool:
        """
        Одна транзакция: отметка на брони, зачисление в кошелёк, статус леджера.
        Если отметка уже стоит (параллельный проход), ничего не зачисляется.
        """
        now = self._clock()
        async with self._db.transaction() as conn:
            stamped = await self._bookings.stamp_payout_released(booking_id, int(stage), now, conn=conn)
            if not stamped:
                return False
            if amount > 0:
                await self._payouts.credit_wallet(driver_id, amount, self._currency, conn=conn)
            await self._payouts.mark_stage_released(booking_id, stage, now, transfer_id, conn=conn)
        return True

    async def _hold(self, booking_id: str, reason: HoldReason, error: Optional[str]) -> None:
        async with self._db.transaction() as conn:
            await self._payouts.mark_hold(booking_id, reason.value, error, conn=conn)
            await self._bookings.set_payout_hold_reason(booking_id, reason.value, conn=conn)

    async def _ensure_ledger(
        self,
        booking: Booking,
        driver_id: str,
        conn: QueryRunner | None = None,
    ) -> PayoutLedger:
        """Создаёт леджер при первой попытке; суммы потом не пересчитываются."""
        ledger = await self._payouts.get_ledger(booking.id, conn=conn)
        if ledger is not None:
            return ledger

        ledger = PayoutLedger.derive(
            booking_id=booking.id,
            driver_id=driver_id,
            gross=booking.price_total,
            commission=booking.commission_amount,
            stage_10_percent=self._stage_10_percent,
            currency=self._currency,
        )
        ledger = await self._payouts.create_ledger_if_absent(ledger, conn=conn)
        await log_info(
            f"Леджер создан: net={ledger.driver_net_amount} "
            f"r10={ledger.release_10_amount} r90={ledger.release_90_amount}",
            type_msg=TypeMsg.DEBUG,
            extra={"booking_id": booking.id},
        )
        return ledger

    async def hold_for_dispute(self, booking: Booking, driver_id: str, conn: QueryRunner) -> None:
        """Ставит леджер в hold по открытому спору (в транзакции вызывающего)."""
        await self._ensure_ledger(booking, driver_id, conn=conn)
        await self._payouts.mark_hold(booking.id, HoldReason.DISPUTE_OPEN.value, None, conn=conn)
        await self._bookings.set_payout_hold_reason(booking.id, HoldReason.DISPUTE_OPEN.value, conn=conn)

    async def _require_booking(self, booking_id: str) -> Booking:
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Бронирование не найдено", booking_id=booking_id)
        return booking

    # =========================================================================
    # ПРОХОД ПЛАНИРОВЩИКА
    # =========================================================================

    async def release_pending_payouts(self, limit: int = 200) -> PayoutSweepResult:
        """
        Пытается выплатить оба этапа по всем оплаченным checked_in/completed броням.
        Ошибка по одной брони не останавливает проход.
        """
        result = PayoutSweepResult()
        candidates = await self._bookings.find_settlement_candidates(limit)

        for booking in candidates:
            result.processed += 1
            try:
                first = await self.release_payout_stage(booking.id, PayoutStage.STAGE_10)
                result.count(first)
                if booking.status == BookingStatus.COMPLETED and first != ReleaseOutcome.HELD:
                    result.count(await self.release_payout_stage(booking.id, PayoutStage.STAGE_90))
            except Exception as e:
                result.failed += 1
                await log_error(
                    f"Ошибка выплаты по брони: {e}",
                    extra={"booking_id": booking.id},
                    exc_info=True,
                )

        if result.processed:
            await log_info(
                f"Проход выплат: обработано {result.processed}, выплачено {result.released}, "
                f"удержано {result.held}, ошибок {result.failed}",
                type_msg=TypeMsg.INFO,
            )
        return result

    # =========================================================================
    # АККАУНТЫ И ИНСПЕКЦИЯ
    # =========================================================================

    async def register_payout_account(self, driver_id: str, iban: str, holder_name: str) -> PayoutAccount:
        """
        Регистрирует платёжный аккаунт водителя у провайдера.

        Raises:
            ValidationError: некорректный IBAN или имя владельца
            GatewayFailureError: провайдер отказал
        """
        normalized = re.sub(r"\s+", "", iban or "").upper()
        if not IBAN_PATTERN.match(normalized):
            raise ValidationError("Некорректный IBAN", driver_id=driver_id)
        holder = (holder_name or "").strip()
        if not holder:
            raise ValidationError("Не указан владелец счёта", driver_id=driver_id)

        result = await self._gateway.register_payout_account(driver_id, normalized, holder)
        if not result.success:
            raise GatewayFailureError(
                result.error_message or "Провайдер отклонил регистрацию аккаунта",
                driver_id=driver_id,
            )

        account = await self._payouts.upsert_account(PayoutAccount(
            driver_id=driver_id,
            provider_account_id=result.account_id,
            status=result.status,
            holder_name=holder,
            iban_last4=normalized[-4:],
        ))
        await log_info(
            f"Платёжный аккаунт водителя зарегистрирован: {account.status.value}",
            type_msg=TypeMsg.INFO,
            extra={"driver_id": driver_id},
        )
        if account.status == PayoutAccountStatus.REJECTED:
            await log_warning("Провайдер отклонил аккаунт водителя", extra={"driver_id": driver_id})
        return account

    async def list_held_ledgers(self, limit: int = 100) -> list[PayoutLedger]:
        """Леджеры в hold для операторов."""
        return await self._payouts.list_held(limit)

    async def get_wallet_balance(self, driver_id: str) -> Decimal:
        return await self._payouts.get_wallet_balance(driver_id)
