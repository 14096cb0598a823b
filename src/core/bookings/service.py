# src/core/bookings/service.py
"""
Сервис бронирований.
Координирует жизненный цикл брони: создание, оплату, посадку,
завершение, споры и отмены.

Каждый переход выполняется условным UPDATE по ожидаемому статусу,
поэтому из двух конкурирующих запросов к одной брони проходит один,
второй получает InvalidStateError.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from src.common.constants import (
    BookingStatus,
    CompletionSource,
    DisputeStatus,
    HoldReason,
    PaymentStatus,
    PayoutStage,
    ReconciliationKind,
    TripStatus,
    TypeMsg,
)
from src.common.exceptions import (
    CapacityExceededError,
    CodeGenerationError,
    DataIntegrityRiskError,
    ForbiddenError,
    GatewayFailureError,
    InvalidStateError,
    NotFoundError,
    PaymentHoldExpiredError,
    ValidationError,
)
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.common.money import ZERO, Clock, add_hours, add_minutes, hours_between, is_past, to_money, utc_now
from src.core.bookings.cancellation import RefundPolicy
from src.core.bookings.codes import generate_pnr_code, generate_qr_code, normalize_pnr
from src.core.bookings.models import Booking, BookingCreateDTO, CancellationQuote
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine
from src.core.trips.models import Trip
from src.core.trips.repository import TripRepository
from src.core.trips.seat_guard import SeatInventoryGuard
from src.infra.database import DatabaseManager
from src.infra.payment_gateway import (
    PaymentGateway,
    charge_idempotency_key,
    refund_idempotency_key,
)

if TYPE_CHECKING:
    from src.core.notifications.service import BookingNotifier
    from src.core.payouts.service import PayoutLedgerEngine
    from src.core.pricing.segments import SegmentPricingResolver
    from src.core.reconciliation.service import ReconciliationService


@dataclass(frozen=True)
class BookingRules:
    """Сроки и ограничения жизненного цикла брони."""
    hold_minutes: int = 15
    approval_timeout_minutes: int = 1440
    dispute_window_hours: int = 24
    auto_complete_delay_minutes: int = 60
    arrival_fallback_hours: int = 6
    max_seats: int = 8
    code_attempts: int = 10
    dispute_reason_max_length: int = 500
    batch_size: int = 200

    @classmethod
    def from_settings(cls) -> "BookingRules":
        from src.config import settings

        cfg = settings.booking
        return cls(
            hold_minutes=cfg.HOLD_MINUTES,
            approval_timeout_minutes=cfg.APPROVAL_TIMEOUT_MINUTES,
            dispute_window_hours=cfg.DISPUTE_WINDOW_HOURS,
            auto_complete_delay_minutes=cfg.AUTO_COMPLETE_DELAY_MINUTES,
            arrival_fallback_hours=cfg.ARRIVAL_FALLBACK_HOURS,
            max_seats=cfg.MAX_SEATS,
            code_attempts=cfg.CODE_ATTEMPTS,
            dispute_reason_max_length=cfg.DISPUTE_REASON_MAX_LENGTH,
            batch_size=settings.schedulers.BATCH_SIZE,
        )


class BookingService:
    """
    Сервис бронирований.
    Единственная точка входа для переходов статуса брони.
    """

    def __init__(
        self,
        db: DatabaseManager,
        bookings: BookingRepository,
        trips: TripRepository,
        seat_guard: SeatInventoryGuard,
        gateway: PaymentGateway,
        payouts: PayoutLedgerEngine,
        reconciliation: ReconciliationService,
        notifier: Optional[BookingNotifier] = None,
        pricing: Optional[SegmentPricingResolver] = None,
        clock: Clock = utc_now,
        rules: BookingRules | None = None,
        refund_policy: RefundPolicy | None = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            db: Менеджер базы данных (транзакции)
            bookings: Репозиторий бронирований
            trips: Репозиторий поездок
            seat_guard: Страж мест поездки
            gateway: Платёжный провайдер
            payouts: Движок выплат водителям
            reconciliation: Очередь сверки платежей
            notifier: Уведомления (опционально)
            pricing: Расчёт цены участка маршрута (опционально)
            clock: Источник текущего времени
            rules: Сроки и ограничения (по умолчанию из конфига)
            refund_policy: Тарифы возврата (по умолчанию из конфига)
        """
        self._db = db
        self._bookings = bookings
        self._trips = trips
        self._seats = seat_guard
        self._gateway = gateway
        self._payouts = payouts
        self._reconciliation = reconciliation
        self._notifier = notifier
        self._pricing = pricing
        self._clock = clock
        self._rules = rules or BookingRules.from_settings()
        self._refund_policy = refund_policy or RefundPolicy.from_settings()

    # =========================================================================
    # ЗАГРУЗКА И ПРОВЕРКА УЧАСТНИКОВ
    # =========================================================================

    async def _require_booking(self, booking_id: str) -> Booking:
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Бронирование не найдено", booking_id=booking_id)
        return booking

    async def _require_trip(self, trip_id: str) -> Trip:
        trip = await self._trips.get_by_id(trip_id)
        if trip is None:
            raise NotFoundError("Поездка не найдена", trip_id=trip_id)
        return trip

    async def _load_participant(self, booking_id: str, user_id: str) -> tuple[Booking, Trip]:
        """Бронь и поездка, если пользователь пассажир или водитель."""
        booking = await self._require_booking(booking_id)
        trip = await self._require_trip(booking.trip_id)
        if user_id not in (booking.passenger_id, trip.driver_id):
            raise ForbiddenError("Нет доступа к бронированию", booking_id=booking_id)
        return booking, trip

    async def _load_for_driver(self, booking_id: str, driver_id: str) -> tuple[Booking, Trip]:
        booking = await self._require_booking(booking_id)
        trip = await self._require_trip(booking.trip_id)
        if trip.driver_id != driver_id:
            raise ForbiddenError("Действие доступно только водителю поездки", booking_id=booking_id)
        return booking, trip

    async def _load_for_passenger(self, booking_id: str, passenger_id: str) -> Booking:
        booking = await self._require_booking(booking_id)
        if booking.passenger_id != passenger_id:
            raise ForbiddenError("Действие доступно только пассажиру", booking_id=booking_id)
        return booking

    @staticmethod
    def _changed_concurrently(booking: Booking) -> InvalidStateError:
        return InvalidStateError(
            "Статус бронирования изменился, обновите данные",
            booking_id=booking.id,
            status=booking.status.value,
        )

    async def get_booking(self, booking_id: str, user_id: str) -> Booking:
        """Бронь для пассажира или водителя поездки."""
        booking, _ = await self._load_participant(booking_id, user_id)
        return booking

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create(self, dto: BookingCreateDTO) -> Booking:
        """
        Создаёт бронирование.

        Места не списываются: для instant-поездки бронь сразу ждёт оплаты,
        иначе ждёт решения водителя.

        Raises:
            ValidationError: некорректное число мест или участок маршрута
            NotFoundError: поездка не найдена
            ForbiddenError: водитель бронирует свою поездку
            InvalidStateError: поездка закрыта для бронирования
            CapacityExceededError: мест меньше, чем запрошено
            CodeGenerationError: не удалось подобрать уникальные коды
        """
        if not 1 <= dto.seats <= self._rules.max_seats:
            raise ValidationError(
                f"Количество мест должно быть от 1 до {self._rules.max_seats}",
                seats=dto.seats,
            )

        trip = await self._require_trip(dto.trip_id)
        if trip.driver_id == dto.passenger_id:
            raise ForbiddenError("Нельзя бронировать собственную поездку", trip_id=trip.id)
        if not trip.is_bookable:
            raise InvalidStateError("Поездка закрыта для бронирования", trip_id=trip.id, status=trip.status.value)

        now = self._clock()
        if is_past(trip.departure_time, now):
            raise InvalidStateError("Поездка уже отправилась", trip_id=trip.id)
        if trip.available_seats < dto.seats:
            raise CapacityExceededError(
                "Недостаточно свободных мест",
                trip_id=trip.id,
                requested=dto.seats,
                available=trip.available_seats,
            )

        segment = None
        if self._pricing is not None and (dto.from_city or dto.to_city):
            segment = await self._pricing.resolve_segment(trip, dto.from_city, dto.to_city)
            if segment is None:
                raise ValidationError(
                    "Участок маршрута не найден",
                    from_city=dto.from_city,
                    to_city=dto.to_city,
                )

        price_per_seat = segment.segment_price_per_seat if segment else to_money(trip.price_per_seat)
        price_total = to_money(price_per_seat * dto.seats)
        commission = self._gateway.calculate_commission(price_total)

        if trip.is_instant:
            status = BookingStatus.AWAITING_PAYMENT
            expires_at = None
            payment_due_at = add_minutes(now, self._rules.hold_minutes)
        else:
            status = BookingStatus.PENDING
            expires_at = add_minutes(now, self._rules.approval_timeout_minutes)
            payment_due_at = None

        booking_id = str(uuid.uuid4())
        saved: Optional[Booking] = None
        for attempt in range(1, self._rules.code_attempts + 1):
            saved = await self._bookings.insert(Booking(
                id=booking_id,
                trip_id=trip.id,
                passenger_id=dto.passenger_id,
                status=status,
                seats=dto.seats,
                price_per_seat=price_per_seat,
                price_total=price_total,
                commission_amount=commission,
                currency=trip.currency,
                qr_code=generate_qr_code(),
                pnr_code=generate_pnr_code(),
                item_type=dto.item_details.item_type,
                item_details=dto.item_details,
                segment_context=segment,
                passenger_note=dto.passenger_note,
                expires_at=expires_at,
                payment_due_at=payment_due_at,
            ))
            if saved is not None:
                break
            await log_debug(f"Коллизия кодов посадки, попытка {attempt}", extra={"booking_id": booking_id})

        if saved is None:
            await log_error(
                "Не удалось сгенерировать уникальные коды посадки",
                extra={"trip_id": trip.id, "attempts": self._rules.code_attempts},
            )
            raise CodeGenerationError("Не удалось создать бронирование, повторите попытку", trip_id=trip.id)

        await log_info(
            f"Бронирование создано: {saved.seats} мест, {saved.price_total} {saved.currency}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": saved.id, "trip_id": trip.id, "status": saved.status.value},
        )
        if self._notifier:
            await self._notifier.booking_requested(saved, trip)
        return saved

    # =========================================================================
    # РЕШЕНИЕ ВОДИТЕЛЯ
    # =========================================================================

    async def accept(self, booking_id: str, driver_id: str) -> Booking:
        """Водитель принимает заявку: бронь ждёт оплаты."""
        booking, trip = await self._load_for_driver(booking_id, driver_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.AWAITING_PAYMENT)

        now = self._clock()
        if is_past(booking.expires_at, now):
            await self._expire(booking)
            raise InvalidStateError("Срок ответа на заявку истёк", booking_id=booking_id)

        updated = await self._bookings.update_if_status(booking_id, [BookingStatus.PENDING], {
            "status": BookingStatus.AWAITING_PAYMENT,
            "accepted_at": now,
            "expires_at": None,
            "payment_due_at": add_minutes(now, self._rules.hold_minutes),
        })
        if updated is None:
            raise self._changed_concurrently(booking)

        await log_info("Заявка принята водителем", type_msg=TypeMsg.INFO, extra={"booking_id": booking_id})
        if self._notifier:
            await self._notifier.booking_accepted(updated, trip)
        return updated

    async def reject(self, booking_id: str, driver_id: str, reason: Optional[str] = None) -> Booking:
        """Водитель отклоняет заявку. Оплаты и мест нет, побочных эффектов тоже."""
        booking, trip = await self._load_for_driver(booking_id, driver_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.REJECTED)

        updated = await self._bookings.update_if_status(booking_id, [BookingStatus.PENDING], {
            "status": BookingStatus.REJECTED,
            "rejected_at": self._clock(),
            "rejection_reason": (reason or "").strip() or None,
            "expires_at": None,
        })
        if updated is None:
            raise self._changed_concurrently(booking)

        await log_info("Заявка отклонена водителем", type_msg=TypeMsg.INFO, extra={"booking_id": booking_id})
        if self._notifier:
            await self._notifier.booking_rejected(updated, trip)
        return updated

    # =========================================================================
    # ОПЛАТА
    # =========================================================================

    async def process_payment(self, booking_id: str, passenger_id: str, payment_token: str) -> Booking:
        """
        Оплата брони.

        Истёкший дедлайн переводит бронь в expired без списания денег.
        Ошибка провайдера оставляет бронь как есть, вызов можно повторить:
        каждая попытка идёт к провайдеру со своим ключом идемпотентности.
        Если после списания места закончились, деньги возвращаются,
        а при неудачном возврате платёж уходит в очередь сверки.

        Raises:
            PaymentHoldExpiredError: дедлайн оплаты прошёл
            CapacityExceededError: мест не осталось
            GatewayFailureError: провайдер отклонил платёж
            DataIntegrityRiskError: деньги списаны, но ни бронь, ни возврат не удались
        """
        booking = await self._load_for_passenger(booking_id, passenger_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)

        if is_past(booking.payment_due_at, self._clock()):
            await self._expire(booking)
            raise PaymentHoldExpiredError("Срок оплаты истёк", booking_id=booking_id)

        trip = await self._require_trip(booking.trip_id)
        if trip.available_seats < booking.seats or not trip.is_bookable:
            raise CapacityExceededError(
                "Свободных мест не осталось",
                booking_id=booking_id,
                requested=booking.seats,
                available=trip.available_seats,
            )

        attempt = await self._bookings.next_payment_attempt(booking_id)
        if attempt is None:
            raise self._changed_concurrently(booking)

        charge = await self._gateway.charge(
            passenger_id,
            booking.price_total,
            payment_token,
            booking.id,
            charge_idempotency_key(booking.id, attempt),
        )
        if not charge.success:
            await log_warning(
                f"Платёж отклонён: {charge.error_message}",
                extra={"booking_id": booking_id},
            )
            raise GatewayFailureError(charge.error_message or "Платёж отклонён", booking_id=booking_id)

        try:
            confirmed = await self._finalize_payment(booking, charge.payment_id)
        except Exception as e:
            refunded = await self._refund_unfinalized_charge(booking, charge.payment_id, e)
            if not refunded:
                raise DataIntegrityRiskError(
                    "Платёж списан, но бронь не подтверждена; платёж передан на сверку",
                    booking_id=booking_id,
                    payment_id=charge.payment_id,
                ) from e
            raise

        await log_info(
            f"Бронирование оплачено: {confirmed.price_total}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking_id, "payment_id": charge.payment_id},
        )
        if self._notifier:
            await self._notifier.booking_confirmed(confirmed, trip)
        return confirmed

    async def _finalize_payment(self, booking: Booking, payment_id: Optional[str]) -> Booking:
        """Одна транзакция: списание мест и подтверждение брони."""
        async with self._db.transaction() as conn:
            reservation = await self._seats.reserve_seats(booking.trip_id, booking.seats, conn=conn)
            if not reservation.ok:
                raise CapacityExceededError(
                    "Свободных мест не осталось",
                    booking_id=booking.id,
                    requested=booking.seats,
                )
            updated = await self._bookings.update_if_status(booking.id, [BookingStatus.AWAITING_PAYMENT], {
                "status": BookingStatus.CONFIRMED,
                "payment_status": PaymentStatus.PAID,
                "payment_id": payment_id,
                "paid_at": self._clock(),
                "payment_due_at": None,
                "expires_at": None,
            }, conn=conn)
            if updated is None:
                raise self._changed_concurrently(booking)
        return updated

    async def _refund_unfinalized_charge(
        self,
        booking: Booking,
        payment_id: Optional[str],
        error: Exception,
    ) -> bool:
        """Компенсирует списание, которое не удалось закрепить за бронью."""
        reason = f"Бронь не подтверждена после оплаты: {error}"
        if payment_id:
            refund = await self._gateway.refund(
                payment_id,
                booking.price_total,
                "booking_not_finalized",
                refund_idempotency_key(payment_id),
            )
            if refund.success:
                await log_warning(
                    "Оплата возвращена: бронь не удалось подтвердить",
                    extra={"booking_id": booking.id, "payment_id": payment_id, "error": str(error)},
                )
                return True
            reason = f"{reason}; возврат не прошёл: {refund.error_message}"

        try:
            await self._reconciliation.enqueue_refund(
                ReconciliationKind.REFUND_WITHOUT_CANCELLATION,
                booking.id,
                payment_id,
                booking.price_total,
                reason,
            )
        except Exception as e:
            await log_error(
                f"Не удалось записать платёж в очередь сверки: {e}",
                extra={"booking_id": booking.id, "payment_id": payment_id, "amount": str(booking.price_total)},
                exc_info=True,
            )
        return False

    # =========================================================================
    # ПОСАДКА
    # =========================================================================

    async def check_in(self, driver_id: str, qr_code: str) -> Booking:
        """Посадка по QR коду."""
        booking = await self._bookings.get_by_qr((qr_code or "").strip().upper())
        if booking is None:
            raise NotFoundError("Бронирование по QR коду не найдено")
        trip = await self._require_trip(booking.trip_id)
        if trip.driver_id != driver_id:
            raise ForbiddenError("Посадку отмечает только водитель поездки", booking_id=booking.id)
        return await self._check_in(booking, trip)

    async def check_in_by_pnr(self, driver_id: str, trip_id: str, pnr_code: str) -> Booking:
        """
        Посадка по PNR коду.

        Raises:
            ValidationError: код не похож на PNR (проверяется до поиска)
            ForbiddenError: поездка не принадлежит водителю
            InvalidStateError: код от брони другой поездки
        """
        code = normalize_pnr(pnr_code)
        trip = await self._require_trip(trip_id)
        if trip.driver_id != driver_id:
            raise ForbiddenError("Посадку отмечает только водитель поездки", trip_id=trip_id)

        booking = await self._bookings.get_by_pnr(code)
        if booking is None:
            raise NotFoundError("Бронирование по PNR коду не найдено")
        if booking.trip_id != trip_id:
            raise InvalidStateError("PNR код относится к другой поездке", trip_id=trip_id)
        return await self._check_in(booking, trip)

    async def _check_in(self, booking: Booking, trip: Trip) -> Booking:
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CHECKED_IN)

        updated = await self._bookings.update_if_status(booking.id, [BookingStatus.CONFIRMED], {
            "status": BookingStatus.CHECKED_IN,
            "checked_in_at": self._clock(),
        })
        if updated is None:
            raise self._changed_concurrently(booking)

        await log_info("Пассажир отмечен на посадке", type_msg=TypeMsg.INFO, extra={"booking_id": booking.id})
        if self._notifier:
            await self._notifier.booking_checked_in(updated, trip)

        # Первый этап выплаты: ошибка не отменяет посадку
        try:
            await self._payouts.release_payout_stage(booking.id, PayoutStage.STAGE_10)
        except Exception as e:
            await log_warning(
                f"Выплата этапа 10 после посадки не удалась: {e}",
                extra={"booking_id": booking.id},
            )
            return updated
        return await self._bookings.get_by_id(booking.id) or updated

    # =========================================================================
    # ЗАВЕРШЕНИЕ
    # =========================================================================

    async def complete_by_passenger(self, booking_id: str, passenger_id: str) -> Booking:
        """Пассажир подтверждает, что поездка состоялась."""
        booking = await self._load_for_passenger(booking_id, passenger_id)
        return await self._complete(booking, CompletionSource.PASSENGER)

    async def _complete(self, booking: Booking, source: CompletionSource) -> Booking:
        BookingStateMachine.validate_transition(booking.status, BookingStatus.COMPLETED)

        now = self._clock()
        updated = await self._bookings.update_if_status(booking.id, [BookingStatus.CHECKED_IN], {
            "status": BookingStatus.COMPLETED,
            "completed_at": now,
            "completion_source": source,
            "dispute_status": DisputeStatus.NONE,
            "dispute_deadline_at": add_hours(now, self._rules.dispute_window_hours),
        })
        if updated is None:
            raise self._changed_concurrently(booking)

        await log_info(
            f"Поездка завершена ({source.value})",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking.id},
        )
        if self._notifier:
            await self._notifier.booking_completed(updated)
        return updated

    async def auto_complete_eligible_bookings(self, limit: int | None = None) -> int:
        """
        Завершает checked_in брони, у которых прошло прибытие поездки
        плюс задержка. Ошибка по одной брони не останавливает проход.

        Returns:
            Количество завершённых броней
        """
        candidates = await self._bookings.find_auto_complete_candidates(
            self._clock(),
            self._rules.auto_complete_delay_minutes,
            self._rules.arrival_fallback_hours,
            limit or self._rules.batch_size,
        )

        completed = 0
        for booking in candidates:
            try:
                await self._complete(booking, CompletionSource.AUTO)
                completed += 1
            except InvalidStateError:
                await log_debug("Бронь уже сменила статус, пропуск автозавершения", extra={"booking_id": booking.id})
            except Exception as e:
                await log_error(
                    f"Ошибка автозавершения брони: {e}",
                    extra={"booking_id": booking.id},
                    exc_info=True,
                )

        if candidates:
            await log_info(
                f"Автозавершение: {completed} из {len(candidates)}",
                type_msg=TypeMsg.INFO,
            )
        return completed

    # =========================================================================
    # СПОР
    # =========================================================================

    async def raise_dispute(self, booking_id: str, user_id: str, reason: str) -> Booking:
        """
        Открывает спор по завершённой поездке.

        Окно споров открыто строго до dispute_deadline_at. После выплаты
        этапа 90 спор открыть нельзя. Леджер уходит в hold.
        """
        text = (reason or "").strip()
        if not text:
            raise ValidationError("Укажите причину спора")
        if len(text) > self._rules.dispute_reason_max_length:
            raise ValidationError(
                f"Причина спора длиннее {self._rules.dispute_reason_max_length} символов",
                length=len(text),
            )

        booking, trip = await self._load_participant(booking_id, user_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.DISPUTED)

        now = self._clock()
        if booking.dispute_deadline_at is None or is_past(booking.dispute_deadline_at, now):
            raise InvalidStateError("Окно споров закрыто", booking_id=booking_id)
        if booking.payout_90_released_at is not None:
            raise InvalidStateError("Выплата водителю уже завершена", booking_id=booking_id)

        async with self._db.transaction() as conn:
            updated = await self._bookings.update_if_status(
                booking_id,
                [BookingStatus.COMPLETED, BookingStatus.DISPUTED],
                {
                    "status": BookingStatus.DISPUTED,
                    "dispute_status": DisputeStatus.OPEN,
                    "dispute_reason": text,
                    "dispute_raised_by": user_id,
                    "dispute_opened_at": now,
                },
                conn=conn,
            )
            if updated is None:
                raise self._changed_concurrently(booking)
            if updated.is_paid:
                await self._payouts.hold_for_dispute(updated, trip.driver_id, conn)
            else:
                await self._bookings.set_payout_hold_reason(booking_id, HoldReason.DISPUTE_OPEN.value, conn=conn)

        await log_warning(
            "Открыт спор по бронированию",
            extra={"booking_id": booking_id, "raised_by": user_id},
        )
        if self._notifier:
            await self._notifier.dispute_opened(updated, trip, user_id)
        return await self._bookings.get_by_id(booking_id) or updated

    # =========================================================================
    # ОТМЕНА
    # =========================================================================

    def _refund_terms(self, booking: Booking, trip: Trip) -> tuple[float, int, Decimal, Decimal]:
        hours = hours_between(self._clock(), trip.departure_time)
        if not booking.is_paid:
            return hours, 0, ZERO, ZERO
        percent, refund, penalty = self._refund_policy.split(booking.price_total, hours)
        return hours, percent, refund, penalty

    async def quote_cancellation(self, booking_id: str, user_id: str) -> CancellationQuote:
        """Сколько вернётся при отмене сейчас (без побочных эффектов)."""
        booking, trip = await self._load_participant(booking_id, user_id)
        hours, percent, refund, penalty = self._refund_terms(booking, trip)
        return CancellationQuote(
            booking_id=booking.id,
            hours_until_departure=round(hours, 2),
            refund_percent=percent,
            refund_amount=refund,
            penalty_amount=penalty,
            is_paid=booking.is_paid,
        )

    async def cancel(self, booking_id: str, user_id: str, reason: Optional[str] = None) -> Booking:
        """
        Отмена пассажиром или водителем до посадки.

        Возврат: >=24ч до отправления 100%, >=2ч 50%, иначе 0%.
        Места возвращаются только для confirmed брони.
        Бронь отменяется локально до вызова провайдера; неудачный возврат
        уходит в очередь сверки.
        """
        booking, trip = await self._load_participant(booking_id, user_id)
        if booking.status not in BookingStateMachine.CANCELLABLE:
            raise InvalidStateError(
                "Бронирование нельзя отменить в текущем статусе",
                booking_id=booking_id,
                status=booking.status.value,
            )

        target = (
            BookingStatus.CANCELLED_BY_DRIVER
            if user_id == trip.driver_id
            else BookingStatus.CANCELLED_BY_PASSENGER
        )
        _, percent, refund, penalty = self._refund_terms(booking, trip)

        async with self._db.transaction() as conn:
            updated = await self._bookings.update_if_status(booking_id, [booking.status], {
                "status": target,
                "cancelled_at": self._clock(),
                "cancellation_reason": (reason or "").strip() or None,
                "refund_amount": refund,
                "penalty_amount": penalty,
                "expires_at": None,
                "payment_due_at": None,
            }, conn=conn)
            if updated is None:
                raise self._changed_concurrently(booking)
            if booking.status == BookingStatus.CONFIRMED:
                await self._seats.release_seats(booking.trip_id, booking.seats, conn=conn)

        await log_info(
            f"Бронирование отменено ({target.value}), возврат {percent}%: {refund}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking_id, "penalty": str(penalty)},
        )

        if booking.is_paid and refund > 0:
            updated = await self._refund_cancelled(updated, refund, "booking_cancelled")
        if self._notifier:
            await self._notifier.booking_cancelled(updated, trip, refund)
        return updated

    async def _refund_cancelled(self, booking: Booking, amount: Decimal, reason: str) -> Booking:
        """Возврат по уже отменённой брони; при ошибке платёж уходит на сверку."""
        refund = None
        if booking.payment_id:
            refund = await self._gateway.refund(
                booking.payment_id,
                amount,
                reason,
                refund_idempotency_key(booking.payment_id),
            )
        if refund is None or not refund.success:
            error = refund.error_message if refund else "Нет ID платежа"
            try:
                await self._reconciliation.enqueue_refund(
                    ReconciliationKind.REFUND_PENDING,
                    booking.id,
                    booking.payment_id,
                    amount,
                    reason,
                    error=error,
                )
            except Exception as e:
                await log_error(
                    f"Не удалось записать возврат в очередь сверки: {e}",
                    extra={"booking_id": booking.id, "amount": str(amount)},
                    exc_info=True,
                )
            return booking

        payment_status = (
            PaymentStatus.REFUNDED
            if amount >= to_money(booking.price_total)
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        updated = await self._bookings.update_if_status(booking.id, [booking.status], {
            "refund_id": refund.refund_id,
            "payment_status": payment_status,
        })
        return updated or booking

    async def cancel_trip(self, trip_id: str, driver_id: str, reason: Optional[str] = None) -> list[Booking]:
        """
        Водитель отменяет поездку целиком.

        Все активные брони (до завершения) отменяются водителем с полным
        возвратом, занятые места возвращаются в счётчик, статус поездки
        остаётся cancelled. Ошибка возврата по одной брони не блокирует
        остальные.
        """
        trip = await self._require_trip(trip_id)
        if trip.driver_id != driver_id:
            raise ForbiddenError("Отменить поездку может только её водитель", trip_id=trip_id)

        now = self._clock()
        cancellation_reason = (reason or "").strip() or "trip_cancelled"
        cancelled: list[Booking] = []

        async with self._db.transaction() as conn:
            updated_trip = await self._trips.update_status_if(
                trip_id,
                TripStatus.CANCELLED,
                [TripStatus.DRAFT, TripStatus.PUBLISHED, TripStatus.FULL, TripStatus.IN_PROGRESS],
                conn=conn,
            )
            if updated_trip is None:
                raise InvalidStateError("Поездку нельзя отменить в текущем статусе", trip_id=trip_id)

            seats_to_release = 0
            active = await self._bookings.list_by_trip(
                trip_id, BookingStateMachine.TRIP_CANCELLATION_CASCADE, conn=conn,
            )
            for booking in active:
                updated = await self._bookings.update_if_status(booking.id, [booking.status], {
                    "status": BookingStatus.CANCELLED_BY_DRIVER,
                    "cancelled_at": now,
                    "cancellation_reason": cancellation_reason,
                    "refund_amount": to_money(booking.price_total) if booking.is_paid else ZERO,
                    "penalty_amount": ZERO,
                    "expires_at": None,
                    "payment_due_at": None,
                }, conn=conn)
                if updated is None:
                    continue
                if booking.holds_seats:
                    seats_to_release += booking.seats
                cancelled.append(updated)

            if seats_to_release:
                await self._seats.release_seats(trip_id, seats_to_release, conn=conn)

        await log_info(
            f"Поездка отменена водителем, отменено броней: {len(cancelled)}",
            type_msg=TypeMsg.INFO,
            extra={"trip_id": trip_id},
        )

        result: list[Booking] = []
        for booking in cancelled:
            if booking.is_paid and booking.refund_amount and booking.refund_amount > 0:
                try:
                    booking = await self._refund_cancelled(booking, booking.refund_amount, "trip_cancelled")
                except Exception as e:
                    await log_error(
                        f"Возврат при отмене поездки не выполнен: {e}",
                        extra={"booking_id": booking.id, "trip_id": trip_id},
                        exc_info=True,
                    )
            result.append(booking)

        if self._notifier:
            await self._notifier.trip_cancelled(updated_trip, [b.passenger_id for b in result])
        return result

    # =========================================================================
    # СПИСКИ
    # =========================================================================

    async def list_passenger_bookings(self, passenger_id: str) -> list[Booking]:
        """Брони пассажира, новые первыми."""
        return await self._bookings.list_by_passenger(passenger_id)

    async def list_trip_bookings(self, driver_id: str, trip_id: str) -> list[Booking]:
        """Брони поездки для её водителя."""
        trip = await self._require_trip(trip_id)
        if trip.driver_id != driver_id:
            raise ForbiddenError("Список броней доступен только водителю поездки", trip_id=trip_id)
        return await self._bookings.list_by_trip(trip_id)

    # =========================================================================
    # ИСТЕЧЕНИЕ
    # =========================================================================

    async def _expire(self, booking: Booking) -> Optional[Booking]:
        """
        Переводит бронь в expired. Места не возвращаются: pending и
        awaiting_payment брони их не занимают.
        """
        if booking.status not in (BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT):
            return None
        updated = await self._bookings.update_if_status(booking.id, [booking.status], {
            "status": BookingStatus.EXPIRED,
            "expired_at": self._clock(),
        })
        if updated is None:
            return None

        await log_info("Бронирование истекло", type_msg=TypeMsg.INFO, extra={"booking_id": booking.id})
        if self._notifier:
            await self._notifier.booking_expired(updated)
        return updated

    async def expire_overdue_bookings(self, limit: int | None = None) -> int:
        """
        Истекает pending брони после expires_at и awaiting_payment после
        payment_due_at. Ошибка по одной брони не останавливает проход.

        Returns:
            Количество истёкших броней
        """
        candidates = await self._bookings.find_expired_holds(self._clock(), limit or self._rules.batch_size)

        expired = 0
        for booking in candidates:
            try:
                if await self._expire(booking) is not None:
                    expired += 1
            except Exception as e:
                await log_error(
                    f"Ошибка истечения брони: {e}",
                    extra={"booking_id": booking.id},
                    exc_info=True,
                )

        if candidates:
            await log_info(f"Истекло броней: {expired} из {len(candidates)}", type_msg=TypeMsg.INFO)
        return expired
