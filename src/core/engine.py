# src/core/engine.py
"""
Сборка доменных сервисов поверх инфраструктуры.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.common.money import Clock, utc_now
from src.core.bookings.cancellation import RefundPolicy
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingRules, BookingService
from src.core.notifications.service import BookingNotifier
from src.core.payouts.repository import PayoutRepository
from src.core.payouts.service import PayoutLedgerEngine
from src.core.pricing.segments import SegmentPricingResolver
from src.core.reconciliation.repository import ReconciliationRepository
from src.core.reconciliation.service import ReconciliationService
from src.core.trips.repository import TripRepository
from src.core.trips.seat_guard import SeatInventoryGuard
from src.infra.cache import KeyValueCache
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus
from src.infra.payment_gateway import PaymentGateway


@dataclass
class BookingEngine:
    """Готовые к работе сервисы движка бронирований."""
    bookings: BookingService
    payouts: PayoutLedgerEngine
    reconciliation: ReconciliationService
    seat_guard: SeatInventoryGuard
    pricing: SegmentPricingResolver


def build_engine(
    db: DatabaseManager,
    gateway: PaymentGateway,
    event_bus: Optional[EventBus] = None,
    cache: Optional[KeyValueCache] = None,
    clock: Clock = utc_now,
    rules: BookingRules | None = None,
    refund_policy: RefundPolicy | None = None,
) -> BookingEngine:
    """
    Собирает сервисы с общими репозиториями.

    Args:
        db: Менеджер базы данных
        gateway: Платёжный провайдер
        event_bus: Шина событий для уведомлений (без неё уведомления не отправляются)
        cache: Кэш участков маршрута
        clock: Источник текущего времени
        rules: Сроки брони (по умолчанию из конфига)
        refund_policy: Тарифы возврата (по умолчанию из конфига)
    """
    from src.config import settings

    booking_repo = BookingRepository(db)
    trip_repo = TripRepository(db)
    seat_guard = SeatInventoryGuard(trip_repo)
    notifier = BookingNotifier(event_bus) if event_bus is not None else None

    payouts = PayoutLedgerEngine(
        db=db,
        bookings=booking_repo,
        trips=trip_repo,
        payouts=PayoutRepository(db),
        gateway=gateway,
        notifier=notifier,
        clock=clock,
        stage_10_percent=settings.payouts.STAGE_10_PERCENT,
        currency=settings.payouts.CURRENCY,
    )
    reconciliation = ReconciliationService(
        db=db,
        repository=ReconciliationRepository(db),
        bookings=booking_repo,
        gateway=gateway,
        clock=clock,
    )
    pricing = SegmentPricingResolver(cache, ttl=settings.cache.SEGMENT_QUOTE_TTL)

    bookings = BookingService(
        db=db,
        bookings=booking_repo,
        trips=trip_repo,
        seat_guard=seat_guard,
        gateway=gateway,
        payouts=payouts,
        reconciliation=reconciliation,
        notifier=notifier,
        pricing=pricing,
        clock=clock,
        rules=rules,
        refund_policy=refund_policy,
    )
    return BookingEngine(
        bookings=bookings,
        payouts=payouts,
        reconciliation=reconciliation,
        seat_guard=seat_guard,
        pricing=pricing,
    )
