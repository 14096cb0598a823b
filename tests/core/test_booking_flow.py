# tests/core/test_booking_flow.py
"""
Сквозные сценарии: от бронирования до выплаты водителю,
инвариант мест и гонка за последнее место.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from src.common.constants import BookingStatus, LedgerStatus, TripStatus
from src.common.exceptions import CapacityExceededError
from src.core.bookings.models import Booking

from support.world import DRIVER_ID, PASSENGER_ID


async def assert_seat_invariant(world, trip_id: str = "trip-1") -> None:
    trip = world.trip(trip_id)
    held = await world.trips.seats_held(trip_id)
    assert trip.available_seats + held == trip.total_seats
    assert 0 <= trip.available_seats <= trip.total_seats


class TestHappyPath:
    """Бронь на 2 места по 150 от создания до финальной выплаты."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, world) -> None:
        world.verify_driver()

        booking = await world.create(seats=2)
        assert booking.price_total == Decimal("300.00")
        assert booking.commission_amount == Decimal("30.00")

        await world.service.process_payment(booking.id, PASSENGER_ID, "tok_visa")
        assert world.trip().available_seats == 2

        await world.service.check_in(DRIVER_ID, booking.qr_code)
        ledger = world.db.state.ledgers[booking.id]
        assert ledger.driver_net_amount == Decimal("270.00")
        assert ledger.release_10_amount == Decimal("27.00")
        assert ledger.release_90_amount == Decimal("243.00")
        assert world.wallet() == Decimal("27.00")

        await world.service.complete_by_passenger(booking.id, PASSENGER_ID)
        world.clock.advance(hours=24)
        result = await world.payouts.release_pending_payouts()

        assert result.released == 1
        assert world.wallet() == Decimal("270.00")
        assert world.db.state.wallet_credits == [
            (DRIVER_ID, Decimal("27.00")),
            (DRIVER_ID, Decimal("243.00")),
        ]
        assert world.db.state.ledgers[booking.id].status == LedgerStatus.RELEASED
        assert world.published_events() == [
            "booking.requested",
            "booking.confirmed",
            "booking.checked_in",
            "payout.released",
            "booking.completed",
            "payout.released",
        ]

    @pytest.mark.asyncio
    async def test_second_sweep_pays_nothing(self, world) -> None:
        world.verify_driver()
        await world.completed(seats=2)
        world.clock.advance(hours=24)
        await world.payouts.release_pending_payouts()

        result = await world.payouts.release_pending_payouts()

        assert result.processed == 0
        assert world.wallet() == Decimal("270.00")


class TestSeatInvariant:
    """available + занятые места == вместимость после любой цепочки операций."""

    @pytest.mark.asyncio
    async def test_mixed_operations(self, world) -> None:
        a = await world.paid(seats=2, passenger_id="p-1")
        await assert_seat_invariant(world)

        b = await world.paid(seats=1, passenger_id="p-2")
        await world.create(seats=1, passenger_id="p-3")
        await assert_seat_invariant(world)

        await world.service.cancel(a.id, "p-1")
        await assert_seat_invariant(world)

        await world.service.check_in(DRIVER_ID, b.qr_code)
        await world.paid(seats=3, passenger_id="p-4")
        await assert_seat_invariant(world)
        assert world.trip().status == TripStatus.FULL

        world.clock.advance(minutes=20)
        await world.service.expire_overdue_bookings()
        await assert_seat_invariant(world)

        await world.service.cancel_trip("trip-1", DRIVER_ID)
        assert world.trip().available_seats == world.trip().total_seats
        assert await world.trips.seats_held("trip-1") == 0


class TestLastSeatRace:
    """Два пассажира одновременно оплачивают последнее место."""

    @pytest.mark.asyncio
    async def test_exactly_one_wins(self, world) -> None:
        world.add_trip(total_seats=1, available_seats=1)
        first = await world.create(passenger_id="p-1")
        second = await world.create(passenger_id="p-2")

        results = await asyncio.gather(
            world.service.process_payment(first.id, "p-1", "tok_a"),
            world.service.process_payment(second.id, "p-2", "tok_b"),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Booking)]
        losers = [r for r in results if isinstance(r, CapacityExceededError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert winners[0].status == BookingStatus.CONFIRMED

        assert world.trip().available_seats == 0
        assert world.trip().status == TripStatus.FULL
        assert len(world.gateway.charges) - len(world.gateway.refunds) == 1
        assert world.reconciliation_repo.items == []
        await assert_seat_invariant(world)
