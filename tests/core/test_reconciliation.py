# tests/core/test_reconciliation.py
"""
Тесты очереди сверки платежей.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from src.common.constants import (
    BookingStatus,
    PaymentStatus,
    ReconciliationKind,
    ReconciliationStatus,
)

from support.provider import ReplayingProvider, http_gateway
from support.world import PASSENGER_ID, BookingWorld


class TestEnqueue:
    """Постановка в очередь."""

    @pytest.mark.asyncio
    async def test_enqueue_logs_loudly(self, world) -> None:
        with patch("src.core.reconciliation.service.log_error", new_callable=AsyncMock) as log:
            item = await world.reconciliation.enqueue_refund(
                ReconciliationKind.REFUND_PENDING, "b-1", "pay_9", Decimal("12.345"), "booking_cancelled",
                error="timeout",
            )

        assert item.id == 1
        assert item.amount == Decimal("12.35")
        assert item.status == ReconciliationStatus.OPEN
        assert log.await_args.kwargs["extra"]["payment_id"] == "pay_9"


class TestRetry:
    """Повтор возвратов."""

    @pytest.mark.asyncio
    async def test_still_failing_records_attempt(self, world) -> None:
        booking = await world.paid()
        world.gateway.refund_error = "provider down"
        await world.service.cancel(booking.id, PASSENGER_ID)

        result = await world.reconciliation.retry_open_refunds()

        assert (result.processed, result.resolved, result.failed) == (1, 0, 1)
        [item] = world.reconciliation_repo.items
        assert item.attempts == 1
        assert item.status == ReconciliationStatus.OPEN

    @pytest.mark.asyncio
    async def test_partial_refund_status(self, world) -> None:
        booking = await world.paid()
        world.clock.advance(hours=30)
        world.gateway.refund_error = "provider down"
        await world.service.cancel(booking.id, PASSENGER_ID)
        world.gateway.refund_error = None

        await world.reconciliation.retry_open_refunds()

        stored = world.booking(booking.id)
        assert stored.payment_status == PaymentStatus.PARTIALLY_REFUNDED
        assert stored.refund_amount == Decimal("75.00")
        assert world.gateway.refunds[-1][1] == Decimal("75.00")

    @pytest.mark.asyncio
    async def test_refund_without_cancellation_leaves_booking(self, world) -> None:
        booking = await world.create()
        await world.reconciliation.enqueue_refund(
            ReconciliationKind.REFUND_WITHOUT_CANCELLATION, booking.id, "pay_7", Decimal("150"), "booking_not_finalized",
        )

        result = await world.reconciliation.retry_open_refunds()

        assert result.resolved == 1
        stored = world.booking(booking.id)
        assert stored.status == BookingStatus.AWAITING_PAYMENT
        assert stored.payment_status == PaymentStatus.PENDING
        assert world.gateway.refunds == [("pay_7", Decimal("150.00"), "booking_not_finalized")]

    @pytest.mark.asyncio
    async def test_missing_payment_id_needs_manual_review(self, world) -> None:
        await world.reconciliation.enqueue_refund(
            ReconciliationKind.REFUND_PENDING, "b-1", None, Decimal("10"), "booking_cancelled",
        )

        result = await world.reconciliation.retry_open_refunds()

        assert result.failed == 1
        assert world.gateway.refunds == []
        assert world.reconciliation_repo.items[0].last_error == "Нет ID платежа, нужен ручной разбор"

    @pytest.mark.asyncio
    async def test_resolved_items_are_not_retried(self, world) -> None:
        await world.reconciliation.enqueue_refund(
            ReconciliationKind.REFUND_WITHOUT_CANCELLATION, "b-1", "pay_1", Decimal("10"), "r",
        )
        await world.reconciliation.retry_open_refunds()

        result = await world.reconciliation.retry_open_refunds()

        assert result.processed == 0
        assert len(world.gateway.refunds) == 1

class TestRefundIdempotency:
    """Повтор возврата идёт с тем же ключом, что и первая попытка."""

    @pytest.mark.asyncio
    async def test_retry_reuses_refund_key(self, world) -> None:
        booking = await world.paid()
        world.gateway.refund_error = "provider down"
        await world.service.cancel(booking.id, PASSENGER_ID)
        world.gateway.refund_error = None

        await world.reconciliation.retry_open_refunds()

        assert world.gateway.refund_keys == ["refund-pay_1", "refund-pay_1"]

    @pytest.mark.asyncio
    async def test_lost_refund_response_is_not_refunded_twice(self, clock) -> None:
        provider = ReplayingProvider()
        world = BookingWorld(clock, gateway=http_gateway(provider))
        world.add_trip()
        booking = await world.paid()
        provider.lost_responses.append("/v1/refunds")

        await world.service.cancel(booking.id, PASSENGER_ID)
        [item] = world.reconciliation_repo.items
        assert item.kind == ReconciliationKind.REFUND_PENDING

        result = await world.reconciliation.retry_open_refunds()

        assert result.resolved == 1
        assert provider.refunds == [booking.payment_id]
        assert world.booking(booking.id).payment_status == PaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_failed_resolve_then_retry_does_not_refund_again(self, world) -> None:
        booking = await world.paid()
        world.gateway.refund_error = "provider down"
        await world.service.cancel(booking.id, PASSENGER_ID)
        world.gateway.refund_error = None

        with patch.object(
            world.reconciliation_repo, "resolve",
            new=AsyncMock(side_effect=RuntimeError("db down")),
        ):
            first = await world.reconciliation.retry_open_refunds()
        second = await world.reconciliation.retry_open_refunds()

        assert first.failed == 1
        assert second.resolved == 1
        assert len(world.gateway.refunds) == 1
