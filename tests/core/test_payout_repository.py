# tests/core/test_payout_repository.py
"""
Тесты SQL репозитория выплат: леджеры, аккаунты и кошельки (БД замокана).
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.common.constants import LedgerStatus, PayoutAccountStatus, PayoutStage
from src.core.payouts.models import PayoutAccount, PayoutLedger
from src.core.payouts.repository import PayoutRepository

NOW = datetime(2026, 3, 3, 8, 0, tzinfo=timezone.utc)


def ledger_row(**overrides: Any) -> dict[str, Any]:
    row = {
        "booking_id": "b-1",
        "driver_id": "driver-1",
        "gross_amount": Decimal("300.00"),
        "commission_amount": Decimal("30.00"),
        "driver_net_amount": Decimal("270.00"),
        "release_10_amount": Decimal("27.00"),
        "release_90_amount": Decimal("243.00"),
        "currency": "EUR",
        "status": "pending",
        "stage_10_released_at": None,
        "stage_90_released_at": None,
        "hold_reason": None,
        "last_error": None,
        "provider_transfer_id": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def sql_of(mock: AsyncMock) -> str:
    return " ".join(mock.await_args.args[0].split())


@pytest.fixture
def ledger() -> PayoutLedger:
    return PayoutLedger.derive("b-1", "driver-1", Decimal("300.00"), Decimal("30.00"))


class TestLedgers:
    """Создание и переходы леджера."""

    @pytest.mark.asyncio
    async def test_create_inserts_derived_amounts(self, mock_db: AsyncMock, ledger: PayoutLedger) -> None:
        mock_db.fetchrow.return_value = ledger_row()

        created = await PayoutRepository(mock_db).create_ledger_if_absent(ledger)

        sql, *params = mock_db.fetchrow.await_args.args
        assert "ON CONFLICT (booking_id) DO NOTHING" in sql
        assert params == [
            "b-1", "driver-1",
            Decimal("300.00"), Decimal("30.00"), Decimal("270.00"),
            Decimal("27.00"), Decimal("243.00"),
            "EUR", "pending",
        ]
        assert created.release_90_amount == Decimal("243.00")
        assert mock_db.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_existing_ledger_is_reread(self, mock_db: AsyncMock, ledger: PayoutLedger) -> None:
        stored = ledger_row(status="partial_released", stage_10_released_at=NOW, provider_transfer_id="tr_1")
        mock_db.fetchrow.side_effect = [None, stored]

        existing = await PayoutRepository(mock_db).create_ledger_if_absent(ledger)

        assert existing.status == LedgerStatus.PARTIAL_RELEASED
        assert existing.provider_transfer_id == "tr_1"
        reread_sql, booking_id = mock_db.fetchrow.await_args_list[1].args
        assert "WHERE booking_id = $1" in reread_sql
        assert booking_id == "b-1"

    @pytest.mark.asyncio
    async def test_conflict_without_row_is_error(self, mock_db: AsyncMock, ledger: PayoutLedger) -> None:
        mock_db.fetchrow.side_effect = [None, None]

        with pytest.raises(RuntimeError, match="b-1"):
            await PayoutRepository(mock_db).create_ledger_if_absent(ledger)

    @pytest.mark.asyncio
    async def test_create_inside_transaction(self, mock_db: AsyncMock, ledger: PayoutLedger) -> None:
        conn = AsyncMock()
        conn.fetchrow.side_effect = [None, ledger_row()]

        await PayoutRepository(mock_db).create_ledger_if_absent(ledger, conn=conn)

        assert conn.fetchrow.await_count == 2
        mock_db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mark_hold(self, mock_db: AsyncMock) -> None:
        await PayoutRepository(mock_db).mark_hold("b-1", "payout_failed", "provider timeout")

        sql, *params = mock_db.execute.await_args.args
        assert "SET status = 'hold', hold_reason = $2, last_error = $3" in sql
        assert params == ["b-1", "payout_failed", "provider timeout"]

    @pytest.mark.asyncio
    async def test_mark_stage_10_released(self, mock_db: AsyncMock) -> None:
        conn = AsyncMock()

        await PayoutRepository(mock_db).mark_stage_released("b-1", PayoutStage.STAGE_10, NOW, "tr_1", conn=conn)

        sql = sql_of(conn.execute)
        _, booking_id, released_at, status, transfer_id = conn.execute.await_args.args
        assert "SET stage_10_released_at = $2" in sql
        assert "hold_reason = NULL, last_error = NULL" in sql
        assert "provider_transfer_id = COALESCE($4, provider_transfer_id)" in sql
        assert (booking_id, released_at, status, transfer_id) == ("b-1", NOW, "partial_released", "tr_1")
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mark_stage_90_released(self, mock_db: AsyncMock) -> None:
        await PayoutRepository(mock_db).mark_stage_released("b-1", PayoutStage.STAGE_90, NOW, None)

        assert "SET stage_90_released_at = $2" in sql_of(mock_db.execute)
        assert mock_db.execute.await_args.args[3] == "released"

    @pytest.mark.asyncio
    async def test_list_held(self, mock_db: AsyncMock) -> None:
        mock_db.fetch.return_value = [ledger_row(status="hold", hold_reason="dispute_open")]

        held = await PayoutRepository(mock_db).list_held(5)

        sql, limit = mock_db.fetch.await_args.args
        assert "WHERE status = 'hold'" in sql
        assert limit == 5
        assert held[0].hold_reason == "dispute_open"


class TestAccounts:
    """Платёжные аккаунты водителей."""

    @pytest.mark.asyncio
    async def test_upsert_account(self, mock_db: AsyncMock) -> None:
        mock_db.fetchrow.return_value = {
            "driver_id": "driver-1",
            "provider_account_id": "acct_1",
            "status": "verified",
            "holder_name": "Ivan Petrov",
            "iban_last4": "3000",
            "created_at": NOW,
            "updated_at": NOW,
        }
        account = PayoutAccount(
            driver_id="driver-1",
            provider_account_id="acct_1",
            status=PayoutAccountStatus.VERIFIED,
            holder_name="Ivan Petrov",
            iban_last4="3000",
        )

        saved = await PayoutRepository(mock_db).upsert_account(account)

        sql, *params = mock_db.fetchrow.await_args.args
        assert "ON CONFLICT (driver_id) DO UPDATE" in sql
        assert params == ["driver-1", "acct_1", "verified", "Ivan Petrov", "3000"]
        assert saved.can_receive is True

    @pytest.mark.asyncio
    async def test_missing_account(self, mock_db: AsyncMock) -> None:
        assert await PayoutRepository(mock_db).get_account("driver-9") is None


class TestWallets:
    """Кошельки водителей."""

    @pytest.mark.asyncio
    async def test_credit_is_upsert_in_given_transaction(self, mock_db: AsyncMock) -> None:
        conn = AsyncMock()
        conn.fetchval.return_value = Decimal("297.00")

        balance = await PayoutRepository(mock_db).credit_wallet("driver-1", Decimal("27.00"), "EUR", conn=conn)

        sql = sql_of(conn.fetchval)
        assert "ON CONFLICT (driver_id) DO UPDATE" in sql
        assert "SET balance = driver_wallets.balance + EXCLUDED.balance" in sql
        assert conn.fetchval.await_args.args[1:] == ("driver-1", Decimal("27.00"), "EUR")
        assert balance == Decimal("297.00")
        mock_db.fetchval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_balance_of_unknown_driver(self, mock_db: AsyncMock) -> None:
        assert await PayoutRepository(mock_db).get_wallet_balance("driver-9") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_balance(self, mock_db: AsyncMock) -> None:
        mock_db.fetchval.return_value = Decimal("270.00")

        assert await PayoutRepository(mock_db).get_wallet_balance("driver-1") == Decimal("270.00")
