# src/core/payouts/repository.py
"""
Репозиторий леджеров выплат, платёжных аккаунтов и кошельков водителей.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.common.constants import LedgerStatus, PayoutStage
from src.core.payouts.models import PayoutAccount, PayoutLedger
from src.infra.database import DatabaseManager, QueryRunner

LEDGER_COLUMNS = """
    booking_id, driver_id, gross_amount, commission_amount, driver_net_amount,
    release_10_amount, release_90_amount, currency, status,
    stage_10_released_at, stage_90_released_at, hold_reason, last_error,
    provider_transfer_id, created_at, updated_at
"""

ACCOUNT_COLUMNS = """
    driver_id, provider_account_id, status, holder_name, iban_last4, created_at, updated_at
"""


class PayoutRepository:
    """Репозиторий выплат."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _runner(self, conn: QueryRunner | None) -> QueryRunner:
        return conn or self._db

    # =========================================================================
    # ЛЕДЖЕРЫ
    # =========================================================================

    async def get_ledger(self, booking_id: str, conn: QueryRunner | None = None) -> Optional[PayoutLedger]:
        row = await self._runner(conn).fetchrow(
            f"SELECT {LEDGER_COLUMNS} FROM payout_ledgers WHERE booking_id = $1",
            booking_id,
        )
        return PayoutLedger.model_validate(dict(row)) if row else None

    async def create_ledger_if_absent(
        self,
        ledger: PayoutLedger,
        conn: QueryRunner | None = None,
    ) -> PayoutLedger:
        """
        Создаёт леджер; если он уже есть, возвращает существующий без изменений.
        """
        runner = self._runner(conn)
        row = await runner.fetchrow(
            f"""
            INSERT INTO payout_ledgers (
                booking_id, driver_id, gross_amount, commission_amount, driver_net_amount,
                release_10_amount, release_90_amount, currency, status
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (booking_id) DO NOTHING
            RETURNING {LEDGER_COLUMNS}
            """,
            ledger.booking_id,
            ledger.driver_id,
            ledger.gross_amount,
            ledger.commission_amount,
            ledger.driver_net_amount,
            ledger.release_10_amount,
            ledger.release_90_amount,
            ledger.currency,
            ledger.status.value,
        )
        if row is None:
            existing = await self.get_ledger(ledger.booking_id, conn=conn)
            if existing is None:
                raise RuntimeError(f"Леджер {ledger.booking_id} не создан и не найден")
            return existing
        return PayoutLedger.model_validate(dict(row))

    async def mark_hold(
        self,
        booking_id: str,
        reason: str,
        last_error: str | None = None,
        conn: QueryRunner | None = None,
    ) -> None:
        """Переводит леджер в hold с причиной."""
        await self._runner(conn).execute(
            """
            UPDATE payout_ledgers
            SET status = 'hold', hold_reason = $2, last_error = $3, updated_at = NOW()
            WHERE booking_id = $1
            """,
            booking_id,
            reason,
            last_error,
        )

    async def mark_stage_released(
        self,
        booking_id: str,
        stage: PayoutStage,
        released_at: datetime,
        transfer_id: str | None,
        conn: QueryRunner | None = None,
    ) -> None:
        """Отмечает выплату этапа: partial_released после 10, released после 90."""
        column = "stage_10_released_at" if stage == PayoutStage.STAGE_10 else "stage_90_released_at"
        status = LedgerStatus.PARTIAL_RELEASED if stage == PayoutStage.STAGE_10 else LedgerStatus.RELEASED
        await self._runner(conn).execute(
            f"""
            UPDATE payout_ledgers
            SET {column} = $2,
                status = $3,
                hold_reason = NULL,
                last_error = NULL,
                provider_transfer_id = COALESCE($4, provider_transfer_id),
                updated_at = NOW()
            WHERE booking_id = $1
            """,
            booking_id,
            released_at,
            status.value,
            transfer_id,
        )

    async def list_held(self, limit: int = 100) -> list[PayoutLedger]:
        """Леджеры в hold для разбора операторами."""
        rows = await self._db.fetch(
            f"""
            SELECT {LEDGER_COLUMNS} FROM payout_ledgers
            WHERE status = 'hold'
            ORDER BY updated_at
            LIMIT $1
            """,
            limit,
        )
        return [PayoutLedger.model_validate(dict(row)) for row in rows]

    # =========================================================================
    # ПЛАТЁЖНЫЕ АККАУНТЫ
    # =========================================================================

    async def get_account(self, driver_id: str, conn: QueryRunner | None = None) -> Optional[PayoutAccount]:
        row = await self._runner(conn).fetchrow(
            f"SELECT {ACCOUNT_COLUMNS} FROM driver_payout_accounts WHERE driver_id = $1",
            driver_id,
        )
        return PayoutAccount.model_validate(dict(row)) if row else None

    async def upsert_account(self, account: PayoutAccount) -> PayoutAccount:
        row = await self._db.fetchrow(
            f"""
            INSERT INTO driver_payout_accounts (driver_id, provider_account_id, status, holder_name, iban_last4)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (driver_id) DO UPDATE
            SET provider_account_id = EXCLUDED.provider_account_id,
                status = EXCLUDED.status,
                holder_name = EXCLUDED.holder_name,
                iban_last4 = EXCLUDED.iban_last4,
                updated_at = NOW()
            RETURNING {ACCOUNT_COLUMNS}
            """,
            account.driver_id,
            account.provider_account_id,
            account.status.value,
            account.holder_name,
            account.iban_last4,
        )
        return PayoutAccount.model_validate(dict(row))

    # =========================================================================
    # КОШЕЛЬКИ
    # =========================================================================

    async def credit_wallet(
        self,
        driver_id: str,
        amount: Decimal,
        currency: str = "EUR",
        conn: QueryRunner | None = None,
    ) -> Decimal:
        """Зачисляет сумму на кошелёк водителя, возвращает новый баланс."""
        balance = await self._runner(conn).fetchval(
            """
            INSERT INTO driver_wallets (driver_id, balance, currency)
            VALUES ($1, $2, $3)
            ON CONFLICT (driver_id) DO UPDATE
            SET balance = driver_wallets.balance + EXCLUDED.balance, updated_at = NOW()
            RETURNING balance
            """,
            driver_id,
            amount,
            currency,
        )
        return Decimal(balance)

    async def get_wallet_balance(self, driver_id: str) -> Decimal:
        balance = await self._db.fetchval(
            "SELECT balance FROM driver_wallets WHERE driver_id = $1",
            driver_id,
        )
        return Decimal(balance) if balance is not None else Decimal("0.00")
