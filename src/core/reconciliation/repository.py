# src/core/reconciliation/repository.py
"""
Репозиторий очереди сверки платежей.
"""

from __future__ import annotations

from datetime import datetime

from src.core.reconciliation.models import ReconciliationItem
from src.infra.database import DatabaseManager, QueryRunner

ITEM_COLUMNS = """
    id, kind, booking_id, payment_id, amount, reason, status, attempts,
    last_error, created_at, updated_at, resolved_at
"""


class ReconciliationRepository:
    """Репозиторий записей сверки."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def enqueue(self, item: ReconciliationItem, conn: QueryRunner | None = None) -> ReconciliationItem:
        row = await (conn or self._db).fetchrow(
            f"""
            INSERT INTO payment_reconciliations (kind, booking_id, payment_id, amount, reason, last_error)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING {ITEM_COLUMNS}
            """,
            item.kind.value,
            item.booking_id,
            item.payment_id,
            item.amount,
            item.reason,
            item.last_error,
        )
        return ReconciliationItem.model_validate(dict(row))

    async def list_open(self, limit: int = 100) -> list[ReconciliationItem]:
        rows = await self._db.fetch(
            f"""
            SELECT {ITEM_COLUMNS} FROM payment_reconciliations
            WHERE status = 'open'
            ORDER BY created_at
            LIMIT $1
            """,
            limit,
        )
        return [ReconciliationItem.model_validate(dict(row)) for row in rows]

    async def record_attempt(self, item_id: int, error: str | None) -> None:
        await self._db.execute(
            """
            UPDATE payment_reconciliations
            SET attempts = attempts + 1, last_error = $2, updated_at = NOW()
            WHERE id = $1
            """,
            item_id,
            error,
        )

    async def resolve(self, item_id: int, resolved_at: datetime, conn: QueryRunner | None = None) -> None:
        await (conn or self._db).execute(
            """
            UPDATE payment_reconciliations
            SET status = 'resolved', attempts = attempts + 1, last_error = NULL,
                resolved_at = $2, updated_at = NOW()
            WHERE id = $1 AND status = 'open'
            """,
            item_id,
            resolved_at,
        )
