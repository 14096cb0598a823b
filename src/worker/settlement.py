# src/worker/settlement.py
"""
Воркер расчётов: автозавершение поездок, выплаты водителям и сверка возвратов.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from src.worker.base import BaseWorker
from src.common.logger import log_error
from src.core.bookings.service import BookingService
from src.core.payouts.models import PayoutSweepResult
from src.core.payouts.service import PayoutLedgerEngine
from src.core.reconciliation.models import ReconciliationSweepResult
from src.core.reconciliation.service import ReconciliationService


@dataclass
class SettlementReport:
    """Итог одного прохода."""
    auto_completed: int = 0
    payouts: PayoutSweepResult = field(default_factory=PayoutSweepResult)
    reconciliation: Optional[ReconciliationSweepResult] = None


class SettlementWorker(BaseWorker):
    """
    Каждый шаг прохода независим: ошибка автозавершения не мешает
    выплатам, ошибка выплат не мешает сверке.
    """

    def __init__(
        self,
        bookings: BookingService,
        payouts: PayoutLedgerEngine,
        reconciliation: Optional[ReconciliationService] = None,
        interval: float = 300,
        batch_size: int = 200,
    ) -> None:
        super().__init__(interval)
        self._bookings = bookings
        self._payouts = payouts
        self._reconciliation = reconciliation
        self._batch_size = batch_size

    @property
    def name(self) -> str:
        return "SettlementWorker"

    async def run_once(self) -> SettlementReport:
        report = SettlementReport()

        try:
            report.auto_completed = await self._bookings.auto_complete_eligible_bookings(self._batch_size)
        except Exception as e:
            await log_error(f"Автозавершение не выполнено: {e}", exc_info=True)

        try:
            report.payouts = await self._payouts.release_pending_payouts(self._batch_size)
        except Exception as e:
            await log_error(f"Проход выплат не выполнен: {e}", exc_info=True)

        if self._reconciliation is not None:
            try:
                report.reconciliation = await self._reconciliation.retry_open_refunds(self._batch_size)
            except Exception as e:
                await log_error(f"Проход сверки не выполнен: {e}", exc_info=True)

        return report
