# src/core/payouts/models.py
"""
Модели выплат водителям.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.common.constants import LedgerStatus, PayoutAccountStatus, PayoutStage
from src.common.money import ZERO, percent_of, to_money


class ReleaseOutcome(str, Enum):
    """Итог попытки выплаты этапа."""
    RELEASED = "released"
    SKIPPED = "skipped"  # уже выплачен или ещё не положен
    HELD = "held"  # деньги не ушли, запись в hold


class PayoutLedger(BaseModel):
    """
    Запись выплат по оплаченной брони.
    Суммы вычисляются один раз при создании и больше не пересчитываются.
    """

    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    driver_id: str
    gross_amount: Decimal
    commission_amount: Decimal
    driver_net_amount: Decimal
    release_10_amount: Decimal
    release_90_amount: Decimal
    currency: str = "EUR"
    status: LedgerStatus = LedgerStatus.PENDING
    stage_10_released_at: Optional[datetime] = None
    stage_90_released_at: Optional[datetime] = None
    hold_reason: Optional[str] = None
    last_error: Optional[str] = None
    provider_transfer_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def derive(
        cls,
        booking_id: str,
        driver_id: str,
        gross: Decimal,
        commission: Decimal,
        stage_10_percent: Decimal = Decimal("10"),
        currency: str = "EUR",
    ) -> "PayoutLedger":
        """
        Рассчитывает суммы этапов.
        Остаток округления уходит в этап 90, поэтому r10 + r90 == net всегда.
        """
        net = max(to_money(to_money(gross) - to_money(commission)), ZERO)
        release_10 = percent_of(net, stage_10_percent)
        return cls(
            booking_id=booking_id,
            driver_id=driver_id,
            gross_amount=to_money(gross),
            commission_amount=to_money(commission),
            driver_net_amount=net,
            release_10_amount=release_10,
            release_90_amount=net - release_10,
            currency=currency,
        )

    def amount_for(self, stage: PayoutStage) -> Decimal:
        """Сумма этапа."""
        return self.release_10_amount if stage == PayoutStage.STAGE_10 else self.release_90_amount


class PayoutAccount(BaseModel):
    """Платёжный аккаунт водителя у провайдера."""

    model_config = ConfigDict(from_attributes=True)

    driver_id: str
    provider_account_id: Optional[str] = None
    status: PayoutAccountStatus = PayoutAccountStatus.PENDING
    holder_name: Optional[str] = None
    iban_last4: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def can_receive(self) -> bool:
        """Можно ли переводить деньги на аккаунт."""
        return self.status == PayoutAccountStatus.VERIFIED and bool(self.provider_account_id)


@dataclass
class PayoutSweepResult:
    """Счётчики прохода выплат."""
    processed: int = 0
    released: int = 0
    held: int = 0
    skipped: int = 0
    failed: int = 0

    def count(self, outcome: ReleaseOutcome) -> None:
        if outcome == ReleaseOutcome.RELEASED:
            self.released += 1
        elif outcome == ReleaseOutcome.HELD:
            self.held += 1
        else:
            self.skipped += 1

