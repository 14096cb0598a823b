# src/core/reconciliation/models.py
"""
Модели очереди сверки платежей.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.common.constants import ReconciliationKind, ReconciliationStatus


class ReconciliationItem(BaseModel):
    """
    Расхождение между провайдером и локальным состоянием:
    деньги списаны, но возврат не выполнен.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    kind: ReconciliationKind
    booking_id: str
    payment_id: Optional[str] = None
    amount: Decimal
    reason: str
    status: ReconciliationStatus = ReconciliationStatus.OPEN
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


@dataclass
class ReconciliationSweepResult:
    processed: int = 0
    resolved: int = 0
    failed: int = 0
