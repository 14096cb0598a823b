# src/core/reconciliation/__init__.py
"""
Очередь сверки платежей.
"""

from src.core.reconciliation.models import ReconciliationItem, ReconciliationSweepResult
from src.core.reconciliation.repository import ReconciliationRepository
from src.core.reconciliation.service import ReconciliationService

__all__ = [
    "ReconciliationItem",
    "ReconciliationSweepResult",
    "ReconciliationRepository",
    "ReconciliationService",
]
