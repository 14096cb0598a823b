# src/core/payouts/__init__.py
"""
Домен выплат водителям.
"""

from src.core.payouts.models import PayoutAccount, PayoutLedger, PayoutSweepResult, ReleaseOutcome
from src.core.payouts.repository import PayoutRepository
from src.core.payouts.service import PayoutLedgerEngine, payout_idempotency_key

__all__ = [
    "PayoutAccount",
    "PayoutLedger",
    "PayoutSweepResult",
    "ReleaseOutcome",
    "PayoutRepository",
    "PayoutLedgerEngine",
    "payout_idempotency_key",
]
