# src/worker/__init__.py
"""
Периодические воркеры: истечение броней и расчёты с водителями.
"""

from src.worker.base import BaseWorker
from src.worker.expiry import ExpiryWorker
from src.worker.settlement import SettlementReport, SettlementWorker

__all__ = ["BaseWorker", "ExpiryWorker", "SettlementReport", "SettlementWorker"]
