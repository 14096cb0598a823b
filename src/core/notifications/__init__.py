# src/core/notifications/__init__.py
"""
Уведомления участников бронирования.
"""

from src.core.notifications.service import BookingNotifier

__all__ = [
    "BookingNotifier",
]
