"""
TaskTroll Core Runtime

Expiry scheduler driving the accountability loop and the dispatcher
that delivers reminders to the user.
"""

from .dispatcher import (
    NotificationDispatcher,
    HostAlerts,
    DesktopAlerts,
    notification_id,
)
from .scheduler import ExpiryScheduler

__all__ = [
    'NotificationDispatcher',
    'HostAlerts',
    'DesktopAlerts',
    'notification_id',
    'ExpiryScheduler',
]
