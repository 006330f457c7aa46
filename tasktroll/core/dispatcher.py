"""
TaskTroll Notification Dispatcher - Surfacing Reminders

Responsibilities:
- Raise a host alert for an overdue task
- Set the badge indicator
- Queue the reminder as a pending notification for the next UI view
- Retract all of the above when the task is completed

Design:
- The three surfaces are best effort and independent: a failure on one
  is logged and never prevents the others
- Nothing is dispatched for a task that is already completed or deleted
- Host alerts are keyed by "task-<id>", so completing a task can clear
  its alert without knowing when it was raised
"""

import logging
import platform
import subprocess
from datetime import datetime
from typing import Callable, List, Optional

from tasktroll.llm.prompts import NOTIFICATION_TITLE
from tasktroll.memory.task_models import PendingNotification
from tasktroll.memory.task_store import TaskStore

logger = logging.getLogger(__name__)

BADGE_TEXT = "!!"
ALERT_TIMEOUT_SECONDS = 10


def notification_id(task_id: Optional[str], now: Optional[datetime] = None) -> str:
    """Host alert id: task-<id>, or notification-<timestamp> when there is no task."""
    if task_id:
        return f"task-{task_id}"
    return f"notification-{int((now or datetime.now()).timestamp() * 1000)}"


class HostAlerts:
    """
    Host surface for alerts and the badge indicator.

    Subclasses override what their host supports; the base class does nothing.
    """

    def notify(self, alert_id: str, title: str, message: str):
        pass

    def clear_notification(self, alert_id: str):
        pass

    def set_badge(self, text: str):
        pass

    def clear_badge(self):
        pass


class DesktopAlerts(HostAlerts):
    """
    Desktop notifications through osascript (macOS) or notify-send (Linux).

    The badge has no desktop equivalent, so it lives in the store where the
    interactive UI reads it.
    """

    def __init__(self, store: TaskStore, app_name: str = "TaskTroll"):
        self.store = store
        self.app_name = app_name
        self.system = platform.system()

    def notify(self, alert_id: str, title: str, message: str):
        if self.system == "Darwin":
            safe_message = message.replace("\\", "\\\\").replace('"', '\\"')
            safe_title = title.replace("\\", "\\\\").replace('"', '\\"')
            script = f'display notification "{safe_message}" with title "{safe_title}" sound name "Glass"'
            command = ["osascript", "-e", script]
        elif self.system == "Linux":
            command = [
                "notify-send",
                "--urgency=critical",
                f"--app-name={self.app_name}",
                title,
                message,
            ]
        else:
            logger.warning(f"Desktop notifications not supported on {self.system}")
            return

        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=ALERT_TIMEOUT_SECONDS)
        except FileNotFoundError as e:
            logger.warning(f"Notification command not found: {e}")
            return
        except subprocess.TimeoutExpired:
            logger.warning(f"Notification command timed out after {ALERT_TIMEOUT_SECONDS}s")
            return

        if result.returncode != 0:
            logger.warning(
                f"Desktop alert {alert_id} rejected by {command[0]} "
                f"(exit {result.returncode}): {(result.stderr or '').strip()}"
            )
            return
        logger.info(f"Raised desktop alert {alert_id}")

    def clear_notification(self, alert_id: str):
        # Neither osascript nor notify-send can retract a shown alert
        logger.debug(f"Desktop alert {alert_id} left to expire on its own")

    def set_badge(self, text: str):
        self.store.set_badge(text)

    def clear_badge(self):
        self.store.set_badge("")


class NotificationDispatcher:
    """
    Delivers reminder messages to the user.

    Example:
        >>> dispatcher = NotificationDispatcher(store, DesktopAlerts(store))
        >>> dispatcher.dispatch("⏰ Time's up!", task.id)
        >>> dispatcher.on_task_completed(task.id)
    """

    def __init__(
        self,
        store: TaskStore,
        alerts: HostAlerts,
        locale: str = "en",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Persistent store holding tasks and pending notifications
            alerts: Host alert surface
            locale: Locale of the alert title
            clock: Time source, injected for testability
        """
        self.store = store
        self.alerts = alerts
        self.title = NOTIFICATION_TITLE.get(locale, NOTIFICATION_TITLE["en"])
        self.clock = clock
        logger.info("NotificationDispatcher initialized")

    def dispatch(self, message: str, task_id: Optional[str] = None) -> bool:
        """
        Show a reminder on every surface.

        Args:
            message: Final reminder text
            task_id: Task the reminder belongs to (None for general alerts)

        Returns:
            False if the reminder was dropped because the task is gone or
            completed, True otherwise (even if a surface failed)
        """
        if task_id is not None:
            task = self.store.get_task(task_id)
            if task is None:
                logger.info(f"Dropping reminder for deleted task {task_id}")
                return False
            if task.completed:
                logger.info(f"Dropping reminder for completed task {task_id}")
                return False

        now = self.clock()
        alert_id = notification_id(task_id, now)

        try:
            self.alerts.notify(alert_id, self.title, message)
        except Exception as e:
            logger.error(f"Failed to raise host alert {alert_id}: {e}", exc_info=True)

        try:
            self.alerts.set_badge(BADGE_TEXT)
        except Exception as e:
            logger.error(f"Failed to set badge: {e}", exc_info=True)

        try:
            self.store.append_pending_notification(
                PendingNotification(message=message, timestamp=now, task_id=task_id)
            )
        except Exception as e:
            logger.error(f"Failed to queue pending notification: {e}", exc_info=True)

        logger.info(f"Dispatched reminder {alert_id}: {message}")
        return True

    def on_task_completed(self, task_id: str) -> int:
        """
        Retract everything raised for a task.

        Returns:
            Number of pending entries removed
        """
        removed = 0
        try:
            removed = self.store.remove_pending_for_task(task_id)
        except Exception as e:
            logger.error(f"Failed to remove pending notifications for {task_id}: {e}", exc_info=True)

        try:
            self.alerts.clear_notification(notification_id(task_id))
        except Exception as e:
            logger.error(f"Failed to clear host alert for {task_id}: {e}", exc_info=True)

        return removed

    def on_user_viewed(self) -> List[PendingNotification]:
        """Clear the badge and return what is still pending."""
        try:
            self.alerts.clear_badge()
        except Exception as e:
            logger.error(f"Failed to clear badge: {e}", exc_info=True)
        return self.store.get_pending_notifications()

    def pending(self) -> List[PendingNotification]:
        return self.store.get_pending_notifications()

    def clear_pending(self) -> int:
        count = self.store.clear_pending_notifications()
        logger.info(f"Cleared {count} pending notifications")
        return count
