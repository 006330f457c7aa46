"""
Tests for TaskTroll Notification Dispatcher

Host alerts are replaced by a recording fake; desktop alerts are tested
with subprocess mocked out.
"""

import logging
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import Mock, patch

from tasktroll.core.dispatcher import (
    BADGE_TEXT,
    DesktopAlerts,
    HostAlerts,
    NotificationDispatcher,
    notification_id,
)
from tasktroll.memory import TaskStore, create_task

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

T0 = datetime(2026, 10, 17, 9, 0, 0)


class RecordingAlerts(HostAlerts):
    """Host alerts that remember every call"""

    def __init__(self, fail_notify=False, fail_badge=False):
        self.notifications = []
        self.cleared = []
        self.badge = ""
        self.fail_notify = fail_notify
        self.fail_badge = fail_badge

    def notify(self, alert_id, title, message):
        if self.fail_notify:
            raise RuntimeError("host rejected the alert")
        self.notifications.append((alert_id, title, message))

    def clear_notification(self, alert_id):
        self.cleared.append(alert_id)

    def set_badge(self, text):
        if self.fail_badge:
            raise RuntimeError("badge unavailable")
        self.badge = text

    def clear_badge(self):
        self.badge = ""


def make_dispatcher(tmpdir, alerts=None):
    store = TaskStore(Path(tmpdir) / "tasktroll.json")
    alerts = alerts or RecordingAlerts()
    return NotificationDispatcher(store, alerts, clock=lambda: T0), store, alerts


def test_dispatch_surfaces():
    """Badge, pending entry and host alert"""
    print("\n" + "="*70)
    print("TEST 1: Dispatch Surfaces")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        dispatcher, store, alerts = make_dispatcher(tmpdir)
        task = create_task("Read chapter 3", now=T0)
        store.add_task(task)

        print("\n[1.1] Dispatch for an open task...")
        assert dispatcher.dispatch("Read it now!", task.id)
        assert alerts.notifications == [(f"task-{task.id}", "Task Alert", "Read it now!")]
        assert alerts.badge == BADGE_TEXT
        pending = store.get_pending_notifications()
        assert len(pending) == 1
        assert pending[0].task_id == task.id and pending[0].timestamp == T0
        print("✓ All three surfaces updated")

        print("\n[1.2] General notification without a task...")
        assert dispatcher.dispatch("General reminder")
        assert alerts.notifications[-1][0] == notification_id(None, T0)
        assert alerts.notifications[-1][0].startswith("notification-")
        print("✓ Timestamp-based id used")

    print("\n✅ Dispatch surfaces test PASSED")


def test_surfaces_are_independent():
    """A failing surface does not suppress the others"""
    print("\n" + "="*70)
    print("TEST 2: Independent Surfaces")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        alerts = RecordingAlerts(fail_notify=True, fail_badge=True)
        dispatcher, store, _ = make_dispatcher(tmpdir, alerts)
        task = create_task("Pay rent", now=T0)
        store.add_task(task)

        assert dispatcher.dispatch("Rent is due!", task.id)
        assert [p.message for p in store.get_pending_notifications()] == ["Rent is due!"]
        print("✓ Pending entry stored despite host failures")

    print("\n✅ Independent surfaces test PASSED")


def test_completed_and_deleted_tasks():
    """Dispatch checks task state at dispatch time"""
    print("\n" + "="*70)
    print("TEST 3: Completed and Deleted Tasks")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        dispatcher, store, alerts = make_dispatcher(tmpdir)
        done = create_task("Done already", now=T0)
        store.add_task(done)
        store.set_completed(done.id, True, now=T0)

        assert not dispatcher.dispatch("Too late", done.id)
        assert not dispatcher.dispatch("Gone", "no-such-task")
        assert alerts.notifications == []
        assert store.get_pending_notifications() == []
        assert alerts.badge == ""
        print("✓ Nothing dispatched")

    print("\n✅ Completed and deleted test PASSED")


def test_completion_and_viewing():
    """Completion retracts, viewing clears the badge"""
    print("\n" + "="*70)
    print("TEST 4: Completion and Viewing")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        dispatcher, store, alerts = make_dispatcher(tmpdir)
        first = create_task("First", now=T0)
        second = create_task("Second", now=T0)
        store.add_task(first)
        store.add_task(second)
        dispatcher.dispatch("First reminder", first.id)
        dispatcher.dispatch("First again", first.id)
        dispatcher.dispatch("Second reminder", second.id)

        print("\n[4.1] Completing a task removes its pending entries...")
        assert dispatcher.on_task_completed(first.id) == 2
        assert [p.task_id for p in dispatcher.pending()] == [second.id]
        assert alerts.cleared == [f"task-{first.id}"]
        assert alerts.badge == BADGE_TEXT
        print("✓ Only matching entries removed")

        print("\n[4.2] Viewing clears the badge...")
        pending = dispatcher.on_user_viewed()
        assert [p.message for p in pending] == ["Second reminder"]
        assert alerts.badge == ""
        assert dispatcher.clear_pending() == 1
        print("✓ Badge cleared, queue kept until cleared")

    print("\n✅ Completion and viewing test PASSED")


def test_desktop_alerts():
    """Desktop alerts via notify-send, badge in the store"""
    print("\n" + "="*70)
    print("TEST 5: Desktop Alerts")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        store = TaskStore(Path(tmpdir) / "tasktroll.json")

        with patch("tasktroll.core.dispatcher.platform.system", return_value="Linux"):
            alerts = DesktopAlerts(store)

        with patch("tasktroll.core.dispatcher.subprocess.run", return_value=Mock(returncode=0, stderr="")) as mock_run:
            alerts.notify("task-1", "Task Alert", "Do it!")
            command = mock_run.call_args.args[0]
            assert command[0] == "notify-send"
            assert command[-2:] == ["Task Alert", "Do it!"]
            print("✓ notify-send called")

        print("\n[5.2] Rejected alert is logged as a warning...")
        rejected = Mock(returncode=1, stderr="No notification daemon")
        with patch("tasktroll.core.dispatcher.subprocess.run", return_value=rejected), \
                patch("tasktroll.core.dispatcher.logger") as mock_logger:
            alerts.notify("task-2", "Task Alert", "Do it!")
            warning = mock_logger.warning.call_args.args[0]
            assert "task-2" in warning and "exit 1" in warning
            assert "No notification daemon" in warning
            mock_logger.info.assert_not_called()
        print("✓ Non-zero exit reported")

        with patch("tasktroll.core.dispatcher.subprocess.run", side_effect=FileNotFoundError("notify-send")):
            alerts.notify("task-1", "Task Alert", "Do it!")
            print("✓ Missing command tolerated")

        alerts.set_badge("!!")
        assert store.get_badge() == "!!"
        alerts.clear_badge()
        assert store.get_badge() == ""
        print("✓ Badge stored")

    print("\n✅ Desktop alerts test PASSED")


def run_all_tests():
    tests = [
        test_dispatch_surfaces,
        test_surfaces_are_independent,
        test_completed_and_deleted_tasks,
        test_completion_and_viewing,
        test_desktop_alerts,
    ]
    for test in tests:
        test()
    print("\n🎉 ALL DISPATCHER TESTS PASSED!")


if __name__ == "__main__":
    run_all_tests()
