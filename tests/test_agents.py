"""
Tests for TaskTroll Reminder Agent and Task Agent

The provider adapter is replaced by a Mock whose complete_async is an
AsyncMock, so the pipelines run end to end without a network.
"""

import asyncio
import logging
import random
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from tasktroll.config import AIConfig, TrackerConfig
from tasktroll.agents import ReminderAgent, TaskAgent, format_remaining
from tasktroll.core import HostAlerts, NotificationDispatcher
from tasktroll.llm.prompts import default_blame_messages
from tasktroll.llm.providers import NetworkError, ProviderError
from tasktroll.memory import TaskStore, create_task

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

T0 = datetime(2026, 10, 17, 9, 0, 0)
READY = AIConfig(provider="openai", api_key="sk-test", enabled=True, auto_detect_tasks=True)


def mock_factory(reply=None, error=None):
    """Adapter factory whose adapters return `reply` or raise `error`"""
    adapter = Mock()
    adapter.complete_async = AsyncMock(return_value=reply, side_effect=error)

    def build(ai_config):
        adapter.ai_config = ai_config
        return adapter

    factory = Mock(side_effect=build)
    return factory, adapter


def make_store(tmpdir):
    return TaskStore(Path(tmpdir) / "tasktroll.json")


def test_reminder_agent_ai_path():
    """AI reply normalized, batch stored, one message picked"""
    print("\n" + "="*70)
    print("TEST 1: Reminder Agent (AI)")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        store = make_store(tmpdir)
        task = create_task("Finish the slides", now=T0)
        store.add_task(task)

        reply = '```json\n{"blameMessages": ["The slides will not write themselves!", "Open the deck now, not later."]}\n```'
        factory, adapter = mock_factory(reply=reply)
        agent = ReminderAgent(store, TrackerConfig(), adapter_factory=factory, rng=random.Random(3))

        message = asyncio.run(agent.generate_reminder(task, READY))
        assert message in ("The slides will not write themselves!", "Open the deck now, not later.")
        assert store.get_task(task.id).custom_reminders == [
            "The slides will not write themselves!",
            "Open the deck now, not later.",
        ]
        provider, system, prompt, params = adapter.complete_async.call_args.args
        assert provider == "openai"
        assert '"blameMessages"' in system
        assert "Finish the slides" in prompt
        assert params.timeout == 20.0 and params.json_mode
        print(f"✓ Picked: {message}")

        print("\n[1.2] Adapter reused for the same config...")
        asyncio.run(agent.generate_reminder(task, READY))
        assert factory.call_count == 1
        print("✓ One adapter per config")

    print("\n✅ Reminder agent AI test PASSED")


def test_reminder_agent_fallbacks():
    """Disabled AI and completion errors produce the template"""
    print("\n" + "="*70)
    print("TEST 2: Reminder Agent Fallbacks")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        store = make_store(tmpdir)
        task = create_task("Water plants", now=T0)
        store.add_task(task)
        template = '⏰ Time\'s up for task: "Water plants"'

        print("\n[2.1] AI disabled...")
        factory, _ = mock_factory(reply="unused")
        agent = ReminderAgent(store, TrackerConfig(), adapter_factory=factory)
        assert asyncio.run(agent.generate_reminder(task, None)) == template
        assert asyncio.run(agent.generate_reminder(task, AIConfig(provider="openai"))) == template
        assert factory.call_count == 0
        print("✓ No network call")

        print("\n[2.2] Completion errors...")
        for error in (NetworkError("down"), ProviderError(500)):
            factory, _ = mock_factory(error=error)
            agent = ReminderAgent(store, TrackerConfig(), adapter_factory=factory)
            assert asyncio.run(agent.generate_reminder(task, READY)) == template
        print("✓ Template used")

        print("\n[2.3] Vietnamese template...")
        agent = ReminderAgent(store, TrackerConfig(locale="vi"), adapter_factory=factory)
        assert asyncio.run(agent.generate_reminder(task, None)) == '⏰ Hết giờ cho công việc: "Water plants"'
        print("✓ Locale respected")

        print("\n[2.4] Unusable reply gives a default, not stored...")
        factory, _ = mock_factory(reply="🤷")
        agent = ReminderAgent(store, TrackerConfig(), adapter_factory=factory)
        message = asyncio.run(agent.generate_reminder(task, READY))
        assert message in default_blame_messages("en")
        assert store.get_task(task.id).custom_reminders is None
        print("✓ Default reminder used")

        print("\n[2.5] ASCII-only reply replaced for vi...")
        factory, _ = mock_factory(reply='{"blameMessages": ["Do it now please!"]}')
        config = TrackerConfig(locale="vi", reject_ascii_reminders=True)
        agent = ReminderAgent(store, config, adapter_factory=factory)
        message = asyncio.run(agent.generate_reminder(task, READY))
        assert message in default_blame_messages("vi")
        print("✓ Vietnamese default used")

    print("\n✅ Reminder agent fallbacks test PASSED")


def test_task_agent_operations():
    """Add, number lookup, complete, reopen, delete, clear"""
    print("\n" + "="*70)
    print("TEST 3: Task Agent Operations")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        store = make_store(tmpdir)
        dispatcher = NotificationDispatcher(store, HostAlerts(), clock=lambda: T0)
        agent = TaskAgent(store, dispatcher, TrackerConfig(), clock=lambda: T0)

        first = agent.add_task("First task")
        second = agent.add_task("Second task", category="work", deadline="Friday")
        assert agent.get_task_by_number(1).id == first.id
        assert agent.get_task_by_number(2).deadline == "Friday"
        assert agent.get_task_by_number(3) is None
        assert agent.get_task_by_number(0) is None
        with pytest.raises(ValueError):
            agent.add_task("   ")
        print("✓ Tasks added and numbered")

        print("\n[3.2] Completing retracts notifications...")
        dispatcher.dispatch("Hurry!", first.id)
        assert agent.complete_task(first.id)
        assert dispatcher.pending() == []
        assert agent.reopen_task(first.id)
        assert not store.get_task(first.id).completed
        print("✓ Complete and reopen")

        print("\n[3.3] Delete and clear...")
        dispatcher.dispatch("Work!", second.id)
        assert agent.delete_task(second.id)
        assert dispatcher.pending() == []
        assert not agent.delete_task(second.id)
        assert agent.clear_tasks() == 1
        assert agent.list_tasks() == []
        print("✓ Deleted and cleared")

    print("\n✅ Task agent operations test PASSED")


def test_simple_detection():
    """Leading action verbs, time keywords"""
    print("\n" + "="*70)
    print("TEST 4: Simple Detection")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        store = make_store(tmpdir)
        dispatcher = NotificationDispatcher(store, HostAlerts())

        en = TaskAgent(store, dispatcher, TrackerConfig())
        detected = en.detect_simple_task("Buy groceries tomorrow")
        assert detected.text == "Buy groceries tomorrow"
        assert detected.deadline == "Tomorrow"
        assert en.detect_simple_task("What a nice day") is None
        assert en.detect_simple_task("do") is None
        print("✓ English verbs")

        vi = TaskAgent(store, dispatcher, TrackerConfig(locale="vi"))
        detected = vi.detect_simple_task("Học tiếng Anh ngày mai")
        assert detected.deadline == "Ngày mai"
        assert vi.detect_simple_task("Hoàn thành báo cáo").deadline is None
        print("✓ Vietnamese verbs")

    print("\n✅ Simple detection test PASSED")


def test_message_handling():
    """Simple detection first, then AI detection when switched on"""
    print("\n" + "="*70)
    print("TEST 5: Message Handling")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        store = make_store(tmpdir)
        dispatcher = NotificationDispatcher(store, HostAlerts())
        reply = ('{"category": "work", "detectedTasks": ['
                 '{"text": "Email the client", "deadline": "today"}, '
                 '{"text": "Book a room", "deadline": null}]}')
        factory, adapter = mock_factory(reply=reply)
        agent = TaskAgent(store, dispatcher, TrackerConfig(), adapter_factory=factory)

        print("\n[5.1] Simple detection skips the network...")
        created = asyncio.run(agent.handle_message("Call the dentist", READY))
        assert [t.text for t in created] == ["Call the dentist"]
        assert adapter.complete_async.call_count == 0
        print("✓ Simple task added")

        print("\n[5.2] AI detection...")
        created = asyncio.run(agent.handle_message("Remember the client email and the room", READY))
        assert [t.text for t in created] == ["Email the client", "Book a room"]
        assert all(t.category == "work" for t in created)
        assert created[0].deadline == "today"
        assert len(agent.list_tasks()) == 3
        print("✓ Detected tasks stored")

        print("\n[5.3] Auto-detect off...")
        off = AIConfig(provider="openai", api_key="k", enabled=True, auto_detect_tasks=False)
        assert asyncio.run(agent.handle_message("Just chatting here", off)) == []
        assert asyncio.run(agent.handle_message("Just chatting here", None)) == []
        print("✓ Nothing detected")

        print("\n[5.4] Completion failure...")
        factory, _ = mock_factory(error=NetworkError("down"))
        failing = TaskAgent(store, dispatcher, TrackerConfig(), adapter_factory=factory)
        assert asyncio.run(failing.detect_tasks("Anything", READY)) == []
        print("✓ Empty result on failure")

    print("\n✅ Message handling test PASSED")


def test_format_remaining():
    """Countdown labels"""
    task = create_task("Label", now=T0)
    assert format_remaining(task) == ""
    task.remaining_seconds = 7.6
    assert format_remaining(task) == "7s remaining"
    task.remaining_seconds = 0.0
    assert format_remaining(task) == "Time's up!"
    task.time_expired = True
    assert format_remaining(task) == "Time's up!"
    task.completed = True
    assert format_remaining(task) == "Done"
    print("✓ Labels formatted")


def run_all_tests():
    tests = [
        test_reminder_agent_ai_path,
        test_reminder_agent_fallbacks,
        test_task_agent_operations,
        test_simple_detection,
        test_message_handling,
        test_format_remaining,
    ]
    for test in tests:
        test()
    print("\n🎉 ALL AGENT TESTS PASSED!")


if __name__ == "__main__":
    run_all_tests()
