"""
TaskTroll Start - Main Entry Point

Two modes:
- Interactive (default): command prompt plus the live scheduler ticking
  every second, so tasks expire and reminders appear while you type
- Background (--background): scheduler only, ticking once a minute, for
  running under a service manager

Both modes share one JSON store, so tasks added interactively are picked
up by a background process and vice versa.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from tasktroll.config import AIConfig, TrackerConfig, load_env_file
from tasktroll.agents import ReminderAgent, TaskAgent, format_remaining
from tasktroll.core import DesktopAlerts, ExpiryScheduler, NotificationDispatcher
from tasktroll.llm import CompletionError, ProviderAdapter
from tasktroll.memory import Task, TaskStore, TaskStoreError

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "tasktroll.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3

HELP_TEXT = """Commands:
  add <text> [--due ISO]  - Add a task (optional absolute due date, e.g. 2026-10-17T18:00)
  list                    - List tasks with their countdown
  done <n>                - Mark task n as completed
  undo <n>                - Reopen task n
  delete <n>              - Delete task n
  clear                   - Delete every task
  notifications           - Show pending notifications
  seen                    - Clear pending notifications
  test                    - Test the AI provider connection
  reload                  - Re-read AI provider settings
  help                    - Show this help
  quit                    - Exit
Anything else is checked for tasks (action verbs, or AI detection when enabled).
"""


# ============================================================================
# Setup
# ============================================================================

def setup_logging(log_dir: Path, debug: bool = False):
    """Log warnings to stderr (everything with --debug) and INFO+ to a rotating file."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    root = logging.getLogger()
    for handler in root.handlers:
        handler.setLevel(logging.DEBUG if debug else logging.WARNING)

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
        return

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))
    root.addHandler(file_handler)


def load_ai_config(store: TaskStore) -> AIConfig:
    """Stored provider settings, falling back to the environment."""
    stored = store.load_ai_config()
    if stored is not None:
        return stored
    return AIConfig.from_env()


class Tracker:
    """Wires storage, agents, dispatcher and scheduler together."""

    def __init__(self, config: TrackerConfig):
        self.config = config
        self.store = TaskStore(config.storage_path)
        self.ai_config = load_ai_config(self.store)

        self.dispatcher = NotificationDispatcher(
            self.store, DesktopAlerts(self.store), locale=config.locale
        )
        self.reminder_agent = ReminderAgent(self.store, config)
        self.task_agent = TaskAgent(self.store, self.dispatcher, config)
        self.scheduler = ExpiryScheduler(
            self.store,
            self.reminder_agent,
            self.dispatcher,
            config,
            ai_config=self.ai_config,
        )

    def reload_ai_config(self) -> AIConfig:
        """Re-read provider settings and hand them to the scheduler."""
        self.ai_config = load_ai_config(self.store)
        self.scheduler.update_ai_config(self.ai_config)
        logger.info(f"Provider settings reloaded: {self.ai_config.provider}")
        return self.ai_config


# ============================================================================
# Interactive mode
# ============================================================================

def print_tasks(tasks: List[Task]):
    if not tasks:
        print("\n📭 No tasks\n")
        return

    print(f"\n📋 You have {len(tasks)} tasks:\n")
    for number, task in enumerate(tasks, start=1):
        icon = {"open": "⏳", "expired": "🔥", "completed": "✓"}[task.state.value]
        details = [format_remaining(task)]
        if task.deadline:
            details.append(f"deadline: {task.deadline}")
        if task.category and task.category != "general":
            details.append(task.category)
        suffix = "  (" + ", ".join(d for d in details if d) + ")" if any(details) else ""
        print(f"  {number}. {icon} {task.text}{suffix}")
    print()


def show_pending(tracker: Tracker):
    pending = tracker.dispatcher.on_user_viewed()
    if not pending:
        print("\n🔕 No pending notifications\n")
        return

    print(f"\n🔔 {len(pending)} pending notifications:\n")
    for notification in pending:
        print(f"  [{notification.timestamp.strftime('%H:%M:%S')}] {notification.message}")
    print()


def parse_add(argument: str):
    """Split 'text --due ISO' into (text, due_date)."""
    text, _, due = argument.partition("--due")
    due = due.strip()
    due_date = datetime.fromisoformat(due) if due else None
    return text.strip(), due_date


def task_by_number(tracker: Tracker, argument: str) -> Optional[Task]:
    try:
        number = int(argument)
    except ValueError:
        print(f"\n⚠  Not a task number: {argument!r}\n")
        return None

    task = tracker.task_agent.get_task_by_number(number)
    if task is None:
        print(f"\n⚠  No task #{number}\n")
    return task


async def process_input(tracker: Tracker, user_input: str) -> bool:
    """
    Handle one line of input.

    Returns:
        False when the user asked to quit
    """
    user_input = user_input.strip()
    if not user_input:
        return True

    command, _, argument = user_input.partition(" ")
    command = command.lower()
    argument = argument.strip()
    agent = tracker.task_agent

    if command in ("quit", "exit", "q"):
        return False

    if command == "help":
        print("\n" + HELP_TEXT)
        return True

    if command == "list":
        print_tasks(agent.list_tasks())
        return True

    if command == "add":
        try:
            text, due_date = parse_add(argument)
            task = agent.add_task(text, due_date=due_date)
        except ValueError as e:
            print(f"\n⚠  {e}\n")
            return True
        print(f"\n✓ Added: {task.text}\n")
        return True

    if command in ("done", "undo", "delete"):
        task = task_by_number(tracker, argument)
        if task is None:
            return True
        if command == "done":
            agent.complete_task(task.id)
            print(f"\n✓ Completed: {task.text}\n")
        elif command == "undo":
            agent.reopen_task(task.id)
            print(f"\n↺ Reopened: {task.text}\n")
        else:
            agent.delete_task(task.id)
            print(f"\n🗑  Deleted: {task.text}\n")
        return True

    if command == "clear":
        count = agent.clear_tasks()
        print(f"\n🗑  Deleted {count} tasks\n")
        return True

    if command == "notifications":
        show_pending(tracker)
        return True

    if command == "seen":
        count = tracker.dispatcher.clear_pending()
        tracker.dispatcher.on_user_viewed()
        print(f"\n✓ Cleared {count} notifications\n")
        return True

    if command == "reload":
        ai_config = tracker.reload_ai_config()
        state = "enabled" if ai_config.enabled else "disabled"
        print(f"\n✓ Provider: {ai_config.provider} (AI {state})\n")
        return True

    if command == "test":
        await test_connection(tracker)
        return True

    created = await agent.handle_message(user_input, tracker.ai_config)
    if created:
        for task in created:
            deadline = f"  (deadline: {task.deadline})" if task.deadline else ""
            print(f"\n✓ Task detected: {task.text}{deadline}")
        print()
    else:
        print("\nTaskTroll: Got it. Add a task with 'add <task>', or type 'help'.\n")
    return True


async def test_connection(tracker: Tracker):
    ai_config = tracker.ai_config
    print(f"\nTesting {ai_config.provider}...")

    adapter = ProviderAdapter(ai_config)
    loop = asyncio.get_running_loop()
    try:
        reply = await loop.run_in_executor(None, adapter.test_connection)
    except (CompletionError, ValueError) as e:
        logger.warning(f"Connection test failed: {e}")
        print(f"❌ Connection failed: {e}\n")
        return
    print(f"✓ Connected. Reply: {reply.strip()[:200]}\n")


async def run_interactive(tracker: Tracker) -> int:
    print("=" * 70)
    print("TaskTroll - Accountability Task Tracker")
    print("=" * 70)
    print()
    ai = tracker.ai_config
    print(f"  Storage  : {tracker.store.storage_path}")
    print(f"  AI       : {ai.provider} ({'enabled' if ai.enabled else 'disabled'})")
    print(f"  Timebox  : {tracker.config.timebox_seconds:g}s")
    print()

    # Opening the UI counts as viewing notifications
    if tracker.dispatcher.pending():
        show_pending(tracker)
    else:
        tracker.dispatcher.on_user_viewed()

    print(HELP_TEXT)

    scheduler_task = asyncio.create_task(
        tracker.scheduler.run(tracker.config.live_tick_seconds)
    )
    loop = asyncio.get_running_loop()

    try:
        while True:
            try:
                user_input = await loop.run_in_executor(None, input, "You: ")
            except EOFError:
                break

            try:
                if not await process_input(tracker, user_input):
                    break
            except TaskStoreError as e:
                logger.error(f"Storage error: {e}", exc_info=True)
                print(f"\n❌ Storage error: {e}\n")
    finally:
        tracker.scheduler.stop()
        await scheduler_task
        await tracker.scheduler.drain()

    print("\nGoodbye.")
    return 0


# ============================================================================
# Background mode
# ============================================================================

async def run_background(tracker: Tracker) -> int:
    logger.info(
        f"Background scheduler started (tick={tracker.config.background_tick_seconds}s, "
        f"storage={tracker.store.storage_path})"
    )
    try:
        await tracker.scheduler.run(tracker.config.background_tick_seconds)
    finally:
        await tracker.scheduler.drain()
    return 0


# ============================================================================
# MAIN
# ============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TaskTroll accountability task tracker")
    parser.add_argument("--background", action="store_true",
                        help="Run only the scheduler at the background tick interval")
    parser.add_argument("--storage", type=Path, help="Path of the JSON store")
    parser.add_argument("--locale", choices=["en", "vi"], help="Language of prompts and reminders")
    parser.add_argument("--timebox", type=float, help="Seconds before a task without due date expires")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    load_env_file()

    try:
        config = TrackerConfig.from_env()
        overrides = {}
        if args.storage:
            overrides["storage_path"] = args.storage
        if args.locale:
            overrides["locale"] = args.locale
            overrides["reject_ascii_reminders"] = args.locale != "en"
        if args.timebox:
            overrides["timebox_seconds"] = args.timebox
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_dir, debug=args.debug)

    try:
        tracker = Tracker(config)
    except TaskStoreError as e:
        logger.error(f"Failed to initialize TaskTroll: {e}", exc_info=True)
        print(f"\n❌ Error: {e}")
        return 1

    runner = run_background if args.background else run_interactive
    try:
        return asyncio.run(runner(tracker))
    except KeyboardInterrupt:
        print("\n\nInterrupted.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
