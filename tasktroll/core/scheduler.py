"""
TaskTroll Expiry Scheduler - The Accountability Loop

Per-task state machine:

    OPEN -> EXPIRED      when now >= expiry (terminal unless deleted)
    OPEN -> COMPLETED    user action, any time before expiry

where expiry is the task's absolute due date if it has one, otherwise
created + timebox.

Each tick:
1. Re-reads the task list from storage (never a cached snapshot)
2. Computes remaining = max(0, expiry - now) for every open task
3. Writes remaining times and expiry transitions back in one store call,
   before any reminder is requested
4. Starts one reminder pipeline per newly expired task and moves on
   without awaiting it

A pipeline failure of any kind falls back to the templated message, so an
expired task always produces a notification unless it was completed or
deleted while the pipeline was running.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from tasktroll.config import AIConfig, TrackerConfig
from tasktroll.memory.task_models import Task
from tasktroll.memory.task_store import TaskStore, TaskStoreError
from tasktroll.agents.reminder_agent import ReminderAgent
from .dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """
    Drives open tasks to expiry and hands expired ones to the reminder pipeline.

    Example:
        >>> scheduler = ExpiryScheduler(store, reminder_agent, dispatcher, config)
        >>> await scheduler.run(config.live_tick_seconds)
    """

    def __init__(
        self,
        store: TaskStore,
        reminder_agent: ReminderAgent,
        dispatcher: NotificationDispatcher,
        config: TrackerConfig,
        ai_config: Optional[AIConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Persistent task storage
            reminder_agent: Produces reminder text for an expired task
            dispatcher: Delivers reminder text to the user
            config: Timebox and tick settings
            ai_config: Current provider settings (None disables AI reminders)
            clock: Time source, injected for testability
        """
        self.store = store
        self.reminder_agent = reminder_agent
        self.dispatcher = dispatcher
        self.config = config
        self.ai_config = ai_config
        self.clock = clock
        self.timebox = timedelta(seconds=config.timebox_seconds)

        self._in_flight: Set[asyncio.Task] = set()
        self._running = False
        self._wakeup: Optional[asyncio.Event] = None
        logger.info(f"ExpiryScheduler initialized (timebox={config.timebox_seconds}s)")

    def update_ai_config(self, ai_config: Optional[AIConfig]):
        """Use new provider settings for pipelines started from now on."""
        self.ai_config = ai_config

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def tick(self, now: Optional[datetime] = None) -> List[Task]:
        """
        Run one scheduler pass.

        Args:
            now: Evaluation time (default: the injected clock)

        Returns:
            Tasks that transitioned to expired during this pass
        """
        now = now or self.clock()
        tasks = self.store.load_tasks()

        remaining = {}
        expired_ids = []
        for task in tasks:
            if not task.is_open:
                continue
            try:
                expiry = task.expiry_at(self.timebox)
                remaining[task.id] = max(0.0, (expiry - now).total_seconds())
            except (TypeError, ValueError, OverflowError) as e:
                logger.error(f"Cannot evaluate expiry of task {task.id}: {e}")
                continue
            if now >= expiry:
                expired_ids.append(task.id)

        if not remaining:
            return []

        # Transitions are persisted before any pipeline starts
        transitioned = self.store.apply_tick(remaining, expired_ids)

        for task in transitioned:
            logger.info(f"Task expired: {task.id} - {task.text}")
            pipeline = asyncio.create_task(self._remind(task))
            self._in_flight.add(pipeline)
            pipeline.add_done_callback(self._in_flight.discard)

        return transitioned

    async def _remind(self, task: Task):
        """Reminder pipeline for one expired task. Never raises."""
        try:
            message = await self.reminder_agent.generate_reminder(task, self.ai_config)
        except Exception as e:
            logger.error(f"Reminder pipeline failed for task {task.id}: {e}", exc_info=True)
            message = None

        if not message:
            message = self.reminder_agent.fallback_message(task)

        try:
            self.dispatcher.dispatch(message, task.id)
        except Exception as e:
            logger.error(f"Failed to dispatch reminder for task {task.id}: {e}", exc_info=True)

    async def drain(self):
        """Wait for every reminder pipeline currently in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    async def run(self, interval: float):
        """
        Tick every `interval` seconds until stop() is called.

        A failed tick is logged and the loop keeps going.
        """
        logger.info(f"Scheduler running every {interval}s")
        self._running = True
        self._wakeup = asyncio.Event()

        while self._running:
            try:
                await self.tick()
            except TaskStoreError as e:
                logger.error(f"Scheduler tick failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error during scheduler tick: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Scheduler stopped")

    def stop(self):
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()
