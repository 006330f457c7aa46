"""
TaskTroll Task Agent - Task Commands and Task Detection

Responsibilities:
- Add, list, complete, reopen, delete and clear tasks
- Retract notifications when a task is completed or deleted
- Detect tasks in free-form messages:
    1. simple detection (leading action verb, no network)
    2. AI detection through the completion service, when enabled

Task numbers shown to the user are 1-based positions in stored order.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from tasktroll.config import AIConfig, TrackerConfig
from tasktroll.core.dispatcher import NotificationDispatcher
from tasktroll.llm.normalizer import normalize_task_detection
from tasktroll.llm.prompts import (
    ACTION_VERBS,
    TASK_DETECTION_PROMPT,
    TIME_KEYWORDS,
    format_task_detection_prompt,
)
from tasktroll.llm.providers import (
    DETECTION_PARAMS,
    CompletionError,
    CompletionParams,
    ProviderAdapter,
    is_ready,
)
from tasktroll.memory.task_models import DetectedTask, Task, create_task
from tasktroll.memory.task_store import TaskStore

logger = logging.getLogger(__name__)


def format_remaining(task: Task) -> str:
    """Countdown label for a task: '<n>s remaining' or "Time's up!"."""
    if task.completed:
        return "Done"
    if task.time_expired:
        return "Time's up!"
    if task.remaining_seconds is None:
        return ""
    seconds = int(task.remaining_seconds)
    if seconds <= 0:
        return "Time's up!"
    return f"{seconds}s remaining"


class TaskAgent:
    """
    User-facing task operations.

    Example:
        >>> agent = TaskAgent(store, dispatcher, TrackerConfig())
        >>> task = agent.add_task("Finish the report", deadline="Tomorrow")
        >>> agent.complete_task(task.id)
    """

    def __init__(
        self,
        store: TaskStore,
        dispatcher: NotificationDispatcher,
        config: TrackerConfig,
        adapter_factory: Callable[[AIConfig], ProviderAdapter] = ProviderAdapter,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Task storage
            dispatcher: Used to retract notifications of finished tasks
            config: Locale and detection timeout
            adapter_factory: Builds a ProviderAdapter for an AIConfig
            clock: Time source for task creation, injected for testability
        """
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self.adapter_factory = adapter_factory
        self.clock = clock
        self.params = CompletionParams(
            temperature=DETECTION_PARAMS.temperature,
            max_tokens=DETECTION_PARAMS.max_tokens,
            timeout=config.detection_timeout,
        )
        logger.info("TaskAgent initialized")

    # ------------------------------------------------------------------
    # Task operations
    # ------------------------------------------------------------------

    def add_task(
        self,
        text: str,
        category: str = "general",
        deadline: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Task:
        """
        Create and store a new open task.

        Raises:
            ValueError: If text is empty
            TaskStoreError: If storage fails
        """
        if not text or not text.strip():
            raise ValueError("Task text cannot be empty")

        task = create_task(
            text,
            category=category,
            deadline=deadline,
            due_date=due_date,
            now=self.clock(),
        )
        self.store.add_task(task)
        return task

    def list_tasks(self) -> List[Task]:
        return self.store.load_tasks()

    def get_task_by_number(self, number: int) -> Optional[Task]:
        """Task at a 1-based position, or None if out of range."""
        tasks = self.store.load_tasks()
        if 1 <= number <= len(tasks):
            return tasks[number - 1]
        return None

    def complete_task(self, task_id: str) -> bool:
        """Mark a task completed and retract its notifications."""
        if not self.store.set_completed(task_id, True, now=self.clock()):
            return False
        self.dispatcher.on_task_completed(task_id)
        return True

    def reopen_task(self, task_id: str) -> bool:
        """Clear a task's completed flag. An expired task stays expired."""
        return self.store.set_completed(task_id, False)

    def delete_task(self, task_id: str) -> bool:
        if not self.store.delete_task(task_id):
            return False
        self.dispatcher.on_task_completed(task_id)
        return True

    def clear_tasks(self) -> int:
        removed = self.store.clear_tasks()
        for task_id in removed:
            self.dispatcher.on_task_completed(task_id)
        return len(removed)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_simple_task(self, message: str) -> Optional[DetectedTask]:
        """
        Recognize a task from a leading action verb, without the network.

        The whole message becomes the task text; a time keyword anywhere in
        it sets the free-text deadline.

        Returns:
            DetectedTask, or None if the message does not start with an action verb
        """
        lowered = message.strip().lower()
        if not lowered:
            return None

        locale = self.config.locale
        verbs = ACTION_VERBS.get(locale, ACTION_VERBS["en"])
        if not any(lowered.startswith(verb + " ") for verb in verbs):
            return None

        deadline = None
        for keyword, label in TIME_KEYWORDS.get(locale, TIME_KEYWORDS["en"]):
            if keyword in lowered:
                deadline = label
                break

        logger.info(f"Simple task detected: {message.strip()}")
        return DetectedTask(text=message.strip(), deadline=deadline)

    async def detect_tasks(self, message: str, ai_config: AIConfig) -> List[Task]:
        """
        Ask the completion service for tasks in a message and store them.

        Returns:
            Newly created tasks (empty when nothing was detected or the
            completion failed)
        """
        if not is_ready(ai_config):
            logger.debug("AI detection unavailable")
            return []

        locale = self.config.locale
        adapter = self.adapter_factory(ai_config)

        try:
            raw = await adapter.complete_async(
                ai_config.provider,
                TASK_DETECTION_PROMPT.get(locale, TASK_DETECTION_PROMPT["en"]),
                format_task_detection_prompt(message),
                self.params,
            )
        except CompletionError as e:
            logger.warning(f"Task detection failed: {e}")
            return []

        result = normalize_task_detection(raw)
        created = [
            self.add_task(detected.text, category=result.category, deadline=detected.deadline)
            for detected in result.detected_tasks
        ]
        logger.info(f"AI detected {len(created)} tasks (category={result.category})")
        return created

    async def handle_message(self, message: str, ai_config: Optional[AIConfig]) -> List[Task]:
        """
        Turn a free-form message into tasks.

        Simple detection runs first; AI detection runs only when the provider
        is enabled and automatic detection is switched on.
        """
        simple = self.detect_simple_task(message)
        if simple is not None:
            return [self.add_task(simple.text, deadline=simple.deadline)]

        if ai_config is not None and ai_config.enabled and ai_config.auto_detect_tasks:
            return await self.detect_tasks(message, ai_config)

        return []
