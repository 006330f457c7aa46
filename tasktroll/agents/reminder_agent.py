"""
TaskTroll Reminder Agent - Reminder Pipeline for Expired Tasks

Responsibilities:
- Ask the completion service for reminder messages about an expired task
- Normalize whatever comes back into usable messages
- Keep the first good batch on the task as its custom reminders
- Pick the one message that will be shown

The agent never raises on AI failure: a disabled provider, a network
error, a provider error or an unexpected envelope all produce the
templated deadline-passed message instead.
"""

import logging
import random
from typing import Callable, Optional

from tasktroll.config import AIConfig, TrackerConfig
from tasktroll.llm.normalizer import normalize_blame_messages, pick_reminder
from tasktroll.llm.prompts import (
    BLAME_MESSAGE_PROMPT,
    deadline_passed_message,
    default_blame_messages,
    format_blame_prompt,
)
from tasktroll.llm.providers import (
    REMINDER_PARAMS,
    CompletionError,
    CompletionParams,
    ProviderAdapter,
    is_ready,
)
from tasktroll.memory.task_models import Task
from tasktroll.memory.task_store import TaskStore

logger = logging.getLogger(__name__)

# A batch is kept as custom reminders only when it has more than one message
# longer than this
MIN_CUSTOM_REMINDER_LENGTH = 10


class ReminderAgent:
    """
    Turns an expired task into one reminder message.

    Example:
        >>> agent = ReminderAgent(store, TrackerConfig())
        >>> message = await agent.generate_reminder(task, ai_config)
    """

    def __init__(
        self,
        store: TaskStore,
        config: TrackerConfig,
        adapter_factory: Callable[[AIConfig], ProviderAdapter] = ProviderAdapter,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            store: Task storage, used to keep custom reminder batches
            config: Locale, timeout and ASCII policy
            adapter_factory: Builds a ProviderAdapter for an AIConfig
            rng: Random source for the final pick, injected for testability
        """
        self.store = store
        self.config = config
        self.adapter_factory = adapter_factory
        self.rng = rng or random.Random()
        self._adapter: Optional[ProviderAdapter] = None
        self.params = CompletionParams(
            temperature=REMINDER_PARAMS.temperature,
            max_tokens=REMINDER_PARAMS.max_tokens,
            timeout=config.reminder_timeout,
            frequency_penalty=REMINDER_PARAMS.frequency_penalty,
            json_mode=REMINDER_PARAMS.json_mode,
        )
        logger.info("ReminderAgent initialized")

    def _adapter_for(self, ai_config: AIConfig) -> ProviderAdapter:
        if self._adapter is None or self._adapter.ai_config != ai_config:
            self._adapter = self.adapter_factory(ai_config)
        return self._adapter

    def fallback_message(self, task: Task) -> str:
        return deadline_passed_message(task.text, self.config.locale)

    async def generate_reminder(self, task: Task, ai_config: Optional[AIConfig]) -> str:
        """
        Produce the reminder text for an expired task.

        Args:
            task: The task that just expired
            ai_config: Current provider settings (None when never configured)

        Returns:
            Reminder message, never empty
        """
        if ai_config is None or not is_ready(ai_config):
            logger.debug(f"AI reminders unavailable, using template for task {task.id}")
            return self.fallback_message(task)

        locale = self.config.locale
        adapter = self._adapter_for(ai_config)

        try:
            raw = await adapter.complete_async(
                ai_config.provider,
                BLAME_MESSAGE_PROMPT.get(locale, BLAME_MESSAGE_PROMPT["en"]),
                format_blame_prompt(task.text, task.category, task.deadline),
                self.params,
            )
        except CompletionError as e:
            logger.warning(f"Reminder completion failed for task {task.id}: {e}")
            return self.fallback_message(task)

        defaults = default_blame_messages(locale)
        result = normalize_blame_messages(raw, defaults)

        valid = [m for m in result.blame_messages if len(m) > MIN_CUSTOM_REMINDER_LENGTH]
        if len(valid) > 1 and result.blame_messages != defaults:
            self.store.set_custom_reminders(task.id, valid)

        message = pick_reminder(
            valid or result.blame_messages,
            defaults,
            reject_ascii_only=self.config.reject_ascii_reminders,
            rng=self.rng,
        )
        logger.info(f"Reminder for task {task.id}: {message}")
        return message
