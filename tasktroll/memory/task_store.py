"""
TaskTroll Task Store - Persistent JSON Storage

Handles reading and writing ~/.tasktroll/tasktroll.json, a small durable
key-value store with four records:

    tasks                 ordered list of tasks
    aiConfig              provider settings
    pendingNotifications  alerts not yet acknowledged by the UI
    badge                 current badge indicator text ("" when cleared)

Design:
- Every mutation is read-modify-write against the file on disk; nothing is
  cached between calls, so a restarted process always resumes from the
  latest persisted snapshot
- Writes go to a temp file and are renamed into place
- A corrupted file is backed up and replaced, never fatal
- Methods do not yield to the event loop, so each mutation is atomic with
  respect to other coroutines in the same process
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from tasktroll.config import AIConfig, DEFAULT_STORAGE_FILE
from .task_models import PendingNotification, Task

logger = logging.getLogger(__name__)

TASKS_KEY = "tasks"
AI_CONFIG_KEY = "aiConfig"
PENDING_KEY = "pendingNotifications"
BADGE_KEY = "badge"


class TaskStoreError(Exception):
    """Base exception for task storage errors"""
    pass


def _empty_document() -> Dict[str, Any]:
    return {
        TASKS_KEY: [],
        AI_CONFIG_KEY: None,
        PENDING_KEY: [],
        BADGE_KEY: "",
    }


class TaskStore:
    """
    File-based task storage using JSON.

    Philosophy:
    - User can inspect/edit file directly
    - Corruption is handled gracefully
    - No hidden state or caching
    """

    def __init__(self, storage_path: Optional[Path] = None):
        """
        Initialize task store.

        Args:
            storage_path: Custom storage file path (default: ~/.tasktroll/tasktroll.json)
        """
        self.storage_path = Path(storage_path) if storage_path else DEFAULT_STORAGE_FILE

        self.storage_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.storage_path.exists():
            self._initialize_storage()

        logger.info(f"TaskStore initialized: {self.storage_path}")

    # ------------------------------------------------------------------
    # Raw document access
    # ------------------------------------------------------------------

    def _initialize_storage(self):
        """Create empty storage file"""
        try:
            self._write(_empty_document())
            logger.info("Initialized empty task storage")
        except OSError as e:
            logger.error(f"Failed to initialize storage: {e}")
            raise TaskStoreError(f"Cannot initialize storage: {e}") from e

    def _read(self) -> Dict[str, Any]:
        """
        Load the whole document.

        Raises:
            TaskStoreError: If storage cannot be read
        """
        try:
            with open(self.storage_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted JSON in task storage: {e}")
            self._backup_and_reset()
            return _empty_document()
        except FileNotFoundError:
            logger.warning("Storage file not found, initializing")
            self._initialize_storage()
            return _empty_document()
        except OSError as e:
            logger.error(f"Failed to load storage: {e}", exc_info=True)
            raise TaskStoreError(f"Cannot load storage: {e}") from e

        if not isinstance(data, dict):
            logger.error("Task storage root is not an object")
            self._backup_and_reset()
            return _empty_document()

        document = _empty_document()
        document.update(data)
        return document

    def _write(self, document: Dict[str, Any]):
        """Write the whole document atomically (temp file, then rename)"""
        temp_path = self.storage_path.with_suffix('.tmp')
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        temp_path.replace(self.storage_path)

    def _save(self, document: Dict[str, Any]):
        try:
            self._write(document)
        except OSError as e:
            logger.error(f"Failed to save storage: {e}", exc_info=True)
            raise TaskStoreError(f"Cannot save storage: {e}") from e

    def _backup_and_reset(self):
        """
        Backup corrupted file and create fresh storage.

        Called when JSON is corrupted or unreadable.
        """
        backup_path = self.storage_path.with_suffix('.json.bak')

        try:
            if self.storage_path.exists():
                self.storage_path.replace(backup_path)
                logger.warning(f"Backed up corrupted storage to: {backup_path}")
        except OSError as e:
            logger.error(f"Failed to back up corrupted storage: {e}", exc_info=True)

        self._initialize_storage()
        logger.info("Created fresh task storage")

    @staticmethod
    def _split_tasks(raw: Iterable[dict]) -> Tuple[List[Task], List[Any]]:
        """Parse stored entries into tasks; unparseable entries are returned raw."""
        tasks = []
        invalid = []
        for task_dict in raw or []:
            try:
                tasks.append(Task.from_dict(task_dict))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Invalid task entry kept as-is: {e}")
                invalid.append(task_dict)
        return tasks, invalid

    @classmethod
    def _parse_tasks(cls, raw: Iterable[dict]) -> List[Task]:
        return cls._split_tasks(raw)[0]

    def _mutate_tasks(self, mutate: Callable[[List[Task]], Any],
                      keep_invalid: bool = True) -> Any:
        """
        Read the latest tasks, apply mutate(tasks) in place, write them back.

        Entries that do not parse as tasks are written back unchanged after
        the valid ones, unless keep_invalid is False.
        """
        document = self._read()
        tasks, invalid = self._split_tasks(document[TASKS_KEY])
        result = mutate(tasks)
        document[TASKS_KEY] = [t.to_dict() for t in tasks]
        if keep_invalid:
            document[TASKS_KEY].extend(invalid)
        elif invalid:
            logger.warning(f"Dropped {len(invalid)} invalid task entries")
        self._save(document)
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def load_tasks(self) -> List[Task]:
        """All tasks, in stored order."""
        return self._parse_tasks(self._read()[TASKS_KEY])

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.load_tasks():
            if task.id == task_id:
                return task
        return None

    def add_task(self, task: Task) -> bool:
        """
        Append a new task.

        Returns:
            True if added, False if a task with the same ID exists
        """
        def mutate(tasks: List[Task]) -> bool:
            if any(t.id == task.id for t in tasks):
                logger.warning(f"Task with ID {task.id} already exists")
                return False
            tasks.append(task)
            return True

        added = self._mutate_tasks(mutate)
        if added:
            logger.info(f"Added task: {task.id} - {task.text}")
        return added

    def set_completed(self, task_id: str, completed: bool = True,
                      now: Optional[datetime] = None) -> bool:
        """
        Toggle a task's completion flag.

        Returns:
            True if the task was found
        """
        def mutate(tasks: List[Task]) -> bool:
            for task in tasks:
                if task.id == task_id:
                    task.completed = completed
                    task.completed_at = (now or datetime.now()) if completed else None
                    return True
            return False

        found = self._mutate_tasks(mutate)
        if found:
            logger.info(f"Task {task_id} completed={completed}")
        else:
            logger.warning(f"Task {task_id} not found for completion toggle")
        return found

    def delete_task(self, task_id: str) -> bool:
        """
        Delete a task permanently.

        Returns:
            True if deleted, False if not found
        """
        def mutate(tasks: List[Task]) -> bool:
            original_count = len(tasks)
            tasks[:] = [t for t in tasks if t.id != task_id]
            return len(tasks) != original_count

        deleted = self._mutate_tasks(mutate)
        if deleted:
            logger.info(f"Deleted task: {task_id}")
        else:
            logger.warning(f"Task {task_id} not found for deletion")
        return deleted

    def clear_tasks(self) -> List[str]:
        """Delete every task. Returns the removed task IDs."""
        def mutate(tasks: List[Task]) -> List[str]:
            removed = [t.id for t in tasks]
            tasks.clear()
            return removed

        removed = self._mutate_tasks(mutate, keep_invalid=False)
        logger.info(f"Cleared {len(removed)} tasks")
        return removed

    def apply_tick(
        self,
        remaining: Mapping[str, float],
        expired_ids: Iterable[str],
    ) -> List[Task]:
        """
        Write one scheduler tick back to storage.

        Remaining times are stored for tasks that are still open. Each id in
        expired_ids is transitioned to expired only if it is still open in the
        freshly read snapshot, so a task expires at most once even when two
        ticks race.

        Args:
            remaining: task_id -> seconds remaining
            expired_ids: tasks whose time budget has elapsed

        Returns:
            Tasks that actually transitioned to expired in this call, in stored order
        """
        expired_ids = set(expired_ids)

        def mutate(tasks: List[Task]) -> List[Task]:
            transitioned = []
            for task in tasks:
                if not task.is_open:
                    continue
                if task.id in remaining:
                    task.remaining_seconds = remaining[task.id]
                if task.id in expired_ids:
                    task.time_expired = True
                    task.remaining_seconds = 0.0
                    transitioned.append(task)
            return transitioned

        transitioned = self._mutate_tasks(mutate)
        for task in transitioned:
            logger.info(f"Marked task as expired in storage: {task.id}")
        return transitioned

    def set_custom_reminders(self, task_id: str, messages: List[str]) -> bool:
        """
        Attach a custom reminder batch to a task.

        The batch is set at most once; later calls leave it untouched.

        Returns:
            True if the batch was stored
        """
        def mutate(tasks: List[Task]) -> bool:
            for task in tasks:
                if task.id == task_id:
                    if task.custom_reminders:
                        return False
                    task.custom_reminders = list(messages)
                    return True
            return False

        stored = self._mutate_tasks(mutate)
        if stored:
            logger.info(f"Saved {len(messages)} custom reminders to task: {task_id}")
        return stored

    # ------------------------------------------------------------------
    # AI configuration
    # ------------------------------------------------------------------

    def load_ai_config(self) -> Optional[AIConfig]:
        """Stored provider settings, or None if never saved."""
        record = self._read()[AI_CONFIG_KEY]
        if not isinstance(record, dict):
            return None
        return AIConfig.from_dict(record)

    def save_ai_config(self, ai_config: AIConfig):
        document = self._read()
        document[AI_CONFIG_KEY] = ai_config.to_dict()
        self._save(document)
        logger.info(f"Saved AI config (provider={ai_config.provider}, enabled={ai_config.enabled})")

    # ------------------------------------------------------------------
    # Pending notifications
    # ------------------------------------------------------------------

    def get_pending_notifications(self) -> List[PendingNotification]:
        notifications = []
        for entry in self._read()[PENDING_KEY] or []:
            try:
                notifications.append(PendingNotification.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid pending notification: {e}")
        return notifications

    def append_pending_notification(self, notification: PendingNotification):
        document = self._read()
        pending = list(document[PENDING_KEY] or [])
        pending.append(notification.to_dict())
        document[PENDING_KEY] = pending
        self._save(document)
        logger.debug(f"Stored pending notification for task {notification.task_id}")

    def remove_pending_for_task(self, task_id: str) -> int:
        """Remove every pending entry for a task. Returns how many were removed."""
        document = self._read()
        pending = list(document[PENDING_KEY] or [])
        kept = [entry for entry in pending if entry.get('taskId') != task_id]
        removed = len(pending) - len(kept)
        if removed:
            document[PENDING_KEY] = kept
            self._save(document)
            logger.info(f"Removed {removed} pending notifications for task: {task_id}")
        return removed

    def clear_pending_notifications(self) -> int:
        document = self._read()
        count = len(document[PENDING_KEY] or [])
        document[PENDING_KEY] = []
        self._save(document)
        return count

    # ------------------------------------------------------------------
    # Badge
    # ------------------------------------------------------------------

    def get_badge(self) -> str:
        return self._read()[BADGE_KEY] or ""

    def set_badge(self, text: str):
        document = self._read()
        document[BADGE_KEY] = text
        self._save(document)

    def get_stats(self) -> dict:
        """
        Get storage statistics.

        Returns:
            Dict with task counts by state and pending notification count
        """
        document = self._read()
        tasks = self._parse_tasks(document[TASKS_KEY])

        stats = {
            'total': len(tasks),
            'open': 0,
            'expired': 0,
            'completed': 0,
            'pending_notifications': len(document[PENDING_KEY] or []),
        }
        for task in tasks:
            stats[task.state.value] += 1
        return stats
